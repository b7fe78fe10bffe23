"""Temporal gating for review prompts.

Two independent timers decide whether a decision cycle may proceed:

    - Debounce: rejects requests that arrive within ``debounce_interval``
      of the previous request. Every request moves the debounce window,
      admitted or not, so a burst cannot slip through one call at a time.
    - Cooldown: rejects requests within ``cooldown_interval`` of the last
      presented prompt. The last prompt time is persisted so the cooldown
      survives process restarts.

A ``LifetimeFlag`` additionally limits prompting to once per process
run. ``debug_bypass`` disables the cooldown and the lifetime latch but
never the debounce.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from enum import Enum

from ember.src.config import PromptConfig
from ember.src.storage import KeyValueStore, PersistenceError

logger = logging.getLogger(__name__)

LAST_PROMPT_KEY = "ember.gate.last_prompt_at"


class GateVerdict(str, Enum):
    """Result of a gate check."""

    ADMITTED = "admitted"
    DEBOUNCED = "debounced"
    ALREADY_PROMPTED = "already_prompted"
    COOLDOWN = "cooldown"


class LifetimeFlag:
    """One-shot latch recording that a prompt was offered this run.

    Only ``latch()`` sets it and only ``reset()`` clears it. The host
    calls reset on a lifecycle boundary such as moving to background.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._is_set = False

    @property
    def is_set(self) -> bool:
        return self._is_set

    def latch(self) -> bool:
        """Set the flag.

        Returns:
            True if this call flipped the flag, False if it was already set.
        """
        with self._lock:
            if self._is_set:
                return False
            self._is_set = True
            return True

    def reset(self) -> None:
        """Clear the flag for a new prompt opportunity."""
        with self._lock:
            self._is_set = False


class ClockGate:
    """Debounce, cooldown and lifetime gate in front of every decision.

    Args:
        store: Persistence for the last prompt time.
        config: Timing configuration.
        lifetime: Lifetime latch; a fresh one is created when omitted.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: PromptConfig | None = None,
        lifetime: LifetimeFlag | None = None,
    ) -> None:
        self._store = store
        self._config = config or PromptConfig()
        self.lifetime = lifetime or LifetimeFlag()
        self._lock = threading.RLock()
        self._last_check_at: datetime | None = None
        self._last_prompt_at = self._load_last_prompt()
        self._prompt_count = 0

    @property
    def last_check_at(self) -> datetime | None:
        return self._last_check_at

    @property
    def last_prompt_at(self) -> datetime | None:
        return self._last_prompt_at

    @property
    def prompt_count(self) -> int:
        """Number of prompts recorded by this gate instance."""
        return self._prompt_count

    # ---------------------------------------------------------------
    # Checks
    # ---------------------------------------------------------------

    def check(self, now: datetime) -> GateVerdict:
        """Run the full gate and move the debounce window.

        The debounce check and the ``last_check_at`` update happen
        atomically, so two concurrent calls inside one debounce window
        cannot both pass.

        Args:
            now: Time of the request.

        Returns:
            The verdict; only ``ADMITTED`` lets the cycle proceed.
        """
        with self._lock:
            previous = self._last_check_at
            self._last_check_at = now
            debounce = self._config.debounce_interval
            if previous is not None and debounce and now - previous < debounce:
                logger.debug("Gate: debounced request at %s", now.isoformat())
                return GateVerdict.DEBOUNCED
            return self._policy_verdict(now)

    def admit(self, now: datetime) -> bool:
        """Return True when a decision cycle may proceed at *now*."""
        return self.check(now) is GateVerdict.ADMITTED

    def revalidate(self, now: datetime) -> GateVerdict:
        """Re-run the lifetime and cooldown checks without debouncing.

        Used right before committing, after a slow fetch, to make sure
        no other cycle has committed a prompt in the meantime.
        """
        with self._lock:
            return self._policy_verdict(now)

    def _policy_verdict(self, now: datetime) -> GateVerdict:
        if self._config.debug_bypass:
            logger.info("Gate: debug bypass active, skipping lifetime and cooldown checks")
            return GateVerdict.ADMITTED
        if self.lifetime.is_set:
            logger.info("Gate: already prompted during this lifetime")
            return GateVerdict.ALREADY_PROMPTED
        last = self._last_prompt_at
        if self._config.cooldown_enabled and last is not None:
            elapsed = now - last
            if elapsed < self._config.cooldown_interval:
                logger.info(
                    "Gate: too soon since last prompt (%d minutes ago)",
                    int(elapsed.total_seconds() // 60),
                )
                return GateVerdict.COOLDOWN
        return GateVerdict.ADMITTED

    # ---------------------------------------------------------------
    # Mutations
    # ---------------------------------------------------------------

    def record_prompt(self, now: datetime) -> None:
        """Commit a presented prompt at *now*.

        Sets the lifetime latch and advances the persisted last prompt
        time. The stored time never moves backwards: an earlier *now*
        than the current value keeps the current value.

        Args:
            now: Time of the commit.
        """
        with self._lock:
            self.lifetime.latch()
            self._prompt_count += 1
            last = self._last_prompt_at
            if last is not None and now < last:
                logger.warning(
                    "Gate: ignoring prompt time %s earlier than stored %s",
                    now.isoformat(),
                    last.isoformat(),
                )
                return
            self._last_prompt_at = now
            try:
                self._store.set_date(LAST_PROMPT_KEY, now)
            except PersistenceError as exc:
                logger.warning("Gate: failed to persist last prompt time: %s", exc)

    def reset(self) -> None:
        """Clear the lifetime latch; the cooldown keeps applying."""
        self.lifetime.reset()

    def clear(self) -> None:
        """Wipe volatile and persisted gate state (testing/debug only)."""
        with self._lock:
            self.lifetime.reset()
            self._last_check_at = None
            self._last_prompt_at = None
            try:
                self._store.remove(LAST_PROMPT_KEY)
            except PersistenceError as exc:
                logger.warning("Gate: failed to clear persisted prompt time: %s", exc)

    def _load_last_prompt(self) -> datetime | None:
        try:
            return self._store.get_date(LAST_PROMPT_KEY)
        except PersistenceError as exc:
            logger.warning("Gate: failed to load last prompt time: %s", exc)
            return None
