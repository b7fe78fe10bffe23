"""Orchestrates one review-prompt decision cycle.

A cycle moves through these stages::

    IDLE -> GATING -> FETCHING -> RESOLVING -> FILTERING -> COMMITTING -> PRESENTING

and ends either SUPPRESSED (at any stage) or PRESENTED. Every failure
collapses the cycle to "no prompt": the caller only ever sees a boolean
from ``decide()``, or a ``Decision`` from ``evaluate()``.

Concurrency:
    - The gate check-and-update is atomic, so concurrent requests in one
      debounce window cannot both pass.
    - No lock is held while fetching from the engagement store.
    - Commit and presentation are serialized. Before committing, a cycle
      re-validates the gate and checks that no other cycle committed a
      prompt since it was admitted; otherwise it is SUPERSEDED. At most
      one of several concurrent cycles can present.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ember.src.clock import Clock, SystemClock
from ember.src.config import PromptConfig
from ember.src.eligibility import EligibilityResolver
from ember.src.gate import ClockGate, GateVerdict
from ember.src.models import (
    AssignmentRecord,
    Candidate,
    ContextSnapshot,
    Engagement,
    InitiatorContext,
    Role,
    as_utc,
)
from ember.src.providers import EngagementStore, PresentationSink
from ember.src.skips import SkipRegistry
from ember.src.storage import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


class TransientFetchError(Exception):
    """Raised when engagement data cannot be fetched (error or timeout)."""


class InvariantViolation(Exception):
    """Raised for internal logic errors when strict invariants are enabled."""


class Stage(str, Enum):
    """Stages of a decision cycle."""

    IDLE = "idle"
    GATING = "gating"
    FETCHING = "fetching"
    RESOLVING = "resolving"
    FILTERING = "filtering"
    COMMITTING = "committing"
    PRESENTING = "presenting"


class Outcome(str, Enum):
    """Terminal outcome of a decision cycle."""

    PRESENTED = "presented"
    DEBOUNCED = "debounced"
    ALREADY_PROMPTED = "already_prompted"
    COOLDOWN = "cooldown"
    NO_CONTEXT = "no_context"
    FETCH_FAILED = "fetch_failed"
    NO_CANDIDATE = "no_candidate"
    SKIPPED = "skipped"
    SUPERSEDED = "superseded"
    RESOLUTION_FAILED = "resolution_failed"
    PRESENTATION_FAILED = "presentation_failed"


_GATE_OUTCOMES = {
    GateVerdict.DEBOUNCED: Outcome.DEBOUNCED,
    GateVerdict.ALREADY_PROMPTED: Outcome.ALREADY_PROMPTED,
    GateVerdict.COOLDOWN: Outcome.COOLDOWN,
}


@dataclass(frozen=True)
class Decision:
    """Result of one decision cycle.

    Attributes:
        outcome: How the cycle ended.
        stage: Last stage reached before the cycle ended.
        candidate: The selected candidate, if selection got that far.
        error: The exception that ended a failed cycle, for reporting.
    """

    outcome: Outcome
    stage: Stage
    candidate: Candidate | None = None
    error: Exception | None = field(default=None, compare=False, repr=False)

    @property
    def presented(self) -> bool:
        return self.outcome is Outcome.PRESENTED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "presented": self.presented,
            "outcome": self.outcome.value,
            "stage": self.stage.value,
            "candidate": self.candidate.to_dict() if self.candidate else None,
        }


@dataclass
class _Fetched:
    engagements: list[Engagement]
    records: list[AssignmentRecord] = field(default_factory=list)
    initiator: InitiatorContext | None = None


class PromptCoordinator:
    """Decides whether to surface a review prompt right now.

    Args:
        engagements: Source of engagement data and current identity.
        sink: Receives the candidate to present.
        kv_store: Persistence for gate and skip state. Defaults to an
            in-memory store.
        config: Timing and policy configuration.
        clock: Time source used when ``now`` is not passed explicitly.
        gate: Pre-built gate (built from *kv_store* and *config* if omitted).
        skips: Pre-built skip registry (built from *kv_store* if omitted).
        resolver: Pre-built resolver (built from *config* if omitted).

    Example::

        coordinator = PromptCoordinator(store, sink, SqliteKeyValueStore("ember.db"))
        shown = await coordinator.decide(Role.INITIATOR)
    """

    def __init__(
        self,
        engagements: EngagementStore,
        sink: PresentationSink,
        kv_store: KeyValueStore | None = None,
        *,
        config: PromptConfig | None = None,
        clock: Clock | None = None,
        gate: ClockGate | None = None,
        skips: SkipRegistry | None = None,
        resolver: EligibilityResolver | None = None,
    ) -> None:
        self.config = config or PromptConfig()
        store = kv_store if kv_store is not None else InMemoryKeyValueStore()
        self._engagements = engagements
        self._sink = sink
        self._clock = clock or SystemClock()
        self.gate = gate or ClockGate(store, self.config)
        self.skips = skips or SkipRegistry(store)
        self.resolver = resolver or EligibilityResolver(self.config)
        self._commit_lock = asyncio.Lock()

    @property
    def engagement_store(self) -> EngagementStore:
        return self._engagements

    # ---------------------------------------------------------------
    # Decision cycle
    # ---------------------------------------------------------------

    async def decide(
        self,
        role: Role | str,
        presenting_context: Any = None,
        now: datetime | None = None,
    ) -> bool:
        """Run one decision cycle and present a prompt if warranted.

        Args:
            role: Role of the current user.
            presenting_context: Opaque host object passed to the sink.
            now: Time of the request; read from the clock when omitted.

        Returns:
            True if a review prompt was presented.
        """
        decision = await self.evaluate(role, presenting_context, now)
        return decision.presented

    async def evaluate(
        self,
        role: Role | str,
        presenting_context: Any = None,
        now: datetime | None = None,
    ) -> Decision:
        """Run one decision cycle and report how it ended.

        Args:
            role: Role of the current user.
            presenting_context: Opaque host object passed to the sink.
            now: Time of the request; read from the clock when omitted.

        Returns:
            The cycle's Decision. Never raises for fetch, selection,
            persistence or presentation failures.
        """
        role = Role(role)
        now = as_utc(now if now is not None else self._clock.now())

        verdict = self.gate.check(now)
        if verdict is not GateVerdict.ADMITTED:
            return self._suppress(_GATE_OUTCOMES[verdict], Stage.GATING)
        if self.config.debug_bypass:
            logger.info("Coordinator: debug bypass active")
        admitted_epoch = self.gate.prompt_count

        try:
            fetched = await self._fetch(role)
        except TransientFetchError as exc:
            logger.warning("Coordinator: error fetching %s engagements: %s", role.value, exc)
            return self._suppress(Outcome.FETCH_FAILED, Stage.FETCHING, error=exc)
        if fetched is None:
            return self._suppress(Outcome.NO_CONTEXT, Stage.FETCHING)

        try:
            candidate = self._select(role, fetched, now)
        except Exception as exc:
            logger.exception("Coordinator: failed to resolve %s candidate", role.value)
            return self._suppress(Outcome.RESOLUTION_FAILED, Stage.RESOLVING, error=exc)
        if candidate is None:
            return self._suppress(Outcome.NO_CANDIDATE, Stage.RESOLVING)

        if not self.config.debug_bypass and self.skips.is_skipped(candidate.engagement_id):
            logger.info("Coordinator: engagement %s was skipped", candidate.engagement_id)
            return self._suppress(Outcome.SKIPPED, Stage.FILTERING, candidate)

        async with self._commit_lock:
            if (
                self.gate.prompt_count != admitted_epoch
                or self.gate.revalidate(now) is not GateVerdict.ADMITTED
            ):
                return self._suppress(Outcome.SUPERSEDED, Stage.COMMITTING, candidate)
            self._commit(candidate, now)
            return await self._present(candidate, presenting_context)

    async def present_engagement(
        self,
        engagement_id: str,
        role: Role | str,
        presenting_context: Any = None,
        *,
        household_id: str = "",
        context: ContextSnapshot | None = None,
        now: datetime | None = None,
    ) -> Decision:
        """Present a review for a specific engagement (e.g. a deep link).

        Gating, eligibility and skips are not consulted, but the prompt
        is committed so the lifetime latch and cooldown account for it.

        Args:
            engagement_id: Engagement to request a review for.
            role: Role the review is requested from.
            presenting_context: Opaque host object passed to the sink.
            household_id: Household that owns the engagement.
            context: Display context, if known.
            now: Commit time; read from the clock when omitted.

        Returns:
            The Decision for this presentation.
        """
        candidate = Candidate(
            engagement_id=engagement_id,
            role=Role(role),
            household_id=household_id,
            context=context,
        )
        now = as_utc(now if now is not None else self._clock.now())
        async with self._commit_lock:
            self._commit(candidate, now)
            return await self._present(candidate, presenting_context)

    # ---------------------------------------------------------------
    # User and lifecycle operations
    # ---------------------------------------------------------------

    def mark_skipped(self, engagement_id: str) -> bool:
        """Record that the user declined to review *engagement_id*."""
        return self.skips.mark_skipped(engagement_id)

    def is_skipped(self, engagement_id: str) -> bool:
        return self.skips.is_skipped(engagement_id)

    def reset_lifetime(self) -> None:
        """Allow a new prompt this run; call on the host's lifecycle boundary."""
        self.gate.reset()

    def clear_all(self) -> None:
        """Wipe all gate and skip state (testing/debug only)."""
        self.gate.clear()
        self.skips.clear()
        logger.info("Coordinator: cleared all review prompt state")

    # ---------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------

    async def _fetch(self, role: Role) -> _Fetched | None:
        """Fetch role-specific data, bounded by ``fetch_timeout``.

        Returns:
            The fetched data, or None when there is no current identity.

        Raises:
            TransientFetchError: On any provider error or timeout.
        """
        if role is Role.INITIATOR:
            fetch = self._fetch_initiator()
        else:
            fetch = self._fetch_participant()
        try:
            return await asyncio.wait_for(fetch, timeout=self.config.fetch_timeout)
        except asyncio.TimeoutError as exc:
            raise TransientFetchError(
                f"timed out after {self.config.fetch_timeout}s"
            ) from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise TransientFetchError(str(exc) or type(exc).__name__) from exc

    async def _fetch_initiator(self) -> _Fetched | None:
        initiator = await self._engagements.current_initiator()
        if initiator is None:
            logger.info("Coordinator: no active initiator context")
            return None
        engagements = await self._engagements.fetch_for_initiator()
        return _Fetched(engagements=list(engagements), initiator=initiator)

    async def _fetch_participant(self) -> _Fetched | None:
        user_id = await self._engagements.current_participant_id()
        if not user_id:
            logger.info("Coordinator: no authenticated participant")
            return None
        engagements, records = await asyncio.gather(
            self._engagements.fetch_for_participant(user_id),
            self._engagements.fetch_assignment_records(user_id),
        )
        return _Fetched(engagements=list(engagements), records=list(records))

    def _select(self, role: Role, fetched: _Fetched, now: datetime) -> Candidate | None:
        if role is Role.INITIATOR:
            candidate = self.resolver.select_for_initiator(
                fetched.engagements, now=now, context=fetched.initiator
            )
        else:
            candidate = self.resolver.select_for_participant(
                fetched.engagements, fetched.records, now=now
            )
        if candidate is not None:
            logger.info(
                "Coordinator: found unreviewed engagement %s for %s",
                candidate.engagement_id,
                role.value,
            )
        return candidate

    def _commit(self, candidate: Candidate | None, now: datetime) -> bool:
        """Record the prompt; the only irreversible step of a cycle."""
        if candidate is None:
            self._invariant_violated("commit attempted without a selected candidate")
            return False
        self.gate.record_prompt(now)
        return True

    async def _present(self, candidate: Candidate, presenting_context: Any) -> Decision:
        try:
            result = self._sink.present(candidate, presenting_context)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.exception(
                "Coordinator: presentation failed for engagement %s", candidate.engagement_id
            )
            return Decision(Outcome.PRESENTATION_FAILED, Stage.PRESENTING, candidate, error=exc)
        logger.info("Coordinator: presented review prompt for %s", candidate.engagement_id)
        return Decision(Outcome.PRESENTED, Stage.PRESENTING, candidate)

    def _suppress(
        self,
        outcome: Outcome,
        stage: Stage,
        candidate: Candidate | None = None,
        *,
        error: Exception | None = None,
    ) -> Decision:
        logger.info("Coordinator: suppressed at %s (%s)", stage.value, outcome.value)
        return Decision(outcome, stage, candidate, error=error)

    def _invariant_violated(self, message: str) -> None:
        if self.config.raise_on_invariant_violation:
            raise InvariantViolation(message)
        logger.error("Coordinator: invariant violated: %s", message)
