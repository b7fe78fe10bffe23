"""Persistent registry of engagements the user declined to review.

Skips never expire. An identifier recorded once stays recorded until
``clear()`` is called explicitly.
"""

from __future__ import annotations

import logging
import threading

from ember.src.storage import KeyValueStore, PersistenceError

logger = logging.getLogger(__name__)

SKIPPED_KEY = "ember.skips.engagement_ids"


class SkipRegistry:
    """Set of skipped engagement IDs backed by a ``KeyValueStore``.

    The registry keeps an in-memory mirror of the persisted set. When the
    store fails, the mirror stays authoritative for this process and the
    failure is logged.

    Args:
        store: Persistence for the skipped IDs.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._ids: dict[str, None] = self._load()

    def mark_skipped(self, engagement_id: str) -> bool:
        """Record that the user declined to review *engagement_id*.

        Marking an already-skipped ID is a no-op.

        Args:
            engagement_id: The engagement to skip.

        Returns:
            True if the ID was newly added.
        """
        with self._lock:
            if engagement_id in self._ids:
                return False
            self._ids[engagement_id] = None
            try:
                self._store.set_string_set(SKIPPED_KEY, list(self._ids))
            except PersistenceError as exc:
                logger.warning("Skips: failed to persist skip for %s: %s", engagement_id, exc)
        logger.info("Skips: marked engagement %s as skipped", engagement_id)
        return True

    def is_skipped(self, engagement_id: str) -> bool:
        with self._lock:
            return engagement_id in self._ids

    def skipped_ids(self) -> list[str]:
        """Return skipped IDs in the order they were recorded."""
        with self._lock:
            return list(self._ids)

    def prune(self) -> int:
        """Remove stale skips.

        Skips carry no timestamp, so nothing is ever considered stale.

        Returns:
            Number of entries removed (always 0).
        """
        # TODO: record skip dates so entries can expire once a retention period is agreed.
        logger.debug("Skips: prune requested, %d entries retained", len(self))
        return 0

    def clear(self) -> None:
        """Forget all skips (testing/debug only)."""
        with self._lock:
            self._ids = {}
            try:
                self._store.remove(SKIPPED_KEY)
            except PersistenceError as exc:
                logger.warning("Skips: failed to clear persisted skips: %s", exc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def _load(self) -> dict[str, None]:
        try:
            return dict.fromkeys(self._store.get_string_set(SKIPPED_KEY))
        except PersistenceError as exc:
            logger.warning("Skips: failed to load skipped engagements: %s", exc)
            return {}
