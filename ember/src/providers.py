"""Collaborator interfaces consumed by the prompt coordinator.

The engine reads engagement data through an ``EngagementStore`` and
hands selected candidates to a ``PresentationSink``. Both are owned by
the host. In-memory implementations are provided for the bundled server
and for tests.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from ember.src.models import AssignmentRecord, Candidate, Engagement, InitiatorContext


class EngagementStore(Protocol):
    """Read-only access to engagement data and the current identity.

    Any method may raise; the coordinator treats every exception as a
    transient fetch failure.
    """

    async def current_initiator(self) -> InitiatorContext | None:
        """Return the active initiator context, or None if there is none."""
        ...

    async def current_participant_id(self) -> str | None:
        """Return the authenticated participant's ID, or None."""
        ...

    async def fetch_for_initiator(self) -> list[Engagement]: ...

    async def fetch_for_participant(self, user_id: str) -> list[Engagement]: ...

    async def fetch_assignment_records(self, user_id: str) -> list[AssignmentRecord]: ...


class PresentationSink(Protocol):
    """Receives the candidate to show a review form for."""

    def present(self, candidate: Candidate, presenting_context: Any = None) -> None: ...


class InMemoryEngagementStore:
    """Engagement store over plain lists.

    Args:
        engagements: Engagements visible to the initiator.
        initiator: Active initiator context.
        participant_id: Authenticated participant, if any.
        participant_engagements: Engagements visible to the participant.
        assignment_records: The participant's records, in priority order.
    """

    def __init__(
        self,
        engagements: Iterable[Engagement] = (),
        *,
        initiator: InitiatorContext | None = None,
        participant_id: str | None = None,
        participant_engagements: Iterable[Engagement] = (),
        assignment_records: Iterable[AssignmentRecord] = (),
    ) -> None:
        self.engagements = list(engagements)
        self.initiator = initiator
        self.participant_id = participant_id
        self.participant_engagements = list(participant_engagements)
        self.assignment_records = list(assignment_records)

    async def current_initiator(self) -> InitiatorContext | None:
        return self.initiator

    async def current_participant_id(self) -> str | None:
        return self.participant_id

    async def fetch_for_initiator(self) -> list[Engagement]:
        return list(self.engagements)

    async def fetch_for_participant(self, user_id: str) -> list[Engagement]:
        if user_id != self.participant_id:
            return []
        return list(self.participant_engagements)

    async def fetch_assignment_records(self, user_id: str) -> list[AssignmentRecord]:
        return [
            r
            for r in self.assignment_records
            if not r.participant_id or r.participant_id == user_id
        ]

    def find(self, engagement_id: str) -> Engagement | None:
        """Look up an engagement by ID across both roles."""
        for engagement in [*self.engagements, *self.participant_engagements]:
            if engagement.id == engagement_id:
                return engagement
        return None


@dataclass
class PresentedPrompt:
    """A candidate handed to the recording sink.

    Attributes:
        candidate: The presented candidate.
        presented_at: When the sink received it.
        presenting_context: Opaque host object passed through by the engine.
    """

    candidate: Candidate
    presented_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    presenting_context: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (the presenting context is omitted)."""
        return {
            "candidate": self.candidate.to_dict(),
            "presented_at": self.presented_at.isoformat(),
        }


class RecordingPresentationSink:
    """Sink that queues presented candidates for the host to collect."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._prompts: list[PresentedPrompt] = []

    def present(self, candidate: Candidate, presenting_context: Any = None) -> None:
        with self._lock:
            self._prompts.append(
                PresentedPrompt(candidate=candidate, presenting_context=presenting_context)
            )

    @property
    def prompts(self) -> list[PresentedPrompt]:
        with self._lock:
            return list(self._prompts)

    def drain(self) -> list[PresentedPrompt]:
        """Return and forget all queued prompts."""
        with self._lock:
            prompts, self._prompts = self._prompts, []
        return prompts
