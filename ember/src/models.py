"""Ember data models for review-prompt eligibility.

Defines the read-only engagement records supplied by the host's data
store, the per-participant assignment records that carry review markers,
and the ephemeral candidate produced by one decision cycle. All models
use dataclasses with dictionary serialization.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Which side of an engagement the current user is on."""

    INITIATOR = "initiator"
    PARTICIPANT = "participant"


class EngagementStatus(str, Enum):
    """Lifecycle status of an engagement."""

    UPCOMING = "upcoming"
    IN_PROGRESS = "in_progress"
    EXTENDED = "extended"
    COMPLETED = "completed"
    EARLY_ACCESS = "early_access"
    ARCHIVED = "archived"


# Statuses that count as finished for review purposes.
_REVIEWABLE_STATUSES = frozenset(
    {
        EngagementStatus.COMPLETED,
        EngagementStatus.EARLY_ACCESS,
        EngagementStatus.ARCHIVED,
    }
)


def as_utc(value: datetime | None) -> datetime | None:
    """Return *value* as an aware datetime; naive values are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_dt(value: str | None) -> datetime | None:
    return as_utc(datetime.fromisoformat(value)) if value else None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Engagement:
    """A unit of activity that may be reviewed once it is over.

    Attributes:
        id: Unique identifier of the engagement.
        starts_at: Scheduled start.
        ends_at: Scheduled end; used as the completion time.
        status: Current lifecycle status.
        title: Display title (may be empty).
        owner_reviewed_at: When the initiator reviewed it, None if not yet.
        household_id: Identifier of the household that owns it.

    Timestamps without a UTC offset are taken as UTC.
    """

    id: str
    starts_at: datetime
    ends_at: datetime
    status: EngagementStatus = EngagementStatus.UPCOMING
    title: str = ""
    owner_reviewed_at: datetime | None = None
    household_id: str = ""

    def __post_init__(self) -> None:
        for name in ("starts_at", "ends_at", "owner_reviewed_at"):
            object.__setattr__(self, name, as_utc(getattr(self, name)))

    @property
    def completed(self) -> bool:
        """True when the engagement is over and can be reviewed."""
        return self.status in _REVIEWABLE_STATUSES

    @property
    def duration(self) -> timedelta:
        return self.ends_at - self.starts_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "starts_at": self.starts_at.isoformat(),
            "ends_at": self.ends_at.isoformat(),
            "status": self.status.value,
            "title": self.title,
            "owner_reviewed_at": _format_dt(self.owner_reviewed_at),
            "household_id": self.household_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Engagement:
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            starts_at=_parse_dt(data["starts_at"]),
            ends_at=_parse_dt(data["ends_at"]),
            status=EngagementStatus(data.get("status", "upcoming")),
            title=data.get("title", ""),
            owner_reviewed_at=_parse_dt(data.get("owner_reviewed_at")),
            household_id=data.get("household_id", ""),
        )


@dataclass(frozen=True)
class AssignmentRecord:
    """A participant's assignment to one engagement.

    Attributes:
        engagement_id: The engagement this record refers to.
        participant_id: The assigned participant.
        reviewed_at: When the participant reviewed it, None if not yet.
    """

    engagement_id: str
    participant_id: str = ""
    reviewed_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "reviewed_at", as_utc(self.reviewed_at))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "engagement_id": self.engagement_id,
            "participant_id": self.participant_id,
            "reviewed_at": _format_dt(self.reviewed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssignmentRecord:
        """Deserialize from dictionary."""
        return cls(
            engagement_id=data["engagement_id"],
            participant_id=data.get("participant_id", ""),
            reviewed_at=_parse_dt(data.get("reviewed_at")),
        )


@dataclass(frozen=True)
class InitiatorContext:
    """The household the initiator is currently acting for."""

    household_id: str
    name: str = ""


@dataclass(frozen=True)
class ContextSnapshot:
    """Context shown next to the review form.

    Attributes:
        title: Engagement title, None when the title is blank.
        household_name: Owning household's name (initiator prompts only).
        starts_at: When the engagement started.
    """

    title: str | None
    household_name: str | None
    starts_at: datetime | None

    @classmethod
    def for_engagement(
        cls,
        engagement: Engagement,
        household_name: str | None = None,
    ) -> ContextSnapshot:
        """Build a snapshot from an engagement record.

        Args:
            engagement: The engagement being reviewed.
            household_name: Optional household display name.

        Returns:
            Snapshot with a blank title normalized to None.
        """
        return cls(
            title=engagement.title or None,
            household_name=household_name or None,
            starts_at=engagement.starts_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "title": self.title,
            "household_name": self.household_name,
            "starts_at": _format_dt(self.starts_at),
        }


@dataclass(frozen=True)
class Candidate:
    """The single engagement selected for a review prompt in one cycle.

    Never persisted; lives only for the duration of a decision.

    Attributes:
        engagement_id: Identifier of the engagement to review.
        role: Role the review is requested from.
        household_id: Household that owns the engagement.
        context: Display context for the presentation layer.
    """

    engagement_id: str
    role: Role
    household_id: str = ""
    context: ContextSnapshot | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "engagement_id": self.engagement_id,
            "role": self.role.value,
            "household_id": self.household_id,
            "context": self.context.to_dict() if self.context else None,
        }
