"""Candidate selection for review prompts.

Selection rules:
    - Initiator: among completed engagements the initiator has not yet
      reviewed, pick the one that ended earliest. Ties on the end time
      go to the lexicographically smallest ID.
    - Participant: walk the participant's assignment records in the
      order the data provider returned them and pick the first whose
      engagement exists, is completed, and has no ``reviewed_at``.

Both selectors are pure: they read only their arguments and the
resolver's configuration, so the same input always yields the same
candidate. Configured age and duration limits narrow eligibility for
both roles.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from ember.src.config import PromptConfig
from ember.src.models import (
    AssignmentRecord,
    Candidate,
    ContextSnapshot,
    Engagement,
    InitiatorContext,
    Role,
)


class EligibilityResolver:
    """Selects at most one engagement to ask a review for.

    Args:
        config: Supplies the optional age and duration limits.
    """

    def __init__(self, config: PromptConfig | None = None) -> None:
        self._config = config or PromptConfig()

    def is_engagement_eligible(
        self,
        engagement: Engagement,
        now: datetime | None = None,
    ) -> bool:
        """Check the role-independent conditions on one engagement.

        The engagement must be completed, long enough, and (when *now*
        is given) recent enough.

        Args:
            engagement: Engagement to check.
            now: Reference time for the age limit. The age limit is not
                applied without it.

        Returns:
            True if the engagement could be reviewed by either role.
        """
        if not engagement.completed:
            return False
        min_duration = self._config.min_engagement_duration
        if min_duration and engagement.duration < min_duration:
            return False
        max_age = self._config.max_engagement_age
        if max_age is not None and now is not None and now - engagement.ends_at > max_age:
            return False
        return True

    def select_for_initiator(
        self,
        engagements: Iterable[Engagement],
        *,
        now: datetime | None = None,
        context: InitiatorContext | None = None,
    ) -> Candidate | None:
        """Pick the initiator's earliest-ended unreviewed engagement.

        Args:
            engagements: The initiator's engagements.
            now: Reference time for the age limit.
            context: Active initiator context, used for display data.

        Returns:
            The selected candidate, or None if nothing is eligible.
        """
        eligible = [
            e
            for e in engagements
            if e.owner_reviewed_at is None and self.is_engagement_eligible(e, now)
        ]
        if not eligible:
            return None
        chosen = min(eligible, key=lambda e: (e.ends_at, e.id))
        return Candidate(
            engagement_id=chosen.id,
            role=Role.INITIATOR,
            household_id=chosen.household_id or (context.household_id if context else ""),
            context=ContextSnapshot.for_engagement(
                chosen, household_name=context.name if context else None
            ),
        )

    def select_for_participant(
        self,
        engagements: Iterable[Engagement],
        records: Sequence[AssignmentRecord],
        *,
        now: datetime | None = None,
    ) -> Candidate | None:
        """Pick the first eligible engagement in assignment-record order.

        Args:
            engagements: Engagements visible to the participant.
            records: The participant's assignment records, in provider
                order. This order is preserved, not re-sorted.
            now: Reference time for the age limit.

        Returns:
            The selected candidate, or None if nothing is eligible.
        """
        by_id: dict[str, Engagement] = {}
        for engagement in engagements:
            by_id.setdefault(engagement.id, engagement)

        for record in records:
            engagement = by_id.get(record.engagement_id)
            if engagement is None or record.reviewed_at is not None:
                continue
            if self.is_engagement_eligible(engagement, now):
                return Candidate(
                    engagement_id=engagement.id,
                    role=Role.PARTICIPANT,
                    household_id=engagement.household_id,
                    context=ContextSnapshot.for_engagement(engagement),
                )
        return None
