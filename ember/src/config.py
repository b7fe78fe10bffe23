"""Runtime configuration for the review-prompt engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

_ZERO = timedelta(0)


@dataclass(frozen=True)
class PromptConfig:
    """Timing and policy knobs for review prompting.

    Attributes:
        debounce_interval: Minimum gap between two decision requests.
        cooldown_interval: Minimum gap between two presented prompts.
            Zero disables the cooldown.
        debug_bypass: Ignore the skip list, the cooldown and the
            lifetime latch. Debounce still applies.
        fetch_timeout: Seconds to wait for provider fetches before the
            cycle is suppressed. None waits indefinitely.
        max_engagement_age: Engagements that ended longer ago than this
            are not eligible. None disables the filter.
        min_engagement_duration: Engagements shorter than this are not
            eligible. Zero disables the filter.
        raise_on_invariant_violation: Raise instead of logging when an
            internal invariant is broken.
    """

    debounce_interval: timedelta = field(default_factory=lambda: timedelta(seconds=1))
    cooldown_interval: timedelta = field(default_factory=lambda: timedelta(hours=24))
    debug_bypass: bool = False
    fetch_timeout: float | None = 10.0
    max_engagement_age: timedelta | None = None
    min_engagement_duration: timedelta = _ZERO
    raise_on_invariant_violation: bool = False

    def __post_init__(self) -> None:
        if self.debounce_interval < _ZERO:
            raise ValueError("debounce_interval must not be negative")
        if self.cooldown_interval < _ZERO:
            raise ValueError("cooldown_interval must not be negative")
        if self.min_engagement_duration < _ZERO:
            raise ValueError("min_engagement_duration must not be negative")
        if self.max_engagement_age is not None and self.max_engagement_age < _ZERO:
            raise ValueError("max_engagement_age must not be negative")
        if self.fetch_timeout is not None and self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive or None")

    @property
    def cooldown_enabled(self) -> bool:
        return self.cooldown_interval > _ZERO

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary with durations in seconds."""
        return {
            "debounce_interval": self.debounce_interval.total_seconds(),
            "cooldown_interval": self.cooldown_interval.total_seconds(),
            "debug_bypass": self.debug_bypass,
            "fetch_timeout": self.fetch_timeout,
            "max_engagement_age": (
                self.max_engagement_age.total_seconds()
                if self.max_engagement_age is not None
                else None
            ),
            "min_engagement_duration": self.min_engagement_duration.total_seconds(),
            "raise_on_invariant_violation": self.raise_on_invariant_violation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptConfig:
        """Build a config from a dictionary of seconds and flags.

        Missing keys keep their defaults.

        Args:
            data: Mapping as produced by ``to_dict``.

        Returns:
            A validated PromptConfig.

        Raises:
            ValueError: If any interval is negative.
        """
        defaults = cls()
        max_age = data.get("max_engagement_age", None)
        return cls(
            debounce_interval=_seconds(data, "debounce_interval", defaults.debounce_interval),
            cooldown_interval=_seconds(data, "cooldown_interval", defaults.cooldown_interval),
            debug_bypass=bool(data.get("debug_bypass", defaults.debug_bypass)),
            fetch_timeout=data.get("fetch_timeout", defaults.fetch_timeout),
            max_engagement_age=timedelta(seconds=max_age) if max_age is not None else None,
            min_engagement_duration=_seconds(
                data, "min_engagement_duration", defaults.min_engagement_duration
            ),
            raise_on_invariant_violation=bool(
                data.get("raise_on_invariant_violation", defaults.raise_on_invariant_violation)
            ),
        )


def _seconds(data: dict[str, Any], key: str, default: timedelta) -> timedelta:
    if key not in data:
        return default
    return timedelta(seconds=float(data[key]))
