"""Tests for PromptConfig and the injectable clocks."""

from __future__ import annotations

from datetime import timedelta

import pytest

from ember.src.clock import ManualClock, SystemClock
from ember.src.config import PromptConfig


class TestPromptConfig:
    """Tests for PromptConfig defaults, validation and serialization."""

    def test_default_values(self) -> None:
        cfg = PromptConfig()
        assert cfg.debounce_interval == timedelta(seconds=1)
        assert cfg.cooldown_interval == timedelta(hours=24)
        assert cfg.debug_bypass is False
        assert cfg.fetch_timeout == 10.0
        assert cfg.max_engagement_age is None
        assert cfg.min_engagement_duration == timedelta(0)
        assert cfg.cooldown_enabled is True

    def test_zero_cooldown_disables_it(self) -> None:
        assert PromptConfig(cooldown_interval=timedelta(0)).cooldown_enabled is False

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"debounce_interval": timedelta(seconds=-1)},
            {"cooldown_interval": timedelta(seconds=-1)},
            {"min_engagement_duration": timedelta(minutes=-5)},
            {"max_engagement_age": timedelta(days=-1)},
            {"fetch_timeout": 0},
        ],
    )
    def test_rejects_invalid_values(self, kwargs) -> None:
        with pytest.raises(ValueError):
            PromptConfig(**kwargs)

    def test_from_dict_keeps_defaults_for_missing_keys(self) -> None:
        cfg = PromptConfig.from_dict({"cooldown_interval": 0, "debug_bypass": True})
        assert cfg.cooldown_interval == timedelta(0)
        assert cfg.debug_bypass is True
        assert cfg.debounce_interval == timedelta(seconds=1)

    def test_from_dict_reads_to_dict_output(self) -> None:
        cfg = PromptConfig(
            max_engagement_age=timedelta(days=30),
            min_engagement_duration=timedelta(minutes=30),
            fetch_timeout=None,
        )
        assert PromptConfig.from_dict(cfg.to_dict()) == cfg

    def test_to_dict_uses_seconds(self) -> None:
        data = PromptConfig().to_dict()
        assert data["cooldown_interval"] == 86400.0
        assert data["max_engagement_age"] is None


class TestClocks:
    """Tests for SystemClock and ManualClock."""

    def test_system_clock_is_timezone_aware(self) -> None:
        assert SystemClock().now().tzinfo is not None

    def test_manual_clock_only_moves_when_told(self, now) -> None:
        clock = ManualClock(now)
        assert clock.now() == now
        assert clock.advance(seconds=5) == now + timedelta(seconds=5)
        assert clock.advance(timedelta(hours=1)) == now + timedelta(hours=1, seconds=5)

    def test_manual_clock_set(self, now) -> None:
        clock = ManualClock(now)
        clock.set(now - timedelta(days=1))
        assert clock.now() == now - timedelta(days=1)
