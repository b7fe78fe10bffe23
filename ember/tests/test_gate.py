"""Tests for ClockGate and LifetimeFlag."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from ember.src.config import PromptConfig
from ember.src.gate import LAST_PROMPT_KEY, ClockGate, GateVerdict, LifetimeFlag

# ===================================================================
# LifetimeFlag
# ===================================================================


class TestLifetimeFlag:
    def test_starts_clear(self) -> None:
        assert LifetimeFlag().is_set is False

    def test_latch_only_flips_once(self) -> None:
        flag = LifetimeFlag()
        assert flag.latch() is True
        assert flag.latch() is False
        assert flag.is_set is True

    def test_reset_clears(self) -> None:
        flag = LifetimeFlag()
        flag.latch()
        flag.reset()
        assert flag.is_set is False


# ===================================================================
# Debounce
# ===================================================================


class TestDebounce:
    """Sub-second re-entrancy guard."""

    def test_first_request_is_admitted(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        assert gate.admit(now) is True
        assert gate.last_check_at == now

    def test_request_inside_window_is_debounced(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.admit(now)
        later = now + timedelta(milliseconds=500)
        assert gate.check(later) is GateVerdict.DEBOUNCED
        assert gate.last_check_at == later

    def test_debounced_request_mutates_nothing_else(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.admit(now)
        gate.admit(now + timedelta(milliseconds=200))
        assert gate.last_prompt_at is None
        assert gate.lifetime.is_set is False
        assert gate.prompt_count == 0
        assert kv_store.keys() == []

    def test_burst_keeps_extending_window(self, kv_store, now) -> None:
        """Each call moves the window, so a steady burst never passes."""
        gate = ClockGate(kv_store)
        gate.admit(now)
        for step in range(1, 6):
            assert gate.admit(now + timedelta(milliseconds=800 * step)) is False

    def test_request_after_window_is_admitted(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.admit(now)
        assert gate.admit(now + timedelta(seconds=1)) is True

    def test_zero_debounce_never_debounces(self, kv_store, now) -> None:
        gate = ClockGate(kv_store, PromptConfig(debounce_interval=timedelta(0)))
        assert gate.admit(now) is True
        assert gate.admit(now) is True

    def test_concurrent_checks_admit_exactly_one(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        results: list[bool] = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            results.append(gate.admit(now))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1


# ===================================================================
# Cooldown and lifetime
# ===================================================================


class TestCooldownAndLifetime:
    def test_lifetime_latch_blocks_after_prompt(self, kv_store, now) -> None:
        gate = ClockGate(kv_store, PromptConfig(cooldown_interval=timedelta(0)))
        gate.record_prompt(now)
        assert gate.check(now + timedelta(minutes=1)) is GateVerdict.ALREADY_PROMPTED

    def test_cooldown_blocks_after_reset(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.record_prompt(now)
        gate.reset()
        assert gate.check(now + timedelta(hours=23)) is GateVerdict.COOLDOWN

    def test_cooldown_expires(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.record_prompt(now)
        gate.reset()
        assert gate.check(now + timedelta(hours=24)) is GateVerdict.ADMITTED

    def test_zero_cooldown_allows_prompt_after_reset(self, kv_store, now) -> None:
        gate = ClockGate(kv_store, PromptConfig(cooldown_interval=timedelta(0)))
        gate.record_prompt(now)
        gate.reset()
        assert gate.admit(now + timedelta(seconds=5)) is True

    def test_debug_bypass_ignores_lifetime_and_cooldown(self, kv_store, now) -> None:
        gate = ClockGate(kv_store, PromptConfig(debug_bypass=True))
        gate.record_prompt(now)
        assert gate.admit(now + timedelta(seconds=2)) is True

    def test_debug_bypass_still_debounces(self, kv_store, now) -> None:
        gate = ClockGate(kv_store, PromptConfig(debug_bypass=True))
        gate.admit(now)
        assert gate.check(now + timedelta(milliseconds=10)) is GateVerdict.DEBOUNCED

    def test_revalidate_does_not_move_debounce_window(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.admit(now)
        assert gate.revalidate(now + timedelta(seconds=30)) is GateVerdict.ADMITTED
        assert gate.last_check_at == now

    def test_revalidate_sees_commit(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.admit(now)
        gate.record_prompt(now)
        assert gate.revalidate(now) is GateVerdict.ALREADY_PROMPTED


# ===================================================================
# Recording and persistence
# ===================================================================


class TestRecordPrompt:
    def test_record_sets_state_and_persists(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.record_prompt(now)
        assert gate.last_prompt_at == now
        assert gate.lifetime.is_set is True
        assert gate.prompt_count == 1
        assert kv_store.get_date(LAST_PROMPT_KEY) == now

    def test_last_prompt_never_moves_backwards(self, kv_store, now) -> None:
        gate = ClockGate(kv_store, PromptConfig(debug_bypass=True))
        gate.record_prompt(now)
        gate.record_prompt(now - timedelta(hours=2))
        assert gate.last_prompt_at == now
        assert kv_store.get_date(LAST_PROMPT_KEY) == now
        assert gate.prompt_count == 2

    def test_reset_keeps_last_prompt(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.record_prompt(now)
        gate.reset()
        assert gate.lifetime.is_set is False
        assert gate.last_prompt_at == now

    def test_cooldown_survives_new_instance(self, kv_store, now) -> None:
        ClockGate(kv_store).record_prompt(now)
        restarted = ClockGate(kv_store)
        assert restarted.lifetime.is_set is False
        assert restarted.check(now + timedelta(hours=1)) is GateVerdict.COOLDOWN

    def test_clear_wipes_everything(self, kv_store, now) -> None:
        gate = ClockGate(kv_store)
        gate.admit(now)
        gate.record_prompt(now)
        gate.clear()
        assert gate.last_prompt_at is None
        assert gate.last_check_at is None
        assert gate.lifetime.is_set is False
        assert kv_store.get_date(LAST_PROMPT_KEY) is None


class TestPersistenceFailures:
    """The gate keeps working from memory when the store fails."""

    def test_load_failure_starts_empty(self, failing_store, now) -> None:
        gate = ClockGate(failing_store)
        assert gate.last_prompt_at is None
        assert gate.admit(now) is True

    def test_write_failure_keeps_in_memory_state(self, failing_store, now) -> None:
        gate = ClockGate(failing_store)
        gate.record_prompt(now)
        gate.reset()
        assert gate.last_prompt_at == now
        assert gate.check(now + timedelta(hours=1)) is GateVerdict.COOLDOWN

    def test_clear_failure_is_logged(self, failing_store, now, caplog) -> None:
        gate = ClockGate(failing_store)
        gate.record_prompt(now)
        with caplog.at_level("WARNING"):
            gate.clear()
        assert gate.last_prompt_at is None
        assert "failed to clear" in caplog.text


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        (timedelta(hours=1), GateVerdict.COOLDOWN),
        (timedelta(hours=23, minutes=59), GateVerdict.COOLDOWN),
        (timedelta(days=2), GateVerdict.ADMITTED),
    ],
)
def test_cooldown_boundaries(kv_store, now, offset, expected) -> None:
    gate = ClockGate(kv_store)
    gate.record_prompt(now)
    gate.reset()
    assert gate.check(now + offset) is expected
