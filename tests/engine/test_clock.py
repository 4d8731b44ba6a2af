# tests/engine/test_clock.py
"""Tests for the Clock abstraction (SystemClock, MockClock, DEFAULT_CLOCK)."""

import pytest

from ch_optimizer.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock


class TestClockProtocol:
    def test_default_clock_is_system_clock(self) -> None:
        assert isinstance(DEFAULT_CLOCK, SystemClock)

    def test_clock_protocol_not_runtime_checkable(self) -> None:
        # Protocol without @runtime_checkable raises TypeError on isinstance
        with pytest.raises(TypeError):
            isinstance(object(), Clock)  # type: ignore[misc]


class TestSystemClock:
    def test_monotonic_never_goes_backwards(self) -> None:
        clock = SystemClock()
        first = clock.monotonic()
        second = clock.monotonic()
        assert isinstance(first, float)
        assert second >= first


class TestMockClock:
    def test_starts_at_given_time(self) -> None:
        assert MockClock(start=42.0).monotonic() == 42.0

    def test_default_start_is_zero(self) -> None:
        assert MockClock().monotonic() == 0.0

    def test_advance_accumulates(self) -> None:
        clock = MockClock()
        clock.advance(1.5)
        clock.advance(0.5)
        assert clock.monotonic() == 2.0

    def test_advance_zero_is_allowed(self) -> None:
        clock = MockClock(start=3.0)
        clock.advance(0)
        assert clock.monotonic() == 3.0

    def test_negative_advance_raises(self) -> None:
        clock = MockClock(start=10.0)
        with pytest.raises(ValueError, match="negative"):
            clock.advance(-1.0)
        assert clock.monotonic() == 10.0
