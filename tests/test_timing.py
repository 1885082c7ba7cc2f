"""
Tests for delay conversion and the timestamp accumulator.
"""

from __future__ import annotations

import pytest

from apng2webp.timing import (
    accumulate_timestamps,
    delay_to_ms,
    durations_from_timestamps,
)
from apng2webp.types import CompositedFrame


def _frames(*durations: int) -> list[CompositedFrame]:
    return [CompositedFrame(pixels=bytes([i]) * 4, duration_ms=d)
            for i, d in enumerate(durations)]


class TestDelayToMs:
    @pytest.mark.parametrize("num,den,expected", [
        (1, 10, 100),
        (100, 1000, 100),
        (1, 3, 333),
        (0, 100, 0),
        (3, 1, 3000),
    ])
    def test_fraction(self, num, den, expected):
        assert delay_to_ms(num, den) == expected

    def test_zero_denominator_is_milliseconds(self):
        assert delay_to_ms(42, 0) == 42

    def test_zero_over_zero(self):
        assert delay_to_ms(0, 0) == 0


class TestAccumulateTimestamps:
    def test_two_frame_scenario(self):
        timed = list(accumulate_timestamps(_frames(100, 200)))
        assert [t.timestamp_ms for t in timed] == [0, 100, 300]
        assert [t.is_terminal for t in timed] == [False, False, True]

    def test_pixels_pass_through(self):
        frames = _frames(10, 20, 30)
        timed = list(accumulate_timestamps(frames))
        assert [t.pixels for t in timed[:-1]] == [f.pixels for f in frames]
        assert timed[-1].pixels is None

    def test_terminal_equals_total_duration(self):
        durations = [40, 0, 17, 1000, 3]
        timed = list(accumulate_timestamps(_frames(*durations)))
        assert timed[-1].timestamp_ms == sum(durations)

    def test_non_decreasing_with_zero_durations(self):
        stamps = [t.timestamp_ms for t in accumulate_timestamps(_frames(0, 0, 5, 0))]
        assert stamps == sorted(stamps)
        assert stamps == [0, 0, 0, 5, 5]

    def test_empty_input_yields_only_terminal(self):
        timed = list(accumulate_timestamps([]))
        assert len(timed) == 1
        assert timed[0].is_terminal and timed[0].timestamp_ms == 0

    def test_consumes_lazily(self):
        def source():
            yield CompositedFrame(pixels=b"\0" * 4, duration_ms=50)
            raise RuntimeError("read past first frame")

        it = accumulate_timestamps(source())
        first = next(it)
        assert first.timestamp_ms == 0
        with pytest.raises(RuntimeError):
            next(it)


class TestDurationsFromTimestamps:
    def test_inverse_of_accumulation(self):
        durations = [100, 250, 0, 70]
        stamps = [t.timestamp_ms for t in accumulate_timestamps(_frames(*durations))]
        assert durations_from_timestamps(stamps) == durations

    def test_single_event(self):
        assert durations_from_timestamps([0]) == []
