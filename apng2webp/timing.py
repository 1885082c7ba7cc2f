"""
Frame timing.

APNG stores each frame's display time as a ``delay_num / delay_den``
fraction of a second.  Animation encoders instead want a timeline: every
frame is stamped with the moment it appears, and a final event marks
when the last frame stops being shown.  This module converts between the
two models in one place.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from .types import CompositedFrame, TimedFrame


def delay_to_ms(delay_num: int, delay_den: int) -> int:
    """Convert an fcTL delay fraction to whole milliseconds.

    A zero denominator means the numerator is already in milliseconds.
    """
    if delay_den == 0:
        return delay_num
    return delay_num * 1000 // delay_den


def accumulate_timestamps(frames: Iterable[CompositedFrame]) -> Iterator[TimedFrame]:
    """Turn per-frame durations into cumulative timestamps.

    The first frame is stamped 0 and each following frame at the sum of
    all earlier durations.  After the last frame a terminal
    ``TimedFrame(None, total)`` is yielded so the sink knows how long the
    final frame lasts.  Consumes *frames* lazily.
    """
    timestamp_ms = 0
    for frame in frames:
        yield TimedFrame(pixels=frame.pixels, timestamp_ms=timestamp_ms)
        timestamp_ms += frame.duration_ms
    yield TimedFrame(pixels=None, timestamp_ms=timestamp_ms)


def durations_from_timestamps(timestamps: list[int]) -> list[int]:
    """Recover per-frame durations from a timeline ending in the terminal event."""
    return [b - a for a, b in zip(timestamps, timestamps[1:])]
