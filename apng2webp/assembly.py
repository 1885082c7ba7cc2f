"""
Animation assembly.

Sinks receive full-canvas RGBA frames stamped on a timeline and assemble
them into an encoded animation:

    begin(width, height, loop_count)
    add(pixels, timestamp_ms)        # once per frame
    add(None, total_ms)              # terminal event
    finish() -> bytes

The timeline model ("time until the next event") is converted back into
per-frame durations inside ``finish``, right before the frames are handed
to Pillow.  Nothing is encoded until ``finish`` so a failure part-way
through the stream never produces output.
"""

from __future__ import annotations

import abc
import io
import logging
from pathlib import Path

from PIL import Image, features

from .exceptions import EncodeError, ResourceExhaustedError
from .timing import durations_from_timestamps
from .types import OutputFormat

logger = logging.getLogger(__name__)

MAX_TIMESTAMP_MS = 0xFFFFFFFF


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class AnimationSink(abc.ABC):
    """Collects timed frames and encodes them on ``finish``."""

    name: str = "abstract"

    def __init__(self) -> None:
        self.size: tuple[int, int] | None = None
        self.loop_count = 0
        self._frames: list[Image.Image] = []
        self._timestamps: list[int] = []
        self._terminated = False

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def total_duration_ms(self) -> int:
        return self._timestamps[-1] if self._timestamps else 0

    def begin(self, width: int, height: int, loop_count: int = 0) -> None:
        """Start a new animation of the given canvas size."""
        if self.size is not None:
            raise EncodeError(f"{self.name}: begin() called twice")
        if width <= 0 or height <= 0:
            raise EncodeError(f"{self.name}: invalid canvas size {width}x{height}")
        self.size = (width, height)
        self.loop_count = loop_count

    def add(self, pixels: bytes | None, timestamp_ms: int) -> None:
        """Add a frame, or the terminal event when *pixels* is None."""
        if self.size is None:
            raise EncodeError(f"{self.name}: add() called before begin()")
        if self._terminated:
            raise EncodeError(f"{self.name}: add() called after the terminal event")
        if not 0 <= timestamp_ms <= MAX_TIMESTAMP_MS:
            raise EncodeError(f"{self.name}: timestamp {timestamp_ms} out of range")
        if self._timestamps and timestamp_ms < self._timestamps[-1]:
            raise EncodeError(
                f"{self.name}: timestamp {timestamp_ms} precedes "
                f"previous {self._timestamps[-1]}"
            )

        if pixels is None:
            self._terminated = True
        else:
            width, height = self.size
            if len(pixels) != width * height * 4:
                raise EncodeError(
                    f"{self.name}: frame {len(self._frames)} has {len(pixels)} bytes, "
                    f"expected {width * height * 4}"
                )
            self._frames.append(Image.frombytes("RGBA", self.size, pixels))
        self._timestamps.append(timestamp_ms)

    def finish(self) -> bytes:
        """Encode the collected frames and return the animation bytes."""
        if not self._frames:
            raise EncodeError(f"{self.name}: no frames to encode")
        if not self._terminated:
            raise EncodeError(f"{self.name}: finish() called before the terminal event")

        durations = durations_from_timestamps(self._timestamps)
        buf = io.BytesIO()
        try:
            self._encode(buf, self._frames, durations)
        except MemoryError as exc:
            raise ResourceExhaustedError(f"{self.name}: out of memory while encoding") from exc
        except (OSError, ValueError, KeyError, RuntimeError) as exc:
            raise EncodeError(f"{self.name}: encoding failed: {exc}") from exc

        data = buf.getvalue()
        logger.info(
            "%s: encoded %d frames, %d ms, %d bytes",
            self.name, len(self._frames), self._timestamps[-1], len(data),
        )
        return data

    @abc.abstractmethod
    def _encode(self, buf: io.BytesIO, frames: list[Image.Image], durations: list[int]) -> None:
        """Write the encoded animation to *buf*."""


# ---------------------------------------------------------------------------
# WebP
# ---------------------------------------------------------------------------

class WebpSink(AnimationSink):
    """Animated WebP, encoded lossless with Pillow.

    WebP carries full 8-bit alpha and no palette limit, so composited
    frames are stored without any quality loss.
    """

    name = "webp"

    def _encode(self, buf: io.BytesIO, frames: list[Image.Image], durations: list[int]) -> None:
        if not features.check("webp"):
            raise EncodeError("Pillow was built without WebP support")
        frames[0].save(
            buf,
            format="WEBP",
            save_all=True,
            append_images=frames[1:],
            duration=durations,
            loop=self.loop_count,
            lossless=True,
        )


# ---------------------------------------------------------------------------
# APNG
# ---------------------------------------------------------------------------

class ApngSink(AnimationSink):
    """Flattened APNG: every frame is a full canvas drawn with no disposal."""

    name = "apng"

    def _encode(self, buf: io.BytesIO, frames: list[Image.Image], durations: list[int]) -> None:
        frames[0].save(
            buf,
            format="PNG",
            save_all=True,
            append_images=frames[1:],
            duration=durations,
            loop=self.loop_count,
            disposal=0,
            blend=0,
            default_image=False,
        )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

_SINKS: dict[OutputFormat, type[AnimationSink]] = {
    OutputFormat.WEBP: WebpSink,
    OutputFormat.APNG: ApngSink,
}

_SUFFIX_FORMATS = {
    ".png": OutputFormat.APNG,
    ".apng": OutputFormat.APNG,
    ".webp": OutputFormat.WEBP,
}


def format_for_path(path: str | Path) -> OutputFormat:
    """Infer the output format from a file suffix, defaulting to WebP."""
    return _SUFFIX_FORMATS.get(Path(path).suffix.lower(), OutputFormat.WEBP)


def create_sink(fmt: OutputFormat) -> AnimationSink:
    """Instantiate the sink for *fmt*."""
    sink_cls = _SINKS.get(fmt)
    if sink_cls is None:
        raise ValueError(f"Unsupported output format: {fmt}")
    return sink_cls()
