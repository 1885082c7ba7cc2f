"""
Core data structures shared by the reader, compositor, and sinks.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from PIL import Image


class DisposeOp(enum.Enum):
    """What happens to a frame's region before the next frame is drawn."""
    NONE = 0          # Leave the canvas as-is.
    BACKGROUND = 1    # Clear the frame's rectangle to transparent black.
    PREVIOUS = 2      # Restore the canvas to its state before the frame.


class BlendOp(enum.Enum):
    """How a frame's pixels combine with the canvas underneath."""
    SOURCE = 0        # Overwrite color and alpha.
    OVER = 1          # Straight-alpha source-over compositing.


class OutputFormat(enum.Enum):
    """Supported output containers."""
    WEBP = "webp"
    APNG = "apng"


@dataclass(frozen=True)
class AnimationMeta:
    """Header information read once before any frame."""
    width: int
    height: int
    frame_count: int
    loop_count: int = 0       # 0 = loop forever

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)


@dataclass(frozen=True)
class SubFrame:
    """One frame as stored: a delta rectangle plus its timing and rules."""
    x_offset: int
    y_offset: int
    width: int
    height: int
    delay_ms: int
    dispose_op: DisposeOp
    blend_op: BlendOp
    pixels: bytes             # width * height * 4, RGBA, row-major

    @property
    def box(self) -> tuple[int, int, int, int]:
        """(left, upper, right, lower) in canvas coordinates."""
        return (
            self.x_offset,
            self.y_offset,
            self.x_offset + self.width,
            self.y_offset + self.height,
        )


@dataclass(frozen=True)
class CompositedFrame:
    """A fully resolved canvas-sized frame and how long it is shown."""
    pixels: bytes
    duration_ms: int


@dataclass(frozen=True)
class TimedFrame:
    """A frame placed on the output timeline.

    ``pixels is None`` marks the terminal event that closes out the
    display duration of the last real frame.
    """
    pixels: bytes | None
    timestamp_ms: int

    @property
    def is_terminal(self) -> bool:
        return self.pixels is None


@dataclass
class ConversionConfig:
    """Full configuration for a conversion job."""
    output_format: OutputFormat | None = None   # None = infer from suffix
    show_progress: bool = False
    max_canvas_pixels: int | None = Image.MAX_IMAGE_PIXELS  # None = unlimited
