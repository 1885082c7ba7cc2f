"""
Canvas compositing engine.

Turns a stream of partial, offset, delta-encoded sub-frames into complete
canvas-sized RGBA frames.  Each sub-frame is applied in three steps:

    1. Dispose the *previous* frame according to its own disposal rule.
    2. Snapshot the canvas (post-disposal, pre-blend) as the restore point
       for this frame's ``PREVIOUS`` disposal.
    3. Blend this frame's pixels into its rectangle.

and the resulting canvas is copied out.  The disposal applied in step 1
always belongs to the frame drawn on the previous call, never the
current one.

The canvas is a ``(height, width, 4)`` uint8 numpy array.  A Compositor
holds all of the state for one conversion and must not be shared between
threads.
"""

from __future__ import annotations

import logging

import numpy as np

from .exceptions import MalformedInputError, ResourceExhaustedError
from .types import BlendOp, CompositedFrame, DisposeOp, SubFrame

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pixel operations
# ---------------------------------------------------------------------------

def blend_over(dst: np.ndarray, src: np.ndarray) -> np.ndarray:
    """Straight-alpha source-over of *src* onto *dst* (both RGBA uint8).

    ``out.a = src.a + dst.a * (1 - src.a)`` and
    ``out.rgb = (src.rgb * src.a + dst.rgb * dst.a * (1 - src.a)) / out.a``,
    with fully transparent results forced to black.
    """
    s = src.astype(np.float64) / 255.0
    d = dst.astype(np.float64) / 255.0
    src_a = s[..., 3:4]
    dst_w = d[..., 3:4] * (1.0 - src_a)

    out_a = src_a + dst_w
    numerator = s[..., :3] * src_a + d[..., :3] * dst_w
    out_rgb = np.divide(
        numerator, out_a,
        out=np.zeros_like(numerator),
        where=out_a > 0.0,
    )

    out = np.concatenate((out_rgb, out_a), axis=-1)
    return np.rint(np.clip(out, 0.0, 1.0) * 255.0).astype(np.uint8)


def _allocate(shape: tuple[int, ...], what: str) -> np.ndarray:
    try:
        return np.zeros(shape, dtype=np.uint8)
    except MemoryError as exc:
        raise ResourceExhaustedError(f"Cannot allocate {what} of shape {shape}") from exc


# ---------------------------------------------------------------------------
# Compositor
# ---------------------------------------------------------------------------

class Compositor:
    """Owns the canvas and the rolling snapshot for one animation.

    Usage::

        compositor = Compositor(meta.width, meta.height)
        for sub_frame in source.frames():
            frame = compositor.composite(sub_frame)
    """

    def __init__(
        self,
        width: int,
        height: int,
        max_pixels: int | None = None,
    ) -> None:
        if width <= 0 or height <= 0:
            raise MalformedInputError(f"Invalid canvas size {width}x{height}")
        if max_pixels is not None and width * height > max_pixels:
            raise ResourceExhaustedError(
                f"Canvas {width}x{height} ({width * height} pixels) exceeds "
                f"the limit of {max_pixels} pixels"
            )
        self.width = width
        self.height = height
        self._canvas = _allocate((height, width, 4), "canvas")
        self._snapshot: np.ndarray | None = None
        self._previous: SubFrame | None = None
        self.frames_composited = 0

    @property
    def canvas(self) -> np.ndarray:
        """Read-only view of the current canvas."""
        view = self._canvas.view()
        view.flags.writeable = False
        return view

    # ---- Public entry point ---------------------------------------------

    def composite(self, sub_frame: SubFrame) -> CompositedFrame:
        """Apply *sub_frame* and return a copy of the resulting canvas."""
        src = self._validate(sub_frame)
        logger.debug(
            "Frame %d: %dx%d+%d+%d dispose=%s blend=%s delay=%dms",
            self.frames_composited, sub_frame.width, sub_frame.height,
            sub_frame.x_offset, sub_frame.y_offset,
            sub_frame.dispose_op.name, sub_frame.blend_op.name,
            sub_frame.delay_ms,
        )

        if self._previous is not None:
            self._dispose_previous(self._previous)
        self._take_snapshot()
        self._blend(sub_frame, src)

        self._previous = sub_frame
        self.frames_composited += 1
        return CompositedFrame(pixels=self._emit(), duration_ms=sub_frame.delay_ms)

    # ---- Steps ------------------------------------------------------------

    def _validate(self, sub_frame: SubFrame) -> np.ndarray:
        """Check bounds and buffer size; return the pixels as an array."""
        index = self.frames_composited
        if sub_frame.width <= 0 or sub_frame.height <= 0:
            raise MalformedInputError(
                f"Frame {index}: empty sub-frame {sub_frame.width}x{sub_frame.height}"
            )
        if sub_frame.x_offset < 0 or sub_frame.y_offset < 0:
            raise MalformedInputError(
                f"Frame {index}: negative offset "
                f"({sub_frame.x_offset}, {sub_frame.y_offset})"
            )
        left, upper, right, lower = sub_frame.box
        if right > self.width or lower > self.height:
            raise MalformedInputError(
                f"Frame {index}: rectangle {sub_frame.width}x{sub_frame.height}"
                f"+{left}+{upper} exceeds canvas {self.width}x{self.height}"
            )
        expected = sub_frame.width * sub_frame.height * 4
        if len(sub_frame.pixels) != expected:
            raise MalformedInputError(
                f"Frame {index}: pixel buffer is {len(sub_frame.pixels)} bytes, "
                f"expected {expected}"
            )
        return np.frombuffer(sub_frame.pixels, dtype=np.uint8).reshape(
            sub_frame.height, sub_frame.width, 4
        )

    def _dispose_previous(self, prev: SubFrame) -> None:
        """Apply the disposal rule recorded for the previously drawn frame."""
        if prev.dispose_op is DisposeOp.BACKGROUND:
            left, upper, right, lower = prev.box
            self._canvas[upper:lower, left:right] = 0
        elif prev.dispose_op is DisposeOp.PREVIOUS:
            self._canvas[...] = self._snapshot

    def _take_snapshot(self) -> None:
        """Record the canvas as it stands before the current frame is blended."""
        try:
            self._snapshot = self._canvas.copy()
        except MemoryError as exc:
            raise ResourceExhaustedError("Cannot allocate canvas snapshot") from exc

    def _blend(self, sub_frame: SubFrame, src: np.ndarray) -> None:
        left, upper, right, lower = sub_frame.box
        region = self._canvas[upper:lower, left:right]
        if sub_frame.blend_op is BlendOp.SOURCE:
            region[...] = src
        else:
            try:
                region[...] = blend_over(region, src)
            except MemoryError as exc:
                raise ResourceExhaustedError(
                    f"Frame {self.frames_composited}: cannot allocate blend buffers"
                ) from exc

    def _emit(self) -> bytes:
        try:
            return self._canvas.tobytes()
        except MemoryError as exc:
            raise ResourceExhaustedError("Cannot allocate output frame") from exc
