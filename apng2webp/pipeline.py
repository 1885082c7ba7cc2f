"""
Conversion pipeline.

    source  -->  [Compositor]  -->  [Timestamps]  -->  sink  -->  bytes

Every stage runs in lockstep on one thread: a sub-frame is decoded,
composited, stamped, and handed to the sink before the next one is read.
The first error aborts the whole conversion; the destination file is only
written after the sink has finished encoding.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from tqdm import tqdm

from .assembly import AnimationSink, create_sink, format_for_path
from .compositor import Compositor
from .exceptions import IoError, MalformedInputError, NotAnimatedError
from .source import ApngSource, FrameSource
from .timing import accumulate_timestamps
from .types import CompositedFrame, ConversionConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Progress reporting
# ---------------------------------------------------------------------------

class ProgressReporter:
    """Thin wrapper around a tqdm bar that can be switched off."""

    def __init__(self, total: int, description: str = "Compositing",
                 enabled: bool = True) -> None:
        self.total = total
        self.completed = 0
        self._bar = tqdm(
            total=total, desc=description, unit="frame",
            file=sys.stderr, dynamic_ncols=True, disable=not enabled,
        )

    def update(self, n: int = 1) -> None:
        self.completed += n
        self._bar.update(n)

    def close(self) -> None:
        self._bar.close()


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class ConversionResult:
    input_path: Path
    output_path: Path
    width: int
    height: int
    frame_count: int
    loop_count: int
    duration_ms: int
    output_bytes: int
    elapsed_s: float

    def summary(self) -> str:
        loops = "forever" if self.loop_count == 0 else f"{self.loop_count}x"
        return (f"{self.frame_count} frames, {self.width}x{self.height}, "
                f"{self.duration_ms} ms, loop {loops} -> "
                f"{self.output_path} ({self.output_bytes} bytes, "
                f"{self.elapsed_s:.2f}s)")


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

def composite_frames(source: FrameSource, compositor: Compositor) -> Iterator[CompositedFrame]:
    """Composite every sub-frame of *source* in file order.

    The source must yield exactly the number of frames its header declares.
    """
    expected = source.meta.frame_count
    for sub_frame in source.frames():
        if compositor.frames_composited >= expected:
            raise MalformedInputError(f"Source yields more than the {expected} declared frames")
        yield compositor.composite(sub_frame)
    if compositor.frames_composited != expected:
        raise MalformedInputError(
            f"Source yields {compositor.frames_composited} of {expected} declared frames"
        )


def run_pipeline(
    source: FrameSource,
    sink: AnimationSink,
    config: ConversionConfig | None = None,
) -> bytes:
    """Drive *source* through compositing and timestamps into *sink*.

    Returns the encoded animation.  ``sink.begin`` is only issued once the
    first frame has been composited, so a broken first frame never
    touches the sink.

    Raises
    ------
    NotAnimatedError
        If the source declares one frame or fewer.
    """
    config = config or ConversionConfig()
    meta = source.meta
    if meta.frame_count <= 1:
        raise NotAnimatedError(meta.frame_count)

    compositor = Compositor(meta.width, meta.height, max_pixels=config.max_canvas_pixels)
    progress = ProgressReporter(meta.frame_count, enabled=config.show_progress)
    started = False
    try:
        for timed in accumulate_timestamps(composite_frames(source, compositor)):
            if not started:
                sink.begin(meta.width, meta.height, meta.loop_count)
                started = True
            sink.add(timed.pixels, timed.timestamp_ms)
            if not timed.is_terminal:
                progress.update()
    finally:
        progress.close()

    return sink.finish()


def write_atomic(path: Path, data: bytes) -> None:
    """Write *data* to *path* via a temporary sibling file."""
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp.write_bytes(data)
        tmp.replace(path)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise IoError(f"Cannot write {path}: {exc.strerror or exc}", str(path)) from exc


def convert_file(
    input_path: str | Path,
    output_path: str | Path,
    config: ConversionConfig | None = None,
) -> ConversionResult:
    """End-to-end: APNG file --> animated WebP (or APNG) file."""
    config = config or ConversionConfig()
    input_path = Path(input_path)
    output_path = Path(output_path)

    t_start = time.perf_counter()
    source = ApngSource.from_path(input_path)
    fmt = config.output_format or format_for_path(output_path)
    sink = create_sink(fmt)

    data = run_pipeline(source, sink, config)
    write_atomic(output_path, data)

    meta = source.meta
    result = ConversionResult(
        input_path=input_path,
        output_path=output_path,
        width=meta.width,
        height=meta.height,
        frame_count=sink.frame_count,
        loop_count=meta.loop_count,
        duration_ms=sink.total_duration_ms,
        output_bytes=len(data),
        elapsed_s=time.perf_counter() - t_start,
    )
    logger.info("Converted %s", result.summary())
    return result
