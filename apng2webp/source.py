"""
Frame sources.

A frame source yields an ``AnimationMeta`` header followed by the declared
sub-frames in file order, each already normalised to 8-bit RGBA.

``ApngSource`` reads animated PNG files.  The chunk layout is walked
directly (signature, ``IHDR``, ``acTL``, ``fcTL``, ``IDAT``/``fdAT``,
``IEND``) and each frame's compressed data is decoded by Pillow from a
synthesized single-image PNG::

    signature + IHDR(frame size) + shared chunks + IDAT(frame data) + IEND

so palette, greyscale, 16-bit, interlaced, and ``tRNS`` inputs all go
through Pillow's own PNG decoder.  Frames are decoded lazily, one per
iteration step.
"""

from __future__ import annotations

import abc
import io
import logging
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Sequence

import numpy as np
from PIL import Image

from .exceptions import IoError, MalformedInputError, ResourceExhaustedError
from .timing import delay_to_ms
from .types import AnimationMeta, BlendOp, DisposeOp, SubFrame

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# Chunks copied into every synthesized per-frame PNG.
SHARED_CHUNKS = (b"PLTE", b"tRNS", b"gAMA", b"cHRM", b"sRGB", b"iCCP", b"sBIT")

_CRITICAL_CHUNKS = {b"IHDR", b"PLTE", b"IDAT", b"IEND"}

_IHDR = struct.Struct(">IIBBBBB")
_ACTL = struct.Struct(">II")
_FCTL = struct.Struct(">IIIIIHHBB")


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class FrameSource(abc.ABC):
    """Interface every frame source implements."""

    meta: AnimationMeta

    @abc.abstractmethod
    def frames(self) -> Iterator[SubFrame]:
        """Yield the declared sub-frames in file order."""


class FrameListSource(FrameSource):
    """Frame source over sub-frames that are already decoded."""

    def __init__(self, meta: AnimationMeta, sub_frames: Sequence[SubFrame]) -> None:
        self.meta = meta
        self._sub_frames = list(sub_frames)

    def frames(self) -> Iterator[SubFrame]:
        yield from self._sub_frames


# ---------------------------------------------------------------------------
# Chunk level
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Chunk:
    """A single PNG chunk."""
    type: bytes
    data: bytes
    offset: int

    @property
    def is_critical(self) -> bool:
        return self.type[:1].isupper()


def encode_chunk(chunk_type: bytes, data: bytes) -> bytes:
    """Serialize one chunk with its length prefix and CRC-32."""
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + chunk_type + data + struct.pack(">I", crc)


def iter_chunks(data: bytes) -> Iterator[Chunk]:
    """Walk the chunks of a PNG stream up to and including ``IEND``."""
    if not data.startswith(PNG_SIGNATURE):
        raise MalformedInputError("Not a PNG file (bad signature)")

    pos = len(PNG_SIGNATURE)
    while pos < len(data):
        if pos + 8 > len(data):
            raise MalformedInputError(f"Truncated chunk header at offset {pos}")
        length, chunk_type = struct.unpack(">I4s", data[pos:pos + 8])
        if not chunk_type.isalpha():
            raise MalformedInputError(f"Invalid chunk type {chunk_type!r} at offset {pos}")
        end = pos + 12 + length
        if end > len(data):
            raise MalformedInputError(
                f"Truncated {chunk_type.decode('ascii')} chunk at offset {pos}"
            )
        body = data[pos + 8:pos + 8 + length]
        (crc,) = struct.unpack(">I", data[end - 4:end])
        if zlib.crc32(chunk_type + body) & 0xFFFFFFFF != crc:
            raise MalformedInputError(
                f"CRC mismatch in {chunk_type.decode('ascii')} chunk at offset {pos}"
            )

        yield Chunk(type=chunk_type, data=body, offset=pos)
        pos = end

        if chunk_type == b"IEND":
            if pos < len(data):
                logger.warning("Ignoring %d trailing bytes after IEND", len(data) - pos)
            return

    raise MalformedInputError("Missing IEND chunk (file truncated)")


# ---------------------------------------------------------------------------
# APNG structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FrameControl:
    """Decoded ``fcTL`` chunk."""
    sequence: int
    width: int
    height: int
    x_offset: int
    y_offset: int
    delay_num: int
    delay_den: int
    dispose_op: DisposeOp
    blend_op: BlendOp

    @property
    def delay_ms(self) -> int:
        return delay_to_ms(self.delay_num, self.delay_den)

    @staticmethod
    def parse(data: bytes) -> FrameControl:
        if len(data) != _FCTL.size:
            raise MalformedInputError(f"fcTL chunk has {len(data)} bytes, expected {_FCTL.size}")
        (seq, width, height, x_off, y_off,
         delay_num, delay_den, dispose, blend) = _FCTL.unpack(data)
        try:
            dispose_op = DisposeOp(dispose)
        except ValueError:
            raise MalformedInputError(f"fcTL {seq}: unknown dispose_op {dispose}") from None
        try:
            blend_op = BlendOp(blend)
        except ValueError:
            raise MalformedInputError(f"fcTL {seq}: unknown blend_op {blend}") from None
        return FrameControl(
            sequence=seq, width=width, height=height,
            x_offset=x_off, y_offset=y_off,
            delay_num=delay_num, delay_den=delay_den,
            dispose_op=dispose_op, blend_op=blend_op,
        )


@dataclass
class _RawFrame:
    """A frame's control chunk and its still-compressed image data."""
    control: FrameControl
    parts: list[bytes] = field(default_factory=list)
    data_chunk: bytes = b""       # b"IDAT" or b"fdAT" once data is seen


# ---------------------------------------------------------------------------
# Pixel normalisation
# ---------------------------------------------------------------------------

def to_rgba(img: Image.Image) -> Image.Image:
    """Normalise any decoded PNG image to 8-bit RGBA."""
    if img.mode in ("I", "I;16", "I;16B", "I;16L"):
        # 16-bit greyscale: keep the high byte, honour a tRNS grey key.
        grey = np.asarray(img).astype(np.uint32)
        alpha = np.full(grey.shape, 255, dtype=np.uint8)
        key = img.info.get("transparency")
        if isinstance(key, int):
            alpha[grey == key] = 0
        value = (grey >> 8).astype(np.uint8)
        return Image.fromarray(np.dstack((value, value, value, alpha)))
    if img.mode != "RGBA":
        return img.convert("RGBA")
    return img


# ---------------------------------------------------------------------------
# APNG reader
# ---------------------------------------------------------------------------

class ApngSource(FrameSource):
    """Frame source backed by an animated PNG held in memory.

    A PNG without an ``acTL`` chunk is reported as a one-frame animation
    whose single frame is the default image.
    """

    def __init__(self, data: bytes, name: str = "<memory>") -> None:
        self.name = name
        self._ihdr = b""
        self._shared: list[Chunk] = []
        self._frames: list[_RawFrame] = []
        self._default_parts: list[bytes] = []
        self._animated = False
        self.meta = self._parse(data)
        logger.info(
            "%s: %dx%d, %d frames, %d plays",
            self.name, self.meta.width, self.meta.height,
            self.meta.frame_count, self.meta.loop_count,
        )

    @classmethod
    def from_path(cls, path: str | Path) -> ApngSource:
        """Read an APNG file from disk."""
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise IoError(f"Cannot read {path}: {exc.strerror or exc}", str(path)) from exc
        return cls(data, name=str(path))

    # ---- Parsing ------------------------------------------------------------

    def _parse(self, data: bytes) -> AnimationMeta:
        width = height = 0
        frame_count, loop_count = 1, 0
        expected_seq = 0
        current: _RawFrame | None = None
        seen_idat = False

        for chunk in iter_chunks(data):
            ctype = chunk.type

            if ctype == b"IHDR":
                if self._ihdr:
                    raise MalformedInputError("Duplicate IHDR chunk")
                if len(chunk.data) != _IHDR.size:
                    raise MalformedInputError(f"IHDR chunk has {len(chunk.data)} bytes")
                width, height = _IHDR.unpack(chunk.data)[:2]
                self._ihdr = chunk.data
                continue
            if not self._ihdr:
                raise MalformedInputError(
                    f"{ctype.decode('ascii')} chunk before IHDR"
                )

            if ctype == b"acTL":
                if seen_idat:
                    raise MalformedInputError("acTL chunk after IDAT")
                if len(chunk.data) != _ACTL.size:
                    raise MalformedInputError(f"acTL chunk has {len(chunk.data)} bytes")
                frame_count, loop_count = _ACTL.unpack(chunk.data)
                self._animated = True

            elif ctype == b"fcTL":
                control = FrameControl.parse(chunk.data)
                if control.sequence != expected_seq:
                    raise MalformedInputError(
                        f"fcTL sequence number {control.sequence}, expected {expected_seq}"
                    )
                expected_seq += 1
                current = _RawFrame(control=control)
                self._frames.append(current)

            elif ctype == b"IDAT":
                seen_idat = True
                self._default_parts.append(chunk.data)
                if current is not None:
                    # IDAT after the first fcTL makes the default image frame 0.
                    if len(self._frames) > 1 or current.data_chunk == b"fdAT":
                        raise MalformedInputError(
                            f"IDAT chunk after fcTL {current.control.sequence}"
                        )
                    current.data_chunk = b"IDAT"
                    current.parts.append(chunk.data)

            elif ctype == b"fdAT":
                if len(chunk.data) < 4:
                    raise MalformedInputError("fdAT chunk too short")
                (seq,) = struct.unpack(">I", chunk.data[:4])
                if seq != expected_seq:
                    raise MalformedInputError(
                        f"fdAT sequence number {seq}, expected {expected_seq}"
                    )
                expected_seq += 1
                if current is None:
                    raise MalformedInputError("fdAT chunk before any fcTL")
                if current.data_chunk == b"IDAT":
                    raise MalformedInputError(
                        f"fdAT chunk for frame {len(self._frames) - 1} which uses IDAT"
                    )
                current.data_chunk = b"fdAT"
                current.parts.append(chunk.data[4:])

            elif ctype in SHARED_CHUNKS:
                if seen_idat:
                    raise MalformedInputError(
                        f"{ctype.decode('ascii')} chunk after image data"
                    )
                self._shared.append(chunk)

            elif ctype == b"IEND":
                pass

            elif chunk.is_critical:
                raise MalformedInputError(
                    f"Unknown critical chunk {ctype.decode('ascii', 'replace')}"
                )
            else:
                logger.debug("Ignoring ancillary chunk %s", ctype.decode("ascii"))

        if not self._ihdr:
            raise MalformedInputError("Missing IHDR chunk")
        if not seen_idat:
            raise MalformedInputError("Missing IDAT chunk")
        if self._animated and self._frames and self._frames[0].data_chunk != b"IDAT":
            logger.debug("%s: default image is not part of the animation", self.name)

        return AnimationMeta(
            width=width, height=height,
            frame_count=frame_count if self._animated else 1,
            loop_count=loop_count,
        )

    # ---- Decoding -----------------------------------------------------------

    def _decode(self, parts: list[bytes], width: int, height: int, index: int) -> bytes:
        """Decode one frame's compressed data into RGBA bytes."""
        if not parts:
            raise MalformedInputError(f"Frame {index}: no image data")
        ihdr = struct.pack(">II", width, height) + self._ihdr[8:]
        png = b"".join((
            PNG_SIGNATURE,
            encode_chunk(b"IHDR", ihdr),
            *(encode_chunk(c.type, c.data) for c in self._shared),
            encode_chunk(b"IDAT", b"".join(parts)),
            encode_chunk(b"IEND", b""),
        ))
        try:
            with Image.open(io.BytesIO(png), formats=["PNG"]) as img:
                img.load()
                rgba = to_rgba(img)
        except Image.DecompressionBombError as exc:
            raise ResourceExhaustedError(f"Frame {index}: {exc}") from exc
        except MemoryError as exc:
            raise ResourceExhaustedError(f"Frame {index}: out of memory while decoding") from exc
        except (OSError, SyntaxError, ValueError, EOFError) as exc:
            raise MalformedInputError(f"Frame {index}: cannot decode image data: {exc}") from exc

        if rgba.size != (width, height):
            raise MalformedInputError(
                f"Frame {index}: decoded size {rgba.size} != declared {(width, height)}"
            )
        return rgba.tobytes()

    # ---- FrameSource --------------------------------------------------------

    def frames(self) -> Iterator[SubFrame]:
        meta = self.meta
        if not self._animated:
            yield SubFrame(
                x_offset=0, y_offset=0, width=meta.width, height=meta.height,
                delay_ms=0, dispose_op=DisposeOp.NONE, blend_op=BlendOp.SOURCE,
                pixels=self._decode(self._default_parts, meta.width, meta.height, 0),
            )
            return

        if len(self._frames) != meta.frame_count:
            raise MalformedInputError(
                f"acTL declares {meta.frame_count} frames but "
                f"{len(self._frames)} fcTL chunks were found"
            )
        for index, raw in enumerate(self._frames):
            c = raw.control
            yield SubFrame(
                x_offset=c.x_offset, y_offset=c.y_offset,
                width=c.width, height=c.height,
                delay_ms=c.delay_ms,
                dispose_op=c.dispose_op, blend_op=c.blend_op,
                pixels=self._decode(raw.parts, c.width, c.height, index),
            )
