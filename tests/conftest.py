"""
Shared fixtures for the apng2webp test suite.
"""

from __future__ import annotations

import io
import struct
import tempfile
import zlib
from dataclasses import dataclass
from pathlib import Path

import pytest
from PIL import Image

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def rgba_bytes(color: tuple[int, int, int, int], width: int, height: int) -> bytes:
    """A solid RGBA buffer of width * height pixels."""
    return bytes(color) * (width * height)


def _chunk(chunk_type: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + chunk_type + data + struct.pack(">I", crc)


def _idat_payload(img: Image.Image) -> bytes:
    """Concatenated IDAT data of *img* saved as a standalone RGBA PNG."""
    buf = io.BytesIO()
    img.convert("RGBA").save(buf, format="PNG")
    data = buf.getvalue()
    pos, parts = 8, []
    while pos < len(data):
        length, ctype = struct.unpack(">I4s", data[pos:pos + 8])
        if ctype == b"IDAT":
            parts.append(data[pos + 8:pos + 8 + length])
        pos += 12 + length
    return b"".join(parts)


@dataclass
class FrameDef:
    """One frame of a synthetic APNG."""
    image: Image.Image
    x: int = 0
    y: int = 0
    delay_num: int = 100
    delay_den: int = 1000
    dispose: int = 0
    blend: int = 0


def build_apng(
    size: tuple[int, int],
    frames: list[FrameDef],
    num_plays: int = 0,
    num_frames: int | None = None,
    hidden_default: Image.Image | None = None,
    extra_chunks: tuple[tuple[bytes, bytes], ...] = (),
) -> bytes:
    """Assemble an 8-bit RGBA APNG with exact control over every fcTL."""
    width, height = size
    out = [PNG_SIGNATURE]
    out.append(_chunk(b"IHDR", struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0)))
    declared = len(frames) if num_frames is None else num_frames
    out.append(_chunk(b"acTL", struct.pack(">II", declared, num_plays)))
    for ctype, data in extra_chunks:
        out.append(_chunk(ctype, data))
    if hidden_default is not None:
        out.append(_chunk(b"IDAT", _idat_payload(hidden_default)))

    seq = 0
    for index, frm in enumerate(frames):
        w, h = frm.image.size
        out.append(_chunk(b"fcTL", struct.pack(
            ">IIIIIHHBB", seq, w, h, frm.x, frm.y,
            frm.delay_num, frm.delay_den, frm.dispose, frm.blend,
        )))
        seq += 1
        payload = _idat_payload(frm.image)
        if index == 0 and hidden_default is None:
            out.append(_chunk(b"IDAT", payload))
        else:
            out.append(_chunk(b"fdAT", struct.pack(">I", seq) + payload))
            seq += 1
    out.append(_chunk(b"IEND", b""))
    return b"".join(out)


class RecordingSink:
    """Sink double that records every call it receives."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []

    @property
    def frame_count(self) -> int:
        return sum(1 for c in self.calls if c[0] == "add" and c[1] is not None)

    @property
    def total_duration_ms(self) -> int:
        adds = [c for c in self.calls if c[0] == "add"]
        return adds[-1][2] if adds else 0

    def begin(self, width, height, loop_count=0):
        self.calls.append(("begin", width, height, loop_count))

    def add(self, pixels, timestamp_ms):
        self.calls.append(("add", pixels, timestamp_ms))

    def finish(self):
        self.calls.append(("finish",))
        return b"encoded"


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory(prefix="apng2webp_test_") as d:
        yield Path(d)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def red_blue_apng() -> bytes:
    """4x4 canvas: opaque red, then a 2x2 opaque blue square at (1, 1)."""
    return build_apng((4, 4), [
        FrameDef(Image.new("RGBA", (4, 4), (255, 0, 0, 255)), delay_num=100, delay_den=1000),
        FrameDef(Image.new("RGBA", (2, 2), (0, 0, 255, 255)), x=1, y=1,
                 delay_num=200, delay_den=1000, blend=1),
    ])
