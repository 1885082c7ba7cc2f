"""
apng2webp -- Animated PNG to animated WebP converter.

Composites delta-encoded APNG frames (offsets, disposal and blend rules)
into full canvas frames and re-encodes them with accumulated timestamps.
"""

__version__ = "0.1.0"

from apng2webp.exceptions import (
    Apng2WebpError,
    EncodeError,
    IoError,
    MalformedInputError,
    NotAnimatedError,
    ResourceExhaustedError,
)
from apng2webp.types import (
    AnimationMeta,
    BlendOp,
    CompositedFrame,
    ConversionConfig,
    DisposeOp,
    OutputFormat,
    SubFrame,
    TimedFrame,
)

__all__ = [
    "AnimationMeta",
    "Apng2WebpError",
    "BlendOp",
    "CompositedFrame",
    "ConversionConfig",
    "DisposeOp",
    "EncodeError",
    "IoError",
    "MalformedInputError",
    "NotAnimatedError",
    "OutputFormat",
    "ResourceExhaustedError",
    "SubFrame",
    "TimedFrame",
]
