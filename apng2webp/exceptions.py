"""
Custom exception hierarchy for apng2webp.

All apng2webp exceptions inherit from Apng2WebpError so callers can catch
the entire family with a single except clause.
"""

from __future__ import annotations


class Apng2WebpError(Exception):
    """Base exception for all apng2webp errors."""


class IoError(Apng2WebpError):
    """Raised when the source is unreadable or the destination unwritable."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class MalformedInputError(Apng2WebpError):
    """Raised when the input is corrupt, truncated, or violates frame bounds."""


class NotAnimatedError(Apng2WebpError):
    """Raised when the input declares one frame or fewer."""

    def __init__(self, frame_count: int) -> None:
        super().__init__(
            f"Not an animated PNG (declares {frame_count} frame"
            f"{'' if frame_count == 1 else 's'})"
        )
        self.frame_count = frame_count


class ResourceExhaustedError(Apng2WebpError):
    """Raised when canvas, snapshot, or frame buffers cannot be allocated."""


class EncodeError(Apng2WebpError):
    """Raised when the animation sink rejects a frame or fails assembly."""
