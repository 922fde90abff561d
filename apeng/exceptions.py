"""
Custom exception hierarchy for apeng.

All apeng exceptions inherit from ApengError so callers can catch
the entire family with a single except clause.  Every class carries the
numeric ``status`` code exposed by the public API.
"""

from __future__ import annotations

import enum


class Status(enum.IntEnum):
    """Status codes reported to callers."""
    NO_ERROR = 0
    FILE_INVALID = 1      # Sink/source missing, unopenable or None.
    DATA_INVALID = 2      # Bad signature or inconsistent buffer arithmetic.
    ENCODE_ERROR = 3
    DECODE_ERROR = 4


class ApengError(Exception):
    """Base exception for all apeng errors."""

    status = Status.NO_ERROR


class FileInvalidError(ApengError):
    """Raised when a stream or file cannot be opened, read or written."""

    status = Status.FILE_INVALID


class DataInvalidError(ApengError):
    """Raised for malformed input: signature mismatch, bad sizes, bad canvas."""

    status = Status.DATA_INVALID


class EncodeError(ApengError):
    """Raised when the codec reports a fault while writing a stream."""

    status = Status.ENCODE_ERROR


class DecodeError(ApengError):
    """Raised when the codec reports a fault while reading a stream.

    ``frame_index`` is the frame being read when the fault occurred, or
    None if it happened outside the per-frame phase.
    """

    status = Status.DECODE_ERROR

    def __init__(self, message: str, frame_index: int | None = None) -> None:
        super().__init__(message)
        self.frame_index = frame_index
