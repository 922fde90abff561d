"""
Public encode/decode entry points.

Three buffer layouts cross this boundary (see ``apeng.buffers``):

    encode_blob / decode_to_blob                      one contiguous blob
    encode_frame_list / decode_to_frame_list          list + explicit count
    encode_null_terminated / decode_to_null_terminated  list ending in None

Each stream-based function takes an open binary file object.  The
``save_*`` / ``load_*`` forms take a filename, open it, delegate and always
close it again.  Input is validated before any file is opened.

Usage::

    from apeng import ColorFormat, save_frame_list, load_blob

    save_frame_list("out.png", frames, len(frames), 4, 4,
                    ColorFormat.RGBA, row_stride=16)
    result = load_blob("out.png")
    result.frame_count, result.width, result.channels
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Sequence

from apeng.buffers import (
    byte_view,
    blob_to_frames,
    frame_list_from_count,
    frames_to_blob,
    frames_to_null_terminated,
    null_terminated_to_frames,
)
from apeng.config import CodecConfig
from apeng.exceptions import DataInvalidError, FileInvalidError, Status
from apeng.reader import decode
from apeng.types import DEFAULT_DELAY, CanvasInfo, ColorFormat, FrameSequence
from apeng.writer import encode, validate_sequence


# ---------------------------------------------------------------------------
# Decode results
# ---------------------------------------------------------------------------

@dataclass
class BlobResult:
    """All frames in one caller-owned contiguous buffer."""
    blob: bytes
    blob_size: int
    width: int
    height: int
    channels: int
    row_stride: int
    frame_count: int
    sequence: FrameSequence = field(default_factory=FrameSequence, repr=False)


@dataclass
class FrameListResult:
    """One caller-owned buffer per frame plus an explicit count."""
    frames: list[bytes]
    frame_count: int
    width: int
    height: int
    channels: int
    row_stride: int
    sequence: FrameSequence = field(default_factory=FrameSequence, repr=False)


@dataclass
class NullTerminatedResult:
    """One caller-owned buffer per frame; the list ends with None."""
    frames: list[bytes | None]
    width: int
    height: int
    channels: int
    row_stride: int
    sequence: FrameSequence = field(default_factory=FrameSequence, repr=False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_canvas(width: int, height: int, color_format: int, row_stride: int,
                 bit_depth: int, palette: bytes | None) -> CanvasInfo:
    try:
        fmt = ColorFormat(color_format)
    except ValueError as exc:
        raise DataInvalidError(f"Unknown colour format {color_format!r}.") from exc
    if row_stride <= 0:
        raise DataInvalidError(f"Row stride must be positive, got {row_stride}.")
    canvas = CanvasInfo(width=width, height=height, color_format=fmt,
                        bit_depth=bit_depth, row_stride=row_stride,
                        palette=bytes(palette) if palette is not None else None)
    canvas.validate()
    return canvas


def _prepared(buffers: list[bytes], canvas: CanvasInfo, delay: tuple[int, int],
              loop_count: int) -> FrameSequence:
    sequence = FrameSequence.from_buffers(buffers, loop_count=loop_count,
                                          default_delay=delay)
    validate_sequence(sequence, canvas)
    return sequence


def _open(path: str | Path, mode: str) -> BinaryIO:
    if path is None:
        raise FileInvalidError("Filename is None.")
    try:
        return open(path, mode)
    except OSError as exc:
        raise FileInvalidError(f"Cannot open {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Encode (stream)
# ---------------------------------------------------------------------------

def _prepare_blob(pixel_blob, blob_size, width, height, color_format, row_stride,
                  frame_count, bit_depth, palette, delay, loop_count):
    canvas = _make_canvas(width, height, color_format, row_stride, bit_depth, palette)
    if pixel_blob is None:
        raise DataInvalidError("Pixel blob is None.")
    view = byte_view(pixel_blob)
    available = view.nbytes
    if blob_size < 0 or blob_size > available:
        raise DataInvalidError(
            f"Declared blob size {blob_size} exceeds the {available} bytes supplied.")
    buffers = blob_to_frames(view[:blob_size], canvas.frame_size, frame_count)
    return _prepared(buffers, canvas, delay, loop_count), canvas


def _prepare_frame_list(frames, frame_count, width, height, color_format,
                        row_stride, bit_depth, palette, delay, loop_count):
    canvas = _make_canvas(width, height, color_format, row_stride, bit_depth, palette)
    buffers = frame_list_from_count(frames, frame_count)
    return _prepared(buffers, canvas, delay, loop_count), canvas


def _prepare_null_terminated(frames, width, height, color_format, row_stride,
                             bit_depth, palette, delay, loop_count):
    canvas = _make_canvas(width, height, color_format, row_stride, bit_depth, palette)
    buffers = null_terminated_to_frames(frames)
    return _prepared(buffers, canvas, delay, loop_count), canvas


def encode_blob(
    sink: BinaryIO,
    pixel_blob: Any,
    blob_size: int,
    width: int,
    height: int,
    color_format: int,
    row_stride: int,
    frame_count: int,
    *,
    bit_depth: int = 8,
    palette: bytes | None = None,
    delay: tuple[int, int] = DEFAULT_DELAY,
    loop_count: int = 0,
    config: CodecConfig | None = None,
) -> Status:
    """Encode *frame_count* frames stored back to back in *pixel_blob*."""
    sequence, canvas = _prepare_blob(pixel_blob, blob_size, width, height,
                                     color_format, row_stride, frame_count,
                                     bit_depth, palette, delay, loop_count)
    encode(sink, sequence, canvas, config)
    return Status.NO_ERROR


def encode_frame_list(
    sink: BinaryIO,
    frames: Sequence[Any],
    frame_count: int,
    width: int,
    height: int,
    color_format: int,
    row_stride: int,
    *,
    bit_depth: int = 8,
    palette: bytes | None = None,
    delay: tuple[int, int] = DEFAULT_DELAY,
    loop_count: int = 0,
    config: CodecConfig | None = None,
) -> Status:
    """Encode the first *frame_count* buffers of *frames*."""
    sequence, canvas = _prepare_frame_list(frames, frame_count, width, height,
                                           color_format, row_stride, bit_depth,
                                           palette, delay, loop_count)
    encode(sink, sequence, canvas, config)
    return Status.NO_ERROR


def encode_null_terminated(
    sink: BinaryIO,
    frames: Sequence[Any],
    width: int,
    height: int,
    color_format: int,
    row_stride: int,
    *,
    bit_depth: int = 8,
    palette: bytes | None = None,
    delay: tuple[int, int] = DEFAULT_DELAY,
    loop_count: int = 0,
    config: CodecConfig | None = None,
) -> Status:
    """Encode every buffer of *frames* up to its ``None`` terminator."""
    sequence, canvas = _prepare_null_terminated(frames, width, height,
                                                color_format, row_stride,
                                                bit_depth, palette, delay,
                                                loop_count)
    encode(sink, sequence, canvas, config)
    return Status.NO_ERROR


# ---------------------------------------------------------------------------
# Decode (stream)
# ---------------------------------------------------------------------------

def decode_to_blob(source: BinaryIO, *, config: CodecConfig | None = None) -> BlobResult:
    """Decode every frame into one contiguous canonical blob."""
    sequence, canvas = decode(source, config)
    blob = frames_to_blob(sequence.buffers(), canvas.frame_size)
    return BlobResult(
        blob=blob,
        blob_size=len(blob),
        width=canvas.width,
        height=canvas.height,
        channels=canvas.channels,
        row_stride=canvas.row_stride,
        frame_count=len(sequence),
        sequence=sequence,
    )


def decode_to_frame_list(source: BinaryIO, *,
                         config: CodecConfig | None = None) -> FrameListResult:
    """Decode every frame into its own canonical buffer."""
    sequence, canvas = decode(source, config)
    return FrameListResult(
        frames=sequence.buffers(),
        frame_count=len(sequence),
        width=canvas.width,
        height=canvas.height,
        channels=canvas.channels,
        row_stride=canvas.row_stride,
        sequence=sequence,
    )


def decode_to_null_terminated(source: BinaryIO, *,
                              config: CodecConfig | None = None) -> NullTerminatedResult:
    """Decode every frame into a ``None``-terminated list of buffers."""
    sequence, canvas = decode(source, config)
    return NullTerminatedResult(
        frames=frames_to_null_terminated(sequence.buffers()),
        width=canvas.width,
        height=canvas.height,
        channels=canvas.channels,
        row_stride=canvas.row_stride,
        sequence=sequence,
    )


# ---------------------------------------------------------------------------
# Filename forms
# ---------------------------------------------------------------------------

def save_blob(filename: str | Path, pixel_blob: Any, blob_size: int, width: int,
              height: int, color_format: int, row_stride: int, frame_count: int,
              *, bit_depth: int = 8, palette: bytes | None = None,
              delay: tuple[int, int] = DEFAULT_DELAY, loop_count: int = 0,
              config: CodecConfig | None = None) -> Status:
    sequence, canvas = _prepare_blob(pixel_blob, blob_size, width, height,
                                     color_format, row_stride, frame_count,
                                     bit_depth, palette, delay, loop_count)
    with _open(filename, "wb") as fp:
        encode(fp, sequence, canvas, config)
    return Status.NO_ERROR


def save_frame_list(filename: str | Path, frames: Sequence[Any], frame_count: int,
                    width: int, height: int, color_format: int, row_stride: int,
                    *, bit_depth: int = 8, palette: bytes | None = None,
                    delay: tuple[int, int] = DEFAULT_DELAY, loop_count: int = 0,
                    config: CodecConfig | None = None) -> Status:
    sequence, canvas = _prepare_frame_list(frames, frame_count, width, height,
                                           color_format, row_stride, bit_depth,
                                           palette, delay, loop_count)
    with _open(filename, "wb") as fp:
        encode(fp, sequence, canvas, config)
    return Status.NO_ERROR


def save_null_terminated(filename: str | Path, frames: Sequence[Any], width: int,
                         height: int, color_format: int, row_stride: int,
                         *, bit_depth: int = 8, palette: bytes | None = None,
                         delay: tuple[int, int] = DEFAULT_DELAY, loop_count: int = 0,
                         config: CodecConfig | None = None) -> Status:
    sequence, canvas = _prepare_null_terminated(frames, width, height,
                                                color_format, row_stride,
                                                bit_depth, palette, delay,
                                                loop_count)
    with _open(filename, "wb") as fp:
        encode(fp, sequence, canvas, config)
    return Status.NO_ERROR


def load_blob(filename: str | Path, *, config: CodecConfig | None = None) -> BlobResult:
    with _open(filename, "rb") as fp:
        return decode_to_blob(fp, config=config)


def load_frame_list(filename: str | Path, *,
                    config: CodecConfig | None = None) -> FrameListResult:
    with _open(filename, "rb") as fp:
        return decode_to_frame_list(fp, config=config)


def load_null_terminated(filename: str | Path, *,
                         config: CodecConfig | None = None) -> NullTerminatedResult:
    with _open(filename, "rb") as fp:
        return decode_to_null_terminated(fp, config=config)
