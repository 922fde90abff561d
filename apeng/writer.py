"""
Frame sequence writer.

Drives a PngWriteSession through the header, per-frame and trailer phases:

    signature, IHDR -> [acTL] -> [PLTE] -> ([fcTL], IDAT|fdAT...)* -> IEND

The animation records are emitted only for multi-frame sequences (or when
``CodecConfig.force_animation`` is set), so a single frame is written as a
plain still image.
"""

from __future__ import annotations

import logging
import zlib
from typing import BinaryIO, Iterator

from apeng.buffers import byte_view, check_frames
from apeng.config import DEFAULT_CONFIG, CodecConfig
from apeng.exceptions import DataInvalidError, EncodeError, FileInvalidError
from apeng.session import PngWriteSession
from apeng.types import BlendOp, CanvasInfo, DisposeOp, Frame, FrameSequence

logger = logging.getLogger(__name__)

_MAX_UINT16 = 0xFFFF
_MAX_UINT32 = 0xFFFFFFFF


def _check_writable(output: BinaryIO) -> None:
    if output is None:
        raise FileInvalidError("Output stream is None.")
    if not callable(getattr(output, "write", None)):
        raise FileInvalidError(
            f"Output of type {type(output).__name__} has no write() method.")


def _check_frame_fields(index: int, frame: Frame) -> None:
    if not (0 <= frame.delay_num <= _MAX_UINT16 and 0 <= frame.delay_den <= _MAX_UINT16):
        raise DataInvalidError(
            f"Frame {index}: delay {frame.delay_num}/{frame.delay_den} "
            f"does not fit 16-bit fields.")
    try:
        DisposeOp(frame.dispose_op)
        BlendOp(frame.blend_op)
    except ValueError as exc:
        raise DataInvalidError(f"Frame {index}: {exc}") from exc


def validate_sequence(frames: FrameSequence, canvas: CanvasInfo) -> None:
    """Check a sequence against its canvas before anything is written."""
    canvas.validate()
    check_frames(frames.buffers(), canvas.frame_size)
    if not 0 <= frames.loop_count <= _MAX_UINT32:
        raise DataInvalidError(f"Loop count {frames.loop_count} out of range.")
    for index, frame in enumerate(frames):
        _check_frame_fields(index, frame)


def _rows(data: bytes, canvas: CanvasInfo) -> Iterator[memoryview]:
    view = byte_view(data)
    stride = canvas.row_stride
    for r in range(canvas.height):
        yield view[r * stride:(r + 1) * stride]


def encode(
    output: BinaryIO,
    frames: FrameSequence,
    canvas: CanvasInfo,
    config: CodecConfig | None = None,
) -> None:
    """Write *frames* to *output* as one (animated) PNG stream.

    Raises FileInvalidError if the output cannot be written at all,
    DataInvalidError for inconsistent input and EncodeError for any fault
    after the header.  On failure the output is left as the session left
    it and must be discarded.
    """
    config = config or DEFAULT_CONFIG
    _check_writable(output)
    validate_sequence(frames, canvas)
    animated = len(frames) > 1 or config.force_animation

    with PngWriteSession(output, config.compression_level, config.chunk_size) as session:
        try:
            session.write_header(canvas)
        except (OSError, ValueError) as exc:
            raise FileInvalidError(f"Cannot write to output: {exc}") from exc

        try:
            if animated:
                session.write_animation_control(len(frames), frames.loop_count)
            session.write_info()
            for frame in frames:
                if animated:
                    session.write_frame_head(
                        canvas.width, canvas.height, 0, 0,
                        frame.delay_num, frame.delay_den,
                        frame.dispose_op, frame.blend_op)
                session.write_image(_rows(frame.data, canvas))
                session.write_frame_tail()
            session.write_end()
        except (OSError, ValueError, zlib.error) as exc:
            raise EncodeError(f"Encoding failed: {exc}") from exc

    logger.info("Encoded %d frame(s) of %dx%d (%s, %d-bit)%s.", len(frames),
                canvas.width, canvas.height, canvas.color_format.name,
                canvas.bit_depth, " as animation" if animated else "")
