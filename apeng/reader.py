"""
Frame sequence reader.

Validates the signature, then drives a PngReadSession through the header,
animation-extension detection and per-frame pixel extraction.  Every row
comes out canonicalized (see ``apeng.canonical``), so the returned
CanvasInfo always describes 8-bit, 4-channel pixels with
``row_stride == width * 4``.

Only full-canvas frames are supported: a frame descriptor with a smaller
region or a non-zero offset is rejected with DataInvalidError.  Timing,
dispose and blend values are recorded on each Frame but never applied.
"""

from __future__ import annotations

import logging
from typing import BinaryIO

from apeng.canonical import canonical_canvas
from apeng.config import DEFAULT_CONFIG, CodecConfig
from apeng.exceptions import DataInvalidError, DecodeError, FileInvalidError
from apeng.session import PNG_SIGNATURE, PngReadSession
from apeng.types import CanvasInfo, Frame, FrameSequence

logger = logging.getLogger(__name__)


def read_signature(source: BinaryIO) -> None:
    """Consume and check the 8-byte signature; nothing more is read."""
    if source is None:
        raise FileInvalidError("Input stream is None.")
    if not callable(getattr(source, "read", None)):
        raise FileInvalidError(
            f"Input of type {type(source).__name__} has no read() method.")
    try:
        signature = source.read(len(PNG_SIGNATURE))
    except (OSError, ValueError) as exc:
        raise FileInvalidError(f"Cannot read input: {exc}") from exc
    if signature != PNG_SIGNATURE:
        raise DataInvalidError("Input does not start with the PNG signature.")


def decode(
    source: BinaryIO,
    config: CodecConfig | None = None,
) -> tuple[FrameSequence, CanvasInfo]:
    """Read every frame of an (animated) PNG stream.

    A stream without an animation-summary record yields exactly one frame.
    Any fault aborts the whole decode; no partial frame set is returned.
    """
    config = config or DEFAULT_CONFIG
    read_signature(source)

    with PngReadSession(source, sig_bytes=len(PNG_SIGNATURE)) as session:
        header = session.read_info()
        session.set_transform(config.transform)
        canvas = canonical_canvas(header.width, header.height)
        source_canvas = header.canvas

        frame_count = header.num_frames if header.animated else 1
        sequence = FrameSequence(loop_count=header.num_plays if header.animated else 0)
        stride = canvas.row_stride

        for index in range(frame_count):
            try:
                buffer = bytearray(canvas.frame_size)
                desc = None
                if header.animated:
                    desc = session.read_frame_head()
                    if not desc.covers(source_canvas):
                        raise DataInvalidError(
                            f"Frame {index}: region {desc.width}x{desc.height}"
                            f"+{desc.x_offset}+{desc.y_offset} does not cover the "
                            f"{canvas.width}x{canvas.height} canvas.")
                view = memoryview(buffer)
                session.read_image(
                    [view[r * stride:(r + 1) * stride] for r in range(canvas.height)])
            except DecodeError as exc:
                if exc.frame_index is None:
                    exc.frame_index = index
                raise

            data = bytes(buffer)
            if desc is not None:
                sequence.frames.append(Frame.from_descriptor(data, desc))
            else:
                sequence.frames.append(
                    Frame(data=data, width=canvas.width, height=canvas.height))

        session.read_end()

    if header.default_image_hidden:
        logger.info("Default image is not part of the animation; skipped.")
    logger.info("Decoded %d frame(s) of %dx%d (source %s, %d-bit, loop=%d).",
                len(sequence), canvas.width, canvas.height,
                header.color_format.name, header.bit_depth, sequence.loop_count)
    return sequence, canvas
