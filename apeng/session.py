"""
Scoped read/write sessions over the PNG chunk layer.

These sessions are the only place that touches chunk framing, CRCs and
DEFLATE.  Chunk framing and checksums go through Pillow's PNG plugin
(``putchunk`` / ``ChunkStream``), compression through zlib, scanline
filtering through numpy, and scanline decoding (unfiltering, sub-byte
samples, Adam7 de-interlacing) through ``PIL.Image`` on a standalone
in-memory PNG rebuilt for each frame.

The reader and writer drive a session strictly in stream order:

    write:  write_header -> [write_animation_control] -> write_info
            -> ( [write_frame_head] -> write_image -> write_frame_tail )*
            -> write_end

    read:   read_info -> set_transform
            -> ( [read_frame_head] -> read_image )* -> read_end

A session never closes the underlying stream; that belongs to whoever
opened it.
"""

from __future__ import annotations

import io
import logging
import struct
import sys
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Sequence

import numpy as np
from PIL import Image
from PIL.PngImagePlugin import ChunkStream, putchunk

from apeng.canonical import (
    CANONICAL_CHANNELS,
    CANONICAL_TRANSFORM,
    PixelTransform,
    canonicalize,
    color_key_alpha,
)
from apeng.exceptions import DecodeError, EncodeError
from apeng.types import (
    ALLOWED_BIT_DEPTHS,
    BlendOp,
    CanvasInfo,
    ColorFormat,
    DisposeOp,
    FrameDescriptor,
)

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

_IHDR = struct.Struct(">IIBBBBB")
_ACTL = struct.Struct(">II")
_FCTL = struct.Struct(">IIIIIHHBB")
_SEQ = struct.Struct(">I")
_TRNS_GRAY = struct.Struct(">H")
_TRNS_RGB = struct.Struct(">HHH")

_MAX_UINT31 = 0x7FFFFFFF

# Chunks the reader understands; any other critical chunk is an error.
_KNOWN_CRITICAL = {b"IHDR", b"PLTE", b"IDAT", b"IEND"}

# Errors Pillow and zlib raise on corrupt or truncated image data.
_PIXEL_ERRORS = (OSError, SyntaxError, ValueError, EOFError, zlib.error,
                 Image.DecompressionBombError)


def _is_critical(cid: bytes) -> bool:
    return not cid[0] & 0x20


# ---------------------------------------------------------------------------
# Scanline filtering
# ---------------------------------------------------------------------------

def filter_scanlines(raw: np.ndarray, bpp: int) -> bytes:
    """Filter every row of *raw* (height, row_bytes) and prefix filter types.

    Each row gets the filter (None, Sub, Up, Average, Paeth) whose residuals
    have the smallest sum of absolute values taken as signed bytes.
    """
    height = raw.shape[0]
    x = raw.astype(np.int16)
    a = np.zeros_like(x)
    a[:, bpp:] = x[:, :-bpp]
    b = np.zeros_like(x)
    b[1:] = x[:-1]
    c = np.zeros_like(x)
    c[1:, bpp:] = x[:-1, :-bpp]

    p = a + b - c
    pa, pb, pc = np.abs(p - a), np.abs(p - b), np.abs(p - c)
    paeth = np.where((pa <= pb) & (pa <= pc), a, np.where(pb <= pc, b, c))

    candidates = (np.stack([x, x - a, x - b, x - ((a + b) >> 1), x - paeth]) & 0xFF).astype(np.uint8)
    cost = np.abs(candidates.view(np.int8).astype(np.int32)).sum(axis=2)
    choice = cost.argmin(axis=0)

    out = np.empty((height, raw.shape[1] + 1), dtype=np.uint8)
    out[:, 0] = choice
    out[:, 1:] = candidates[choice, np.arange(height)]
    return out.tobytes()


# ---------------------------------------------------------------------------
# Write session
# ---------------------------------------------------------------------------

class PngWriteSession:
    """Write an (optionally animated) PNG stream one record at a time."""

    def __init__(self, fp: BinaryIO, compression_level: int = 9,
                 chunk_size: int = 65536) -> None:
        self.fp = fp
        self.compression_level = compression_level
        self.chunk_size = chunk_size
        self._canvas: CanvasInfo | None = None
        self._declared_frames: int | None = None
        self._sequence = 0
        self._frames_written = 0
        self._in_frame = False
        self._has_frame_head = False
        self._header_done = False
        self._compressor = None
        self._pending = bytearray()

    def __enter__(self) -> PngWriteSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._compressor = None
        self._pending = bytearray()
        self.fp = None

    # ---- header phase ----------------------------------------------------

    def write_header(self, canvas: CanvasInfo) -> None:
        """Emit the signature and the IHDR record."""
        if self._canvas is not None:
            raise EncodeError("Header already written.")
        self._canvas = canvas
        self.fp.write(PNG_SIGNATURE)
        putchunk(self.fp, b"IHDR", _IHDR.pack(
            canvas.width, canvas.height, canvas.bit_depth,
            int(canvas.color_format), 0, 0, 0))
        logger.debug("IHDR %dx%d depth=%d color=%s", canvas.width, canvas.height,
                     canvas.bit_depth, canvas.color_format.name)

    def write_animation_control(self, num_frames: int, num_plays: int) -> None:
        """Emit the animation-summary (acTL) record."""
        if self._canvas is None or self._header_done:
            raise EncodeError("acTL must follow IHDR and precede the image data.")
        if num_frames < 1:
            raise EncodeError("An animation needs at least one frame.")
        self._declared_frames = num_frames
        putchunk(self.fp, b"acTL", _ACTL.pack(num_frames, num_plays))
        logger.debug("acTL frames=%d plays=%d", num_frames, num_plays)

    def write_info(self) -> None:
        """Finish the header; the per-frame phase starts after this."""
        if self._canvas is None:
            raise EncodeError("write_info called before write_header.")
        if self._canvas.color_format == ColorFormat.INDEXED:
            putchunk(self.fp, b"PLTE", bytes(self._canvas.palette))
        self._header_done = True

    # ---- frame phase -----------------------------------------------------

    def write_frame_head(self, width: int, height: int, x_offset: int,
                         y_offset: int, delay_num: int, delay_den: int,
                         dispose_op: DisposeOp, blend_op: BlendOp) -> None:
        """Emit a frame-descriptor (fcTL) record for the next frame."""
        if not self._header_done or self._in_frame:
            raise EncodeError("fcTL written out of order.")
        if self._declared_frames is None:
            raise EncodeError("fcTL needs an acTL record first.")
        if self._frames_written >= self._declared_frames:
            raise EncodeError(
                f"More frames than the {self._declared_frames} declared in acTL.")
        putchunk(self.fp, b"fcTL", _FCTL.pack(
            self._sequence, width, height, x_offset, y_offset,
            delay_num, delay_den, int(dispose_op), int(blend_op)))
        logger.debug("fcTL seq=%d frame=%d delay=%d/%d", self._sequence,
                     self._frames_written, delay_num, delay_den)
        self._sequence += 1
        self._has_frame_head = True

    def write_image(self, rows: Iterable[bytes]) -> None:
        """Filter and compress one frame's rows, in row order.

        Each row may carry trailing padding; only the leading
        ``min_row_bytes`` of it are encoded.
        """
        canvas = self._canvas
        if not self._header_done or self._in_frame:
            raise EncodeError("Image data written out of order.")
        if self._declared_frames is not None and not self._has_frame_head:
            raise EncodeError("Animated frames need an fcTL record first.")
        if self._declared_frames is None and self._frames_written:
            raise EncodeError("A still image holds exactly one frame.")

        row_bytes = canvas.min_row_bytes
        raw = np.empty((canvas.height, row_bytes), dtype=np.uint8)
        count = 0
        for row in rows:
            if count >= canvas.height:
                raise EncodeError(f"More than {canvas.height} rows supplied.")
            raw[count] = np.frombuffer(row, dtype=np.uint8, count=row_bytes)
            count += 1
        if count != canvas.height:
            raise EncodeError(f"Expected {canvas.height} rows, got {count}.")

        bpp = max(1, canvas.channels * canvas.bit_depth // 8)
        self._compressor = zlib.compressobj(self.compression_level)
        self._pending = bytearray(self._compressor.compress(filter_scanlines(raw, bpp)))
        self._in_frame = True

    def write_frame_tail(self) -> None:
        """Flush the frame's compressed block as IDAT or fdAT chunks."""
        if not self._in_frame:
            raise EncodeError("write_frame_tail called outside a frame.")
        self._pending += self._compressor.flush()
        data = bytes(self._pending)
        first = self._frames_written == 0
        n_chunks = 0
        for start in range(0, len(data), self.chunk_size):
            piece = data[start:start + self.chunk_size]
            if first:
                putchunk(self.fp, b"IDAT", piece)
            else:
                putchunk(self.fp, b"fdAT", _SEQ.pack(self._sequence), piece)
                self._sequence += 1
            n_chunks += 1
        logger.debug("frame %d: %d bytes in %d %s chunk(s)", self._frames_written,
                     len(data), n_chunks, "IDAT" if first else "fdAT")
        self._compressor = None
        self._pending = bytearray()
        self._in_frame = False
        self._has_frame_head = False
        self._frames_written += 1

    def write_end(self) -> None:
        """Emit IEND after checking the frame count matches acTL."""
        if self._in_frame or not self._frames_written:
            raise EncodeError("Stream ended without complete image data.")
        if self._declared_frames is not None and self._frames_written != self._declared_frames:
            raise EncodeError(
                f"acTL declared {self._declared_frames} frames, "
                f"{self._frames_written} written.")
        putchunk(self.fp, b"IEND", b"")
        if hasattr(self.fp, "flush"):
            self.fp.flush()


# ---------------------------------------------------------------------------
# Read session
# ---------------------------------------------------------------------------

@dataclass
class StreamHeader:
    """Everything read_info learns before the first frame."""
    width: int
    height: int
    bit_depth: int
    color_format: ColorFormat
    interlace: int
    palette: bytes | None = None
    transparency: bytes | None = None
    num_frames: int = 1
    num_plays: int = 0
    animated: bool = False
    default_image_hidden: bool = False

    @property
    def canvas(self) -> CanvasInfo:
        """The canvas in the stream's own (source) pixel layout."""
        return CanvasInfo(
            width=self.width,
            height=self.height,
            color_format=self.color_format,
            bit_depth=self.bit_depth,
            palette=self.palette,
        )


class PngReadSession:
    """Read an (optionally animated) PNG stream one record at a time.

    *sig_bytes* is the number of signature bytes the caller already
    consumed from *fp* (normally all 8).
    """

    def __init__(self, fp: BinaryIO, sig_bytes: int = 8) -> None:
        self.fp = fp
        self._stream = ChunkStream(fp)
        if sig_bytes < len(PNG_SIGNATURE):
            rest = fp.read(len(PNG_SIGNATURE) - sig_bytes)
            if rest != PNG_SIGNATURE[sig_bytes:]:
                raise DecodeError("Not a PNG signature.")
        self._pushback: tuple[bytes, bytes] | None = None
        self._header: StreamHeader | None = None
        self._transform = CANONICAL_TRANSFORM
        self._sequence = 0
        self._frames_read = 0
        self._current: FrameDescriptor | None = None

    def __enter__(self) -> PngReadSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._pushback = None
        self._stream.close()
        self.fp = None

    # ---- chunk plumbing --------------------------------------------------

    def _read_chunk(self) -> tuple[bytes, bytes]:
        """Return the next (chunk type, payload) with its CRC verified."""
        if self._pushback is not None:
            chunk, self._pushback = self._pushback, None
            return chunk
        try:
            cid, _pos, length = self._stream.read()
        except struct.error as exc:
            raise DecodeError("Truncated stream: missing chunk header.") from exc
        except SyntaxError as exc:
            raise DecodeError(f"Corrupt chunk header: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise DecodeError(f"Read failed: {exc}") from exc
        if length > _MAX_UINT31:
            raise DecodeError(f"Chunk {cid!r} declares an invalid length {length}.")
        try:
            data = self.fp.read(length)
        except (OSError, ValueError) as exc:
            raise DecodeError(f"Read failed: {exc}") from exc
        if len(data) < length:
            raise DecodeError(f"Truncated stream inside chunk {cid!r}.")
        try:
            self._stream.crc(cid, data)
        except (SyntaxError, OSError) as exc:
            raise DecodeError(f"Checksum failure: {exc}") from exc
        return cid, data

    def _unread(self, cid: bytes, data: bytes) -> None:
        self._pushback = (cid, data)

    def _check_sequence(self, seq: int, cid: bytes) -> None:
        if seq != self._sequence:
            raise DecodeError(
                f"{cid.decode('ascii')} sequence number {seq}, expected {self._sequence}.")
        self._sequence += 1

    # ---- header phase ----------------------------------------------------

    def read_info(self) -> StreamHeader:
        """Parse IHDR and every record before the first image data."""
        cid, data = self._read_chunk()
        if cid != b"IHDR" or len(data) != _IHDR.size:
            raise DecodeError(f"Expected IHDR as first chunk, found {cid!r}.")
        width, height, depth, color, compression, filtering, interlace = _IHDR.unpack(data)
        if not (0 < width <= _MAX_UINT31 and 0 < height <= _MAX_UINT31):
            raise DecodeError(f"Invalid image dimensions {width}x{height}.")
        limit = Image.MAX_IMAGE_PIXELS
        if (limit and width * height > limit
                or width * height * CANONICAL_CHANNELS > sys.maxsize):
            raise DecodeError(
                f"Image dimensions {width}x{height} exceed the decoder pixel limit.")
        try:
            color_format = ColorFormat(color)
        except ValueError as exc:
            raise DecodeError(f"Unknown colour type {color}.") from exc
        if depth not in ALLOWED_BIT_DEPTHS[color_format]:
            raise DecodeError(f"Bit depth {depth} invalid for colour type {color}.")
        if compression != 0 or filtering != 0 or interlace not in (0, 1):
            raise DecodeError("Unsupported compression, filter or interlace method.")

        header = StreamHeader(width=width, height=height, bit_depth=depth,
                              color_format=color_format, interlace=interlace)
        while True:
            cid, data = self._read_chunk()
            if cid in (b"IDAT", b"fcTL"):
                if header.animated and cid == b"IDAT":
                    header.default_image_hidden = True
                self._unread(cid, data)
                break
            if cid == b"PLTE":
                header.palette = data
            elif cid == b"tRNS":
                header.transparency = data
            elif cid == b"acTL":
                if len(data) != _ACTL.size:
                    raise DecodeError("Malformed acTL record.")
                header.num_frames, header.num_plays = _ACTL.unpack(data)
                if header.num_frames == 0:
                    raise DecodeError("acTL declares zero frames.")
                header.animated = True
            elif cid == b"IEND":
                raise DecodeError("Stream ends before any image data.")
            elif _is_critical(cid) and cid not in _KNOWN_CRITICAL:
                raise DecodeError(f"Unknown critical chunk {cid!r}.")
        if color_format == ColorFormat.INDEXED and header.palette is None:
            raise DecodeError("Indexed image without a PLTE record.")

        logger.debug("IHDR %dx%d depth=%d color=%s interlace=%d animated=%s frames=%d",
                     width, height, depth, color_format.name, interlace,
                     header.animated, header.num_frames)
        self._header = header
        return header

    def set_transform(self, transform: PixelTransform) -> None:
        """Configure the canonicalization applied to every row read."""
        if self._frames_read:
            raise DecodeError("The pixel transform is fixed once frames are read.")
        self._transform = transform

    @property
    def row_bytes(self) -> int:
        """Bytes per canonical output row."""
        return self._header.width * CANONICAL_CHANNELS

    # ---- frame phase -----------------------------------------------------

    def _skip_default_image(self) -> None:
        skipped = 0
        while True:
            cid, data = self._read_chunk()
            if cid != b"IDAT":
                self._unread(cid, data)
                break
            skipped += len(data)
        logger.debug("Skipped hidden default image (%d compressed bytes).", skipped)

    def read_frame_head(self) -> FrameDescriptor:
        """Read the fcTL record of the next frame."""
        header = self._header
        if header is None or not header.animated:
            raise DecodeError("Frame descriptors need an animated stream.")
        if self._frames_read >= header.num_frames:
            raise DecodeError("All declared frames have already been read.")
        while True:
            cid, data = self._read_chunk()
            if cid == b"fcTL":
                break
            if cid == b"IDAT" and header.default_image_hidden and self._frames_read == 0:
                self._unread(cid, data)
                self._skip_default_image()
                continue
            if _is_critical(cid) or cid == b"fdAT":
                raise DecodeError(f"Expected fcTL for frame {self._frames_read}, found {cid!r}.")

        if len(data) != _FCTL.size:
            raise DecodeError("Malformed fcTL record.")
        seq, w, h, x, y, delay_num, delay_den, dispose, blend = _FCTL.unpack(data)
        self._check_sequence(seq, cid)
        if w == 0 or h == 0 or x + w > header.width or y + h > header.height:
            raise DecodeError(
                f"Frame region {w}x{h}+{x}+{y} lies outside the "
                f"{header.width}x{header.height} canvas.")
        try:
            desc = FrameDescriptor(
                sequence=seq, width=w, height=h, x_offset=x, y_offset=y,
                delay_num=delay_num, delay_den=delay_den,
                dispose_op=DisposeOp(dispose), blend_op=BlendOp(blend))
        except ValueError as exc:
            raise DecodeError(f"Invalid dispose/blend operator: {exc}") from exc
        self._current = desc
        return desc

    def _collect_frame_data(self) -> bytes:
        header = self._header
        use_idat = not header.animated or (
            self._frames_read == 0 and not header.default_image_hidden)
        wanted = b"IDAT" if use_idat else b"fdAT"
        parts: list[bytes] = []
        while True:
            cid, data = self._read_chunk()
            if cid != wanted:
                self._unread(cid, data)
                break
            if wanted == b"fdAT":
                if len(data) < _SEQ.size:
                    raise DecodeError("Malformed fdAT record.")
                self._check_sequence(_SEQ.unpack_from(data)[0], cid)
                data = data[_SEQ.size:]
            parts.append(data)
        if not parts:
            raise DecodeError(f"No {wanted.decode('ascii')} data for frame {self._frames_read}.")
        return b"".join(parts)

    def _decode_pixels(self, width: int, height: int, compressed: bytes,
                       rawmode: str | None = None) -> Image.Image:
        """Decode one frame by handing Pillow a standalone single-image PNG.

        *rawmode* overrides the unpacker Pillow picks for the scanlines.
        """
        header = self._header
        png = io.BytesIO()
        png.write(PNG_SIGNATURE)
        putchunk(png, b"IHDR", _IHDR.pack(
            width, height, header.bit_depth, int(header.color_format),
            0, 0, header.interlace))
        if header.palette is not None:
            putchunk(png, b"PLTE", header.palette)
        if header.transparency is not None:
            putchunk(png, b"tRNS", header.transparency)
        putchunk(png, b"IDAT", compressed)
        putchunk(png, b"IEND", b"")
        png.seek(0)
        try:
            image = Image.open(png, formats=["PNG"])
            if rawmode is not None:
                image.tile = [(name, extents, offset, rawmode)
                              for name, extents, offset, _args in image.tile]
            image.load()
        except _PIXEL_ERRORS as exc:
            raise DecodeError(f"Corrupt image data: {exc}") from exc
        if image.size != (width, height):
            raise DecodeError(f"Decoded size {image.size} != {(width, height)}.")
        return image

    def _key_alpha(self, image: Image.Image, width: int, height: int,
                   compressed: bytes) -> np.ndarray | None:
        """Alpha plane for tRNS keys Pillow matches against reduced pixels.

        Pillow compares the raw key with 8-bit output, which never matches
        for 16-bit colour or 1/2/4-bit gray sources.  Those are keyed here
        at the source precision; everything else is left to Pillow.
        """
        header = self._header
        trns = header.transparency
        if trns is None:
            return None
        if header.color_format == ColorFormat.RGB and header.bit_depth == 16:
            if len(trns) < _TRNS_RGB.size:
                raise DecodeError("Malformed tRNS record.")
            low = self._decode_pixels(width, height, compressed, rawmode="RGB;16L")
            samples = (np.asarray(image).astype(np.uint16) << 8) | np.asarray(low)
            return color_key_alpha(samples, _TRNS_RGB.unpack_from(trns))
        if header.color_format == ColorFormat.GRAY and header.bit_depth < 8:
            if len(trns) < _TRNS_GRAY.size:
                raise DecodeError("Malformed tRNS record.")
            scale = 255 // ((1 << header.bit_depth) - 1)
            samples = np.asarray(image.convert("L")) // scale
            return color_key_alpha(samples[..., np.newaxis], _TRNS_GRAY.unpack_from(trns))
        return None

    def read_image(self, rows: Sequence[memoryview]) -> None:
        """Decode the current frame and write canonical rows into *rows*."""
        header = self._header
        if header is None:
            raise DecodeError("read_image called before read_info.")
        if header.animated and self._current is None:
            raise DecodeError("read_image called before read_frame_head.")
        if not header.animated and self._frames_read:
            raise DecodeError("A still image holds exactly one frame.")
        if self._current is not None:
            width, height = self._current.width, self._current.height
        else:
            width, height = header.width, header.height
        if len(rows) != height:
            raise DecodeError(f"Frame has {height} rows, {len(rows)} supplied.")

        compressed = self._collect_frame_data()
        image = self._decode_pixels(width, height, compressed)
        alpha = self._key_alpha(image, width, height, compressed)
        pixels = canonicalize(image, self._transform, alpha)
        row_len = width * CANONICAL_CHANNELS
        for index, row in enumerate(rows):
            row[:row_len] = pixels[index].tobytes()
        logger.debug("frame %d decoded (%dx%d, %s)", self._frames_read, width,
                     height, self._transform.channel_order)
        self._current = None
        self._frames_read += 1

    def read_end(self) -> None:
        """Consume the remaining records up to and including IEND."""
        header = self._header
        while True:
            cid, data = self._read_chunk()
            if cid == b"IEND":
                return
            if cid in (b"fcTL", b"fdAT") and header.animated:
                raise DecodeError(
                    f"More frame data than the {header.num_frames} frames declared.")
            if _is_critical(cid):
                raise DecodeError(f"Unexpected chunk {cid!r} after the last frame.")
