"""
Pixel canonicalization.

Whatever the source encoding (bit depth, channel count, palette, channel
order), decoded rows are normalized to one fixed in-memory layout:

    * 8 bits per channel (16-bit samples keep their high byte),
    * 4 channels, colour followed by alpha,
    * grayscale promoted to colour, palettes expanded (tRNS becomes alpha),
    * alpha synthesized as ``alpha_filler`` (0xFF) when the source has none,
    * blue-first channel order (B, G, R, A) unless ``bgr`` is disabled.

The transform is fixed for a whole read session; frames of one stream
never differ in layout.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from PIL import Image

from apeng.exceptions import DataInvalidError
from apeng.types import CanvasInfo, ColorFormat

CANONICAL_CHANNELS = 4
CANONICAL_BIT_DEPTH = 8

_WIDE_GRAY_MODES = ("I", "I;16", "I;16B", "I;16L", "I;16N")
_ALPHA_MODES = ("RGBA", "LA", "PA", "La", "RGBa")


@dataclass(frozen=True)
class PixelTransform:
    """The transform chain applied to every decoded row of a session."""
    bgr: bool = True
    alpha_filler: int = 0xFF

    @property
    def channel_order(self) -> str:
        return "BGRA" if self.bgr else "RGBA"


CANONICAL_TRANSFORM = PixelTransform()


def canonical_canvas(width: int, height: int) -> CanvasInfo:
    """CanvasInfo describing frames produced by the canonicalizer."""
    return CanvasInfo(
        width=width,
        height=height,
        color_format=ColorFormat.RGBA,
        bit_depth=CANONICAL_BIT_DEPTH,
        row_stride=width * CANONICAL_CHANNELS,
    )


def _finish(color: np.ndarray, alpha: np.ndarray | None,
            transform: PixelTransform) -> np.ndarray:
    """Stack (h, w, 3) colour and (h, w) alpha into the canonical layout."""
    h, w = color.shape[:2]
    out = np.empty((h, w, CANONICAL_CHANNELS), dtype=np.uint8)
    if transform.bgr:
        out[..., 0] = color[..., 2]
        out[..., 1] = color[..., 1]
        out[..., 2] = color[..., 0]
    else:
        out[..., :3] = color
    out[..., 3] = transform.alpha_filler if alpha is None else alpha
    return out


def _gray_to_color(gray: np.ndarray) -> np.ndarray:
    return np.repeat(gray[..., np.newaxis], 3, axis=2)


def color_key_alpha(samples: np.ndarray, key: tuple[int, ...]) -> np.ndarray:
    """Alpha plane for a tRNS colour key.

    *samples* is (height, width, channels) at the source's own precision;
    pixels whose every sample equals *key* become fully transparent.
    """
    match = np.all(samples.astype(np.uint32) == np.asarray(key, dtype=np.uint32), axis=-1)
    return np.where(match, 0, 0xFF).astype(np.uint8)


def canonicalize(image: Image.Image,
                 transform: PixelTransform = CANONICAL_TRANSFORM,
                 alpha: np.ndarray | None = None) -> np.ndarray:
    """Normalize a decoded Pillow image to a (height, width, 4) uint8 array.

    *alpha*, when given, replaces whatever alpha Pillow derives for the
    image; see ``color_key_alpha``.
    """
    mode = image.mode
    trns = image.info.get("transparency")

    if mode in _WIDE_GRAY_MODES:
        wide = np.asarray(image).astype(np.uint32)
        if alpha is None and isinstance(trns, int):
            alpha = color_key_alpha(wide[..., np.newaxis], (trns,))
        return _finish(_gray_to_color((wide >> 8).astype(np.uint8)), alpha, transform)

    rgba = np.asarray(image.convert("RGBA"))
    if alpha is None and (mode in _ALPHA_MODES or trns is not None):
        alpha = rgba[..., 3]
    return _finish(rgba[..., :3], alpha, transform)


def _unpack_samples(rows: np.ndarray, count: int, bit_depth: int) -> np.ndarray:
    """Unpack sub-byte samples (1, 2 or 4 bits, MSB first) from packed rows."""
    bits = np.unpackbits(rows, axis=1)[:, :count * bit_depth]
    bits = bits.reshape(rows.shape[0], count, bit_depth).astype(np.uint16)
    weights = (1 << np.arange(bit_depth - 1, -1, -1)).astype(np.uint16)
    return (bits * weights).sum(axis=2).astype(np.uint8)


def canonicalize_buffer(data: bytes, canvas: CanvasInfo,
                        transform: PixelTransform = CANONICAL_TRANSFORM) -> bytes:
    """Canonicalize one raw frame laid out as *canvas* describes.

    This applies the same normalization the reader applies to decoded rows,
    so ``decode(encode(frames))`` can be compared against
    ``canonicalize_buffer(frame)`` byte for byte.
    """
    canvas.validate()
    if len(data) != canvas.frame_size:
        raise DataInvalidError(
            f"Frame is {len(data)} bytes, canvas expects {canvas.frame_size}.")
    h, w, ch = canvas.height, canvas.width, canvas.channels
    rows = np.frombuffer(data, dtype=np.uint8).reshape(h, canvas.row_stride)
    rows = rows[:, :canvas.min_row_bytes]

    if canvas.bit_depth == 16:
        samples = (np.ascontiguousarray(rows).view(">u2") >> 8).astype(np.uint8)
    elif canvas.bit_depth == 8:
        samples = rows
    else:
        samples = _unpack_samples(np.ascontiguousarray(rows), w * ch, canvas.bit_depth)
    samples = samples.reshape(h, w, ch)

    fmt = canvas.color_format
    if fmt == ColorFormat.INDEXED:
        palette = np.frombuffer(canvas.palette, dtype=np.uint8).reshape(-1, 3)
        index = samples[..., 0]
        if index.max() >= len(palette):
            raise DataInvalidError("Pixel references a colour beyond the palette.")
        return _finish(palette[index], None, transform).tobytes()

    if fmt in (ColorFormat.GRAY, ColorFormat.GRAY_ALPHA) and canvas.bit_depth < 8:
        scale = 255 // ((1 << canvas.bit_depth) - 1)
        samples = samples * np.uint8(scale)

    if fmt == ColorFormat.GRAY:
        color, alpha = _gray_to_color(samples[..., 0]), None
    elif fmt == ColorFormat.GRAY_ALPHA:
        color, alpha = _gray_to_color(samples[..., 0]), samples[..., 1]
    elif fmt == ColorFormat.RGB:
        color, alpha = samples, None
    else:
        color, alpha = samples[..., :3], samples[..., 3]
    return _finish(color, alpha, transform).tobytes()
