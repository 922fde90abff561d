"""
Core data structures shared by the reader, writer and buffer adapter.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from fractions import Fraction

import numpy as np

from apeng.exceptions import DataInvalidError


class ColorFormat(enum.IntEnum):
    """Pixel layout tags; the values are the PNG colour type codes."""
    GRAY = 0
    RGB = 2
    INDEXED = 3
    GRAY_ALPHA = 4
    RGBA = 6

    @property
    def channels(self) -> int:
        return _CHANNELS[self]


_CHANNELS = {
    ColorFormat.GRAY: 1,
    ColorFormat.RGB: 3,
    ColorFormat.INDEXED: 1,
    ColorFormat.GRAY_ALPHA: 2,
    ColorFormat.RGBA: 4,
}

# Bit depths the container permits for each colour type.
ALLOWED_BIT_DEPTHS: dict[ColorFormat, tuple[int, ...]] = {
    ColorFormat.GRAY: (1, 2, 4, 8, 16),
    ColorFormat.RGB: (8, 16),
    ColorFormat.INDEXED: (1, 2, 4, 8),
    ColorFormat.GRAY_ALPHA: (8, 16),
    ColorFormat.RGBA: (8, 16),
}


class DisposeOp(enum.IntEnum):
    """How a frame's region is cleared before the next frame is drawn."""
    NONE = 0
    BACKGROUND = 1
    PREVIOUS = 2


class BlendOp(enum.IntEnum):
    """How a frame's pixels combine with the existing canvas."""
    SOURCE = 0
    OVER = 1


DEFAULT_DELAY: tuple[int, int] = (12, 100)


@dataclass(frozen=True)
class CanvasInfo:
    """Per-stream metadata shared read-only by every frame."""
    width: int
    height: int
    color_format: ColorFormat = ColorFormat.RGBA
    bit_depth: int = 8
    row_stride: int = 0           # 0 = tightly packed (min_row_bytes)
    palette: bytes | None = None  # RGB triplets, INDEXED only

    def __post_init__(self) -> None:
        object.__setattr__(self, "color_format", ColorFormat(self.color_format))
        if self.row_stride == 0 and self.width > 0:
            object.__setattr__(self, "row_stride", self.min_row_bytes)

    @property
    def channels(self) -> int:
        return self.color_format.channels

    @property
    def min_row_bytes(self) -> int:
        """Bytes needed by one row of pixels without padding."""
        return (self.width * self.channels * self.bit_depth + 7) // 8

    @property
    def frame_size(self) -> int:
        return self.height * self.row_stride

    def validate(self) -> None:
        """Raise DataInvalidError if the canvas cannot describe a stream."""
        if self.width <= 0 or self.height <= 0:
            raise DataInvalidError(
                f"Canvas dimensions must be positive, got {self.width}x{self.height}."
            )
        if self.width > 0x7FFFFFFF or self.height > 0x7FFFFFFF:
            raise DataInvalidError("Canvas dimensions exceed 2^31 - 1.")
        if self.bit_depth not in ALLOWED_BIT_DEPTHS[self.color_format]:
            raise DataInvalidError(
                f"Bit depth {self.bit_depth} is not valid for "
                f"{self.color_format.name}."
            )
        if self.row_stride < self.min_row_bytes:
            raise DataInvalidError(
                f"Row stride {self.row_stride} is smaller than one row of "
                f"pixels ({self.min_row_bytes} bytes)."
            )
        if self.color_format == ColorFormat.INDEXED:
            if not self.palette or len(self.palette) % 3 or len(self.palette) > 768:
                raise DataInvalidError(
                    "Indexed canvases need a palette of 1 to 256 RGB triplets."
                )


@dataclass(frozen=True)
class FrameDescriptor:
    """One parsed frame-descriptor (fcTL) record."""
    sequence: int
    width: int
    height: int
    x_offset: int
    y_offset: int
    delay_num: int
    delay_den: int
    dispose_op: DisposeOp
    blend_op: BlendOp

    def covers(self, canvas: CanvasInfo) -> bool:
        """True when the frame spans the whole canvas at the origin."""
        return (self.width == canvas.width and self.height == canvas.height
                and self.x_offset == 0 and self.y_offset == 0)


@dataclass
class Frame:
    """One image of the sequence: a dense row-major pixel buffer.

    The timing, dispose and blend fields default to what the writer has
    always emitted (12/100 s, NONE, SOURCE).  ``width``/``height`` and the
    offsets are filled in on decode from the frame descriptor and are
    informational only.
    """
    data: bytes
    delay_num: int = DEFAULT_DELAY[0]
    delay_den: int = DEFAULT_DELAY[1]
    dispose_op: DisposeOp = DisposeOp.NONE
    blend_op: BlendOp = BlendOp.SOURCE
    width: int | None = None
    height: int | None = None
    x_offset: int = 0
    y_offset: int = 0

    @property
    def delay_seconds(self) -> Fraction:
        # A zero denominator means 1/100 s per the container rules.
        return Fraction(self.delay_num, self.delay_den or 100)

    @classmethod
    def from_descriptor(cls, data: bytes, desc: FrameDescriptor) -> Frame:
        return cls(
            data=data,
            delay_num=desc.delay_num,
            delay_den=desc.delay_den,
            dispose_op=desc.dispose_op,
            blend_op=desc.blend_op,
            width=desc.width,
            height=desc.height,
            x_offset=desc.x_offset,
            y_offset=desc.y_offset,
        )

    def to_array(self, canvas: CanvasInfo) -> np.ndarray:
        """Return the pixels as a (height, width, channels) array, padding dropped.

        Only byte-aligned layouts (8 or 16 bits per sample) are supported.
        """
        if canvas.bit_depth not in (8, 16):
            raise ValueError("to_array needs 8 or 16 bits per sample.")
        dtype = np.uint8 if canvas.bit_depth == 8 else np.dtype(">u2")
        rows = np.frombuffer(self.data, dtype=np.uint8).reshape(
            canvas.height, canvas.row_stride)
        packed = rows[:, :canvas.min_row_bytes]
        return np.ascontiguousarray(packed).view(dtype).reshape(
            canvas.height, canvas.width, canvas.channels)


@dataclass
class FrameSequence:
    """Ordered frames (playback order) plus stream-level animation data."""
    frames: list[Frame] = field(default_factory=list)
    loop_count: int = 0                       # 0 = infinite
    default_delay: tuple[int, int] = DEFAULT_DELAY

    def __len__(self) -> int:
        return len(self.frames)

    def __iter__(self):
        return iter(self.frames)

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @classmethod
    def from_buffers(
        cls,
        buffers: list[bytes],
        loop_count: int = 0,
        default_delay: tuple[int, int] = DEFAULT_DELAY,
    ) -> FrameSequence:
        """Wrap raw buffers as frames carrying the sequence default delay."""
        num, den = default_delay
        return cls(
            frames=[Frame(data=b, delay_num=num, delay_den=den) for b in buffers],
            loop_count=loop_count,
            default_delay=default_delay,
        )

    def buffers(self) -> list[bytes]:
        return [f.data for f in self.frames]
