"""
Codec configuration.

The defaults reproduce the historical behaviour of the codec: maximum
DEFLATE effort, animation records only for multi-frame streams, and
decoded pixels in BGRA order with opaque synthesized alpha.  A config can
be loaded from a YAML mapping, e.g.::

    compression_level: 6
    force_animation: true
    bgr_output: false
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from apeng.canonical import PixelTransform


@dataclass(frozen=True)
class CodecConfig:
    """Knobs shared by the reader and writer."""
    compression_level: int = 9     # zlib level, 0 -- 9
    chunk_size: int = 65536        # Max payload bytes per IDAT/fdAT chunk
    force_animation: bool = False  # Emit acTL/fcTL even for a single frame
    bgr_output: bool = True        # Decoded channel order BGRA (else RGBA)
    alpha_filler: int = 0xFF       # Alpha for sources without one

    def __post_init__(self) -> None:
        if not 0 <= self.compression_level <= 9:
            raise ValueError(
                f"compression_level must be 0..9, got {self.compression_level}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if not 0 <= self.alpha_filler <= 0xFF:
            raise ValueError(f"alpha_filler must be 0..255, got {self.alpha_filler}")

    @property
    def transform(self) -> PixelTransform:
        return PixelTransform(bgr=self.bgr_output, alpha_filler=self.alpha_filler)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> CodecConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown codec option(s): {', '.join(unknown)}")
        return cls(**data)


DEFAULT_CONFIG = CodecConfig()


def load_config(path: str | Path) -> CodecConfig:
    """Read a CodecConfig from a YAML file."""
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of codec options.")
    return CodecConfig.from_mapping(data)
