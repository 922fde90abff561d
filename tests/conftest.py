"""
Shared fixtures for the apeng test suite.
"""

from __future__ import annotations

import io
import tempfile
from pathlib import Path

import numpy as np
import pytest

from apeng.types import CanvasInfo, ColorFormat, FrameSequence
from apeng.writer import encode


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory(prefix="apeng_test_") as d:
        yield Path(d)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def rgba_canvas() -> CanvasInfo:
    """4x4 RGBA, tightly packed (row stride 16)."""
    return CanvasInfo(width=4, height=4, color_format=ColorFormat.RGBA, row_stride=16)


@pytest.fixture
def rgba_frames(rng) -> list[bytes]:
    """Three distinct 4x4 RGBA frames."""
    return [rng.integers(0, 256, size=4 * 4 * 4, dtype=np.uint8).tobytes()
            for _ in range(3)]


@pytest.fixture
def encode_to_bytes():
    """Encode a FrameSequence into an in-memory stream and return its bytes."""
    def _encode(frames: FrameSequence, canvas: CanvasInfo, config=None) -> bytes:
        out = io.BytesIO()
        encode(out, frames, canvas, config)
        return out.getvalue()

    return _encode
