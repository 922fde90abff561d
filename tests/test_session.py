"""
Tests for the chunk-level read/write sessions.
"""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from apeng.canonical import CANONICAL_TRANSFORM
from apeng.exceptions import DecodeError, EncodeError
from apeng.session import PNG_SIGNATURE, PngReadSession, PngWriteSession, filter_scanlines
from apeng.types import BlendOp, CanvasInfo, ColorFormat, DisposeOp


def _full_head(session: PngWriteSession, canvas: CanvasInfo) -> None:
    session.write_frame_head(canvas.width, canvas.height, 0, 0, 12, 100,
                             DisposeOp.NONE, BlendOp.SOURCE)


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

class TestFilterScanlines:
    def test_every_row_gets_a_filter_byte(self):
        raw = np.arange(24, dtype=np.uint8).reshape(3, 8)
        out = filter_scanlines(raw, 4)
        assert len(out) == 3 * 9
        assert all(out[i * 9] in range(5) for i in range(3))

    def test_constant_rows_prefer_up_or_sub(self):
        raw = np.full((4, 16), 200, dtype=np.uint8)
        out = np.frombuffer(filter_scanlines(raw, 4), dtype=np.uint8).reshape(4, 17)
        # After the first row the residuals are all zero.
        assert (out[1:, 1:] == 0).all()

    @pytest.mark.parametrize("mode,bpp", [("L", 1), ("RGB", 3), ("RGBA", 4)])
    def test_pillow_decodes_filtered_rows(self, rng, mode, bpp):
        width, height = 7, 5
        raw = rng.integers(0, 256, size=(height, width * bpp), dtype=np.uint8)
        canvas = CanvasInfo(width=width, height=height,
                            color_format={"L": ColorFormat.GRAY,
                                          "RGB": ColorFormat.RGB,
                                          "RGBA": ColorFormat.RGBA}[mode])
        out = io.BytesIO()
        with PngWriteSession(out) as session:
            session.write_header(canvas)
            session.write_info()
            session.write_image(list(raw))
            session.write_frame_tail()
            session.write_end()
        out.seek(0)
        with Image.open(out) as img:
            assert img.mode == mode
            assert img.tobytes() == raw.tobytes()


# ---------------------------------------------------------------------------
# Write ordering
# ---------------------------------------------------------------------------

class TestWriteOrdering:
    canvas = CanvasInfo(width=2, height=2, color_format=ColorFormat.GRAY)
    rows = [b"\1\2", b"\3\4"]

    def test_image_before_info(self):
        with PngWriteSession(io.BytesIO()) as session:
            session.write_header(self.canvas)
            with pytest.raises(EncodeError):
                session.write_image(self.rows)

    def test_header_twice(self):
        with PngWriteSession(io.BytesIO()) as session:
            session.write_header(self.canvas)
            with pytest.raises(EncodeError):
                session.write_header(self.canvas)

    def test_animation_control_after_info(self):
        with PngWriteSession(io.BytesIO()) as session:
            session.write_header(self.canvas)
            session.write_info()
            with pytest.raises(EncodeError):
                session.write_animation_control(2, 0)

    def test_animated_frame_needs_head(self):
        with PngWriteSession(io.BytesIO()) as session:
            session.write_header(self.canvas)
            session.write_animation_control(1, 0)
            session.write_info()
            with pytest.raises(EncodeError, match="fcTL"):
                session.write_image(self.rows)

    def test_wrong_row_count(self):
        with PngWriteSession(io.BytesIO()) as session:
            session.write_header(self.canvas)
            session.write_info()
            with pytest.raises(EncodeError, match="rows"):
                session.write_image(self.rows[:1])

    def test_end_with_missing_frames(self):
        with PngWriteSession(io.BytesIO()) as session:
            session.write_header(self.canvas)
            session.write_animation_control(2, 0)
            session.write_info()
            _full_head(session, self.canvas)
            session.write_image(self.rows)
            session.write_frame_tail()
            with pytest.raises(EncodeError, match="declared 2"):
                session.write_end()

    def test_too_many_frame_heads(self):
        with PngWriteSession(io.BytesIO()) as session:
            session.write_header(self.canvas)
            session.write_animation_control(1, 0)
            session.write_info()
            _full_head(session, self.canvas)
            session.write_image(self.rows)
            session.write_frame_tail()
            with pytest.raises(EncodeError):
                _full_head(session, self.canvas)

    def test_still_image_holds_one_frame(self):
        with PngWriteSession(io.BytesIO()) as session:
            session.write_header(self.canvas)
            session.write_info()
            session.write_image(self.rows)
            session.write_frame_tail()
            with pytest.raises(EncodeError):
                session.write_image(self.rows)


# ---------------------------------------------------------------------------
# Read session
# ---------------------------------------------------------------------------

class TestReadSession:
    def _stream(self, n_frames: int = 2) -> io.BytesIO:
        canvas = CanvasInfo(width=2, height=1, color_format=ColorFormat.RGB)
        out = io.BytesIO()
        with PngWriteSession(out) as session:
            session.write_header(canvas)
            session.write_animation_control(n_frames, 4)
            session.write_info()
            for i in range(n_frames):
                _full_head(session, canvas)
                session.write_image([bytes([i, 0, 0, 0, 0, i])])
                session.write_frame_tail()
            session.write_end()
        out.seek(len(PNG_SIGNATURE))
        return out

    def test_header_fields(self):
        with PngReadSession(self._stream()) as session:
            header = session.read_info()
        assert header.animated
        assert (header.num_frames, header.num_plays) == (2, 4)
        assert header.color_format == ColorFormat.RGB
        assert not header.default_image_hidden

    def test_frames_in_order(self):
        src = self._stream(3)
        with PngReadSession(src) as session:
            session.read_info()
            for i in range(3):
                desc = session.read_frame_head()
                assert desc.sequence == (0 if i == 0 else 2 * i - 1)
                buf = bytearray(8)
                session.read_image([memoryview(buf)])
                assert buf == bytes([0, 0, i, 255, i, 0, 0, 255])
            session.read_end()
        # The session leaves the caller's stream open.
        assert not src.closed

    def test_image_before_frame_head(self):
        with PngReadSession(self._stream()) as session:
            session.read_info()
            with pytest.raises(DecodeError):
                session.read_image([memoryview(bytearray(8))])

    def test_transform_fixed_after_first_frame(self):
        with PngReadSession(self._stream()) as session:
            session.read_info()
            session.read_frame_head()
            session.read_image([memoryview(bytearray(8))])
            with pytest.raises(DecodeError):
                session.set_transform(CANONICAL_TRANSFORM)
