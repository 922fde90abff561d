"""
Tests for the blob / frame-list / null-terminated buffer conversions.
"""

from __future__ import annotations

import numpy as np
import pytest

from apeng.buffers import (
    blob_to_frames,
    check_frames,
    frame_list_from_count,
    frames_to_blob,
    frames_to_null_terminated,
    null_terminated_to_frames,
)
from apeng.exceptions import DataInvalidError, Status


FRAME_SIZE = 64


def _frames(n: int = 3) -> list[bytes]:
    return [bytes([i]) * FRAME_SIZE for i in range(n)]


# ---------------------------------------------------------------------------
# Equivalence of the three views
# ---------------------------------------------------------------------------

class TestViewEquivalence:
    def test_list_blob_list(self):
        frames = _frames(4)
        blob = frames_to_blob(frames, FRAME_SIZE)
        assert len(blob) == 4 * FRAME_SIZE
        assert blob_to_frames(blob, FRAME_SIZE, 4) == frames

    def test_list_null_terminated_list(self):
        frames = _frames(3)
        nt = frames_to_null_terminated(frames)
        assert len(nt) == 4
        assert nt[-1] is None
        assert null_terminated_to_frames(nt) == frames

    def test_blob_is_concatenation_in_order(self):
        frames = [b"a" * 8, b"b" * 8, b"c" * 8]
        assert frames_to_blob(frames, 8) == b"a" * 8 + b"b" * 8 + b"c" * 8

    def test_numpy_buffers_accepted(self):
        arrays = [np.full((4, 4, 4), i, dtype=np.uint8) for i in range(2)]
        blob = frames_to_blob(arrays, FRAME_SIZE)
        assert blob_to_frames(blob, FRAME_SIZE, 2) == [a.tobytes() for a in arrays]

    def test_strided_numpy_buffers(self):
        base = np.arange(2 * FRAME_SIZE * 2, dtype=np.uint8).reshape(2 * FRAME_SIZE, 2)
        strided = base[:, 0]
        assert not strided.flags["C_CONTIGUOUS"]
        frames = blob_to_frames(strided, FRAME_SIZE, 2)
        assert b"".join(frames) == strided.tobytes()
        halves = [strided[:FRAME_SIZE], strided[FRAME_SIZE:]]
        assert frames_to_blob(halves, FRAME_SIZE) == strided.tobytes()

    def test_big_endian_samples_accepted(self):
        arr = np.arange(FRAME_SIZE // 2, dtype=">u2")
        assert frames_to_blob([arr], FRAME_SIZE) == arr.tobytes()

    def test_inputs_not_mutated(self):
        frames = [bytearray(b"x" * FRAME_SIZE), bytearray(b"y" * FRAME_SIZE)]
        blob = frames_to_blob(frames, FRAME_SIZE)
        out = blob_to_frames(bytearray(blob), FRAME_SIZE, 2)
        out_nt = frames_to_null_terminated(frames)
        assert frames == [bytearray(b"x" * FRAME_SIZE), bytearray(b"y" * FRAME_SIZE)]
        assert all(isinstance(b, bytes) for b in out)
        assert out_nt[0] is not frames[0]


# ---------------------------------------------------------------------------
# Blob validation
# ---------------------------------------------------------------------------

class TestBlobToFrames:
    def test_not_a_multiple(self):
        with pytest.raises(DataInvalidError) as info:
            blob_to_frames(b"\0" * (FRAME_SIZE * 2 + 1), FRAME_SIZE, 2)
        assert info.value.status == Status.DATA_INVALID

    def test_count_mismatch(self):
        with pytest.raises(DataInvalidError):
            blob_to_frames(b"\0" * (FRAME_SIZE * 3), FRAME_SIZE, 2)

    def test_none_blob(self):
        with pytest.raises(DataInvalidError):
            blob_to_frames(None, FRAME_SIZE, 1)

    def test_zero_frame_size(self):
        with pytest.raises(DataInvalidError):
            blob_to_frames(b"\0" * 8, 0, 1)

    def test_slices_are_independent_copies(self):
        blob = bytearray(b"\1" * FRAME_SIZE + b"\2" * FRAME_SIZE)
        frames = blob_to_frames(blob, FRAME_SIZE, 2)
        blob[0] = 9
        assert frames[0][0] == 1


# ---------------------------------------------------------------------------
# Null-terminated and explicit lists
# ---------------------------------------------------------------------------

class TestNullTerminated:
    def test_none_input(self):
        with pytest.raises(DataInvalidError):
            null_terminated_to_frames(None)

    def test_missing_terminator(self):
        with pytest.raises(DataInvalidError):
            null_terminated_to_frames([b"a" * 4, b"b" * 4])

    def test_entries_after_terminator_ignored(self):
        assert null_terminated_to_frames([b"a", None, b"b"]) == [b"a"]

    def test_empty_list_only_terminator(self):
        assert null_terminated_to_frames([None]) == []


class TestFrameList:
    def test_takes_declared_count(self):
        frames = _frames(3)
        assert frame_list_from_count(frames, 2) == frames[:2]

    def test_count_larger_than_list(self):
        with pytest.raises(DataInvalidError):
            frame_list_from_count(_frames(2), 3)

    def test_check_frames_wrong_size(self):
        frames = _frames(2) + [b"short"]
        with pytest.raises(DataInvalidError, match="Frame 2"):
            check_frames(frames, FRAME_SIZE)

    def test_check_frames_empty(self):
        with pytest.raises(DataInvalidError):
            check_frames([], FRAME_SIZE)

    def test_blob_rejects_wrong_sized_frame(self):
        with pytest.raises(DataInvalidError):
            frames_to_blob([b"\0" * FRAME_SIZE, b"\0" * 3], FRAME_SIZE)
