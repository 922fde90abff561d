"""
Conversions between the three external frame-buffer layouts.

    blob               one contiguous buffer, frames back to back
    null-terminated    list of per-frame buffers ending with ``None``
    frame list         list of per-frame buffers plus an explicit count

Every function returns freshly allocated buffers owned by the caller and
never mutates its inputs.  Any bytes-like object (bytes, bytearray,
memoryview, C-contiguous numpy array) is accepted as a frame buffer.
"""

from __future__ import annotations

from typing import Any, Sequence

from apeng.exceptions import DataInvalidError


def _nbytes(buf: Any) -> int:
    try:
        return memoryview(buf).nbytes
    except TypeError as exc:
        raise DataInvalidError(
            f"Frame buffer of type {type(buf).__name__} is not bytes-like."
        ) from exc


def _copy(buf: Any) -> bytes:
    return memoryview(buf).tobytes()


def byte_view(buf: Any) -> memoryview:
    """Flat unsigned-byte view of *buf*.

    Strided or non-native buffers (a sliced numpy array, say) cannot be
    cast in place and are copied into C order first.
    """
    try:
        view = memoryview(buf)
    except TypeError as exc:
        raise DataInvalidError(
            f"Buffer of type {type(buf).__name__} is not bytes-like."
        ) from exc
    try:
        return view.cast("B")
    except TypeError:
        return memoryview(view.tobytes())


def check_frames(frames: Sequence[Any], frame_size: int) -> None:
    """Validate that there is at least one frame and every frame is exactly
    *frame_size* bytes."""
    if frames is None:
        raise DataInvalidError("Frame list is None.")
    if len(frames) == 0:
        raise DataInvalidError("Frame list is empty.")
    for i, buf in enumerate(frames):
        if buf is None:
            raise DataInvalidError(f"Frame {i}: buffer is None.")
        size = _nbytes(buf)
        if size != frame_size:
            raise DataInvalidError(
                f"Frame {i}: {size} bytes, expected {frame_size}."
            )


def blob_to_frames(blob: Any, frame_size: int, frame_count: int) -> list[bytes]:
    """Split a contiguous blob into *frame_count* frames of *frame_size* bytes.

    Raises DataInvalidError when the blob length is not a whole number of
    frames or disagrees with the declared count.
    """
    if blob is None:
        raise DataInvalidError("Blob is None.")
    if frame_size <= 0:
        raise DataInvalidError(f"Frame size must be positive, got {frame_size}.")
    view = byte_view(blob)
    blob_size = view.nbytes
    if blob_size % frame_size != 0:
        raise DataInvalidError(
            f"Blob size {blob_size} is not a multiple of the frame size "
            f"{frame_size}."
        )
    inferred = blob_size // frame_size
    if inferred != frame_count:
        raise DataInvalidError(
            f"Blob holds {inferred} frames but {frame_count} were declared."
        )
    return [
        view[i * frame_size:(i + 1) * frame_size].tobytes()
        for i in range(frame_count)
    ]


def null_terminated_to_frames(frames: Sequence[Any]) -> list[bytes]:
    """Collect the entries of a ``None``-terminated list.

    The count becomes explicit; anything after the terminator is ignored.
    """
    if frames is None:
        raise DataInvalidError("Null-terminated frame list is None.")
    out: list[bytes] = []
    for buf in frames:
        if buf is None:
            return out
        _nbytes(buf)
        out.append(_copy(buf))
    raise DataInvalidError("Frame list has no None terminator.")


def frames_to_blob(frames: Sequence[Any], frame_size: int) -> bytes:
    """Concatenate frames, in order, into one ``len(frames) * frame_size`` blob."""
    check_frames(frames, frame_size)
    blob = bytearray(len(frames) * frame_size)
    for i, buf in enumerate(frames):
        blob[i * frame_size:(i + 1) * frame_size] = byte_view(buf)
    return bytes(blob)


def frames_to_null_terminated(frames: Sequence[Any]) -> list[bytes | None]:
    """Return a new list of ``len(frames) + 1`` slots, the last one ``None``."""
    if frames is None:
        raise DataInvalidError("Frame list is None.")
    out: list[bytes | None] = [_copy(buf) for buf in frames]
    out.append(None)
    return out


def frame_list_from_count(frames: Sequence[Any], frame_count: int) -> list[bytes]:
    """Take the first *frame_count* entries of an explicit frame list."""
    if frames is None:
        raise DataInvalidError("Frame list is None.")
    if frame_count < 0 or frame_count > len(frames):
        raise DataInvalidError(
            f"Declared frame count {frame_count} does not fit a list of "
            f"{len(frames)} buffers."
        )
    return [_copy(buf) for buf in frames[:frame_count]]
