"""
apeng -- animated PNG frame-sequence codec.

Encodes an ordered sequence of same-sized frames into one animated PNG
stream and decodes such streams back into canonical BGRA frame buffers,
exchanged as a contiguous blob, a frame list with explicit count, or a
None-terminated frame list.
"""

__version__ = "0.1.0"

from apeng.api import (
    BlobResult,
    FrameListResult,
    NullTerminatedResult,
    decode_to_blob,
    decode_to_frame_list,
    decode_to_null_terminated,
    encode_blob,
    encode_frame_list,
    encode_null_terminated,
    load_blob,
    load_frame_list,
    load_null_terminated,
    save_blob,
    save_frame_list,
    save_null_terminated,
)
from apeng.config import CodecConfig, load_config
from apeng.exceptions import (
    ApengError,
    DataInvalidError,
    DecodeError,
    EncodeError,
    FileInvalidError,
    Status,
)
from apeng.reader import decode
from apeng.types import (
    BlendOp,
    CanvasInfo,
    ColorFormat,
    DisposeOp,
    Frame,
    FrameDescriptor,
    FrameSequence,
)
from apeng.writer import encode

__all__ = [
    "ApengError",
    "BlendOp",
    "BlobResult",
    "CanvasInfo",
    "CodecConfig",
    "ColorFormat",
    "DataInvalidError",
    "DecodeError",
    "DisposeOp",
    "EncodeError",
    "FileInvalidError",
    "Frame",
    "FrameDescriptor",
    "FrameListResult",
    "FrameSequence",
    "NullTerminatedResult",
    "Status",
    "decode",
    "decode_to_blob",
    "decode_to_frame_list",
    "decode_to_null_terminated",
    "encode",
    "encode_blob",
    "encode_frame_list",
    "encode_null_terminated",
    "load_blob",
    "load_config",
    "load_frame_list",
    "load_null_terminated",
    "save_blob",
    "save_frame_list",
    "save_null_terminated",
]
