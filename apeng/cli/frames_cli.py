"""
CLI commands for inspecting, unpacking and packing animated PNGs.

Usage:
    apeng info anim.png
    apeng unpack anim.png frames/
    apeng pack anim.png frame_*.png --delay 1/10 --loop 0
"""

from __future__ import annotations

import argparse
import dataclasses
import re
import sys
from pathlib import Path

from PIL import Image

from ..api import load_frame_list, save_frame_list
from ..config import DEFAULT_CONFIG, CodecConfig, load_config
from ..exceptions import ApengError
from ..types import ColorFormat

_DELAY_RE = re.compile(r"^(\d+)/(\d+)$")


def parse_delay(raw: str) -> tuple[int, int]:
    """Parse ``NUM/DEN`` seconds, e.g. ``12/100``."""
    m = _DELAY_RE.match(raw.strip())
    if not m:
        raise argparse.ArgumentTypeError(f"Delay must look like NUM/DEN, got '{raw}'")
    num, den = int(m.group(1)), int(m.group(2))
    if num > 0xFFFF or den > 0xFFFF:
        raise argparse.ArgumentTypeError("Delay numerator and denominator must be < 65536")
    return num, den


def _config(args: argparse.Namespace) -> CodecConfig:
    if args.config:
        return load_config(args.config)
    return DEFAULT_CONFIG


def cmd_info(args: argparse.Namespace) -> int:
    """Handler for ``apeng info``."""
    try:
        result = load_frame_list(args.file, config=_config(args))
    except (ApengError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    seq = result.sequence
    loop = "infinite" if seq.loop_count == 0 else str(seq.loop_count)
    print(f"{args.file}: {result.width}x{result.height}, "
          f"{result.frame_count} frame(s), loop {loop}")
    print(f"  {'#':>4}   {'delay':>9}   {'seconds':>8}   dispose      blend")
    for i, frame in enumerate(seq.frames):
        delay = f"{frame.delay_num}/{frame.delay_den}"
        print(f"  {i:>4}   {delay:>9}   {float(frame.delay_seconds):>8.3f}   "
              f"{frame.dispose_op.name:<10}   {frame.blend_op.name}")
    return 0


def cmd_unpack(args: argparse.Namespace) -> int:
    """Handler for ``apeng unpack``: one RGBA PNG per frame."""
    try:
        config = dataclasses.replace(_config(args), bgr_output=False)
        result = load_frame_list(args.file, config=config)
    except (ApengError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    for i, data in enumerate(result.frames):
        img = Image.frombytes("RGBA", (result.width, result.height), data)
        img.save(out_dir / f"{args.prefix}{i:04d}.png", format="PNG")
    print(f"Wrote {result.frame_count} frame(s) to {out_dir}")
    return 0


def cmd_pack(args: argparse.Namespace) -> int:
    """Handler for ``apeng pack``: still images -> one animated PNG."""
    frames = []
    size = None
    for path in args.frames:
        try:
            with Image.open(path) as img:
                rgba = img.convert("RGBA")
        except OSError as exc:
            print(f"Error: cannot read {path}: {exc}", file=sys.stderr)
            return 1
        if size is None:
            size = rgba.size
        elif rgba.size != size:
            print(f"Error: {path} is {rgba.size[0]}x{rgba.size[1]}, "
                  f"expected {size[0]}x{size[1]}.", file=sys.stderr)
            return 1
        frames.append(rgba.tobytes())

    width, height = size
    try:
        save_frame_list(
            args.output, frames, len(frames), width, height,
            ColorFormat.RGBA, width * 4,
            delay=args.delay, loop_count=args.loop, config=_config(args),
        )
    except (ApengError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Done! {len(frames)} frame(s) -> {args.output}")
    return 0


def build_frames_parsers(subparsers: argparse._SubParsersAction) -> None:
    """Register the ``info``, ``unpack`` and ``pack`` subcommands."""
    p = subparsers.add_parser("info", help="Show canvas and frame descriptors")
    p.add_argument("file", help="Animated (or still) PNG file")
    p.set_defaults(func=cmd_info)

    p = subparsers.add_parser("unpack", help="Write every frame as a PNG file")
    p.add_argument("file", help="Animated (or still) PNG file")
    p.add_argument("output_dir", help="Directory for the frame files")
    p.add_argument(
        "--prefix", default="frame_",
        help="File name prefix (default: frame_)",
    )
    p.set_defaults(func=cmd_unpack)

    p = subparsers.add_parser("pack", help="Combine still images into an animated PNG")
    p.add_argument("output", help="Output .png path")
    p.add_argument("frames", nargs="+", help="Frame images, in playback order")
    p.add_argument(
        "--delay", type=parse_delay, default=(12, 100),
        help="Per-frame delay as NUM/DEN seconds (default: 12/100)",
    )
    p.add_argument(
        "--loop", type=int, default=0,
        help="Number of plays; 0 = infinite (default: 0)",
    )
    p.set_defaults(func=cmd_pack)
