"""
CLI command summarising a frame buffer.

Usage:
    framefit info capture.gif
    framefit info frame_*.png --preset light
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from ..config import PRESETS, options_from_preset
from ..exceptions import FrameFitError
from ..frames import load_frames, validate_frames
from ..pipeline import estimate_size
from ..types import EncodeOptions, total_duration


def cmd_info(args: argparse.Namespace) -> int:
    """Main handler for ``framefit info``."""
    inputs = [Path(p) for p in args.inputs]
    try:
        frames = load_frames(inputs, args.duration)
        options = options_from_preset(args.preset) if args.preset else EncodeOptions()
    except (FrameFitError, OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    report = validate_frames(frames)
    w, h = frames[0].size
    estimate = estimate_size(frames, options)
    print(f"Frames:     {len(frames)}")
    print(f"Size:       {w}x{h}")
    print(f"Duration:   {float(total_duration(frames)):.2f} s")
    print(f"Estimated:  {estimate / 1024:.0f} KB "
          f"({options.max_colors} colours, max width {options.max_width or 'unscaled'})")
    for msg in report.messages:
        print(f"  {msg}")
    return 0 if report.valid else 1


def build_info_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the ``info`` subcommand."""
    p = subparsers.add_parser(
        "info",
        help="Show frame count, size, duration and estimated output size",
    )
    p.add_argument("inputs", nargs="+", help="Still images or one animated file")
    p.add_argument(
        "--duration", type=float, default=0.1,
        help="Seconds per still image (default: 0.1)",
    )
    p.add_argument(
        "--preset", choices=sorted(PRESETS), default=None,
        help="Estimate with a named preset's settings",
    )
    p.set_defaults(func=cmd_info)
