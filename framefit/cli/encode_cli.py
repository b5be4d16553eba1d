"""
CLI command for encoding a frame buffer under a size budget.

Usage:
    framefit encode frame_*.png --fps 20 --max-size-kb 500 -o out.gif
    framefit encode capture.gif --preset light -o small.gif
    framefit encode capture.gif --config options.yaml -o out.webp
    framefit encode capture.gif --preset light --max-colors 32 -o x.gif --dump-config
"""

from __future__ import annotations

import argparse
import concurrent.futures
import sys
from pathlib import Path

from ..config import (
    PRESETS,
    dump_options,
    load_options,
    options_from_mapping,
    options_from_preset,
)
from ..encoders import ENCODERS, get_encoder, select_encoder
from ..exceptions import EncodeCancelled, FrameFitError
from ..frames import DEFAULT_DURATION_S, load_frames
from ..pipeline import encode_animation
from ..progress import CancellationToken, TqdmProgressSink
from ..types import EncodeOptions, FitStatus, as_duration

# CLI flag -> EncodeOptions field; None values are left untouched.
_OVERRIDES = {
    "max_colors": "max_colors",
    "max_width": "max_width",
    "max_size_kb": "max_file_size_kb",
    "similarity": "similarity_threshold",
    "dither_level": "dither_level",
    "speed": "quantization_speed",
    "quality": "quantization_quality",
    "loop": "loop_count",
    "min_frame_duration": "min_frame_duration",
    "keep_every": "keep_every",
    "workers": "workers",
}


def _format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def build_options(args: argparse.Namespace) -> EncodeOptions:
    """Preset, then config file, then explicit flags."""
    options = EncodeOptions()
    if args.preset:
        options = options_from_preset(args.preset, options)
    if args.config:
        options = load_options(Path(args.config), options)
    overrides = {
        field: getattr(args, flag)
        for flag, field in _OVERRIDES.items()
        if getattr(args, flag) is not None
    }
    if args.no_dither:
        overrides["dither"] = False
    if args.center_dither:
        overrides["center_focused_dither"] = True
    return options_from_mapping(overrides, options)


def _run_cancellable(token: CancellationToken, fn, *args, **kwargs):
    """Run *fn* in a worker thread; Ctrl-C fires *token* instead of killing it."""
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        fut = pool.submit(fn, *args, **kwargs)
        try:
            while True:
                try:
                    return fut.result(timeout=0.2)
                except concurrent.futures.TimeoutError:
                    continue
        except KeyboardInterrupt:
            token.cancel()
            return fut.result()


def cmd_encode(args: argparse.Namespace) -> int:
    """Main handler for ``framefit encode``."""
    if args.dump_config:
        try:
            options = build_options(args)
        except (FrameFitError, OSError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        print(dump_options(options), end="")
        return 0

    inputs = [Path(p) for p in args.inputs]
    missing = [p for p in inputs if not p.is_file()]
    if missing:
        print(f"Error: file not found: {missing[0]}", file=sys.stderr)
        return 1

    for flag in ("duration", "fps"):
        value = getattr(args, flag)
        if value is not None and not value > 0:
            print(f"Error: --{flag} must be positive, got {value}", file=sys.stderr)
            return 1

    output = Path(args.output)
    if args.duration is not None:
        duration = as_duration(args.duration)
    elif args.fps is not None:
        duration = 1 / as_duration(args.fps)
    else:
        duration = DEFAULT_DURATION_S

    token = CancellationToken()
    sink = None
    try:
        options = build_options(args)
        frames = load_frames(inputs, duration)
        encoder = get_encoder(args.encoder) if args.encoder else select_encoder(output)

        print(f"Encoding {len(frames)} frames with {encoder.name} ...")
        sink = None if args.quiet else TqdmProgressSink("Encoding")
        result = _run_cancellable(
            token,
            encode_animation,
            frames,
            options,
            destination=output,
            encoder=encoder,
            progress=sink,
            cancel_token=token,
        )
    except EncodeCancelled:
        print("\nCancelled; nothing written.", file=sys.stderr)
        return 130
    except FrameFitError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        tool_output = getattr(exc, "tool_output", "")
        if tool_output:
            print(tool_output, file=sys.stderr)
        return 1
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if sink is not None:
            sink.close()

    used = result.options
    summary = (
        f"{result.best.frame_count} frames, "
        f"{used.max_colors} colours, "
        f"{result.best.dimensions[0]}x{result.best.dimensions[1]}"
    )
    if result.status is FitStatus.EXHAUSTED:
        print(
            f"Warning: could not fit {options.max_file_size_kb} KB budget "
            f"after {len(result.attempts)} attempts.",
            file=sys.stderr,
        )
    print(f"Done! {summary} -> {output} ({_format_size(result.size_bytes)})")
    return 0


def build_encode_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the ``encode`` subcommand and its arguments."""
    p = subparsers.add_parser(
        "encode",
        help="Encode frames into an animation under a size budget",
        description="Encode still images or an existing animation into GIF, WebP, or APNG.",
    )
    p.add_argument(
        "inputs", nargs="+",
        help="Still images in order, or a single animated GIF/WebP/APNG",
    )
    p.add_argument(
        "-o", "--output", required=True,
        help="Output file; the suffix picks the encoder unless --encoder is given",
    )
    timing = p.add_mutually_exclusive_group()
    timing.add_argument(
        "--duration", type=float, default=None,
        help="Seconds per still image (default: 0.1)",
    )
    timing.add_argument(
        "--fps", type=float, default=None,
        help="Frames per second for still images",
    )
    p.add_argument(
        "--preset", choices=sorted(PRESETS), default=None,
        help="Start from a named option preset",
    )
    p.add_argument(
        "--config", default=None,
        help="YAML file of encode options (applied after --preset)",
    )
    p.add_argument("--max-colors", type=int, default=None, help="Palette size, 2 -- 256")
    p.add_argument("--max-width", type=int, default=None, help="Maximum width; 0 = unscaled")
    p.add_argument(
        "--max-size-kb", type=int, default=None,
        help="Target file size in KB; 0 = unconstrained",
    )
    p.add_argument(
        "--similarity", type=float, default=None,
        help="Drop frames closer than this (0 -- 255 scale); 0 = off",
    )
    p.add_argument("--no-dither", action="store_true", help="Disable dithering")
    p.add_argument("--dither-level", type=float, default=None, help="Dither strength, 0 -- 1")
    p.add_argument(
        "--center-dither", action="store_true",
        help="Concentrate dithering toward the image centre",
    )
    p.add_argument("--speed", type=int, default=None, help="Quantization speed, 1 (best) -- 10")
    p.add_argument("--quality", type=int, default=None, help="Quantization quality, 0 -- 100")
    p.add_argument("--loop", type=int, default=None, help="Loop count; 0 = forever")
    p.add_argument(
        "--min-frame-duration", type=float, default=None,
        help="Merge frames shorter than this many seconds",
    )
    p.add_argument(
        "--keep-every", type=int, default=None,
        help="Keep every Nth frame, folding dropped durations forward; 1 = all",
    )
    p.add_argument(
        "--encoder", choices=list(ENCODERS), default=None,
        help="Container encoder (default: from output suffix)",
    )
    p.add_argument(
        "--workers", type=int, default=None,
        help="Quantization threads; 0 = auto",
    )
    p.add_argument(
        "--dump-config", action="store_true",
        help="Print the resolved options as YAML and exit without encoding",
    )
    p.add_argument("-q", "--quiet", action="store_true", help="No progress bar")
    p.set_defaults(func=cmd_encode)
