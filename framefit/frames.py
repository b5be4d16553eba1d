"""
Building frame buffers from files, and validating them.

    still images / animated file  -->  list[Frame]  -->  pipeline

Capture and editing are somebody else's job; these loaders exist so the
CLI and tests have a frame buffer to feed the pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import List, Sequence, Tuple

from PIL import Image, ImageSequence

from framefit.exceptions import EmptyInputError
from framefit.types import Frame, as_duration

logger = logging.getLogger(__name__)

DEFAULT_DURATION_S = 0.1
# Delays shorter than this are treated as unset, as browsers do.
MIN_DELAY_S = 0.01


def load_image_sequence(
    paths: Sequence[Path],
    duration: float | Fraction = DEFAULT_DURATION_S,
) -> list[Frame]:
    """Load still images in the given order, each shown for *duration*."""
    frames = []
    for p in paths:
        with Image.open(p) as img:
            frames.append(Frame.from_image(img.convert("RGBA"), duration))
    if not frames:
        raise EmptyInputError("No input images given.")
    return frames


def load_animation(path: Path) -> list[Frame]:
    """Decode every frame of an animated GIF/WebP/APNG with its delay."""
    frames = []
    with Image.open(path) as img:
        for page in ImageSequence.Iterator(img):
            delay_ms = page.info.get("duration", 0) or 0
            duration = as_duration(delay_ms) / 1000
            if duration < MIN_DELAY_S:
                duration = DEFAULT_DURATION_S
            frames.append(Frame.from_image(page.convert("RGBA"), duration))
    if not frames:
        raise EmptyInputError(f"{path}: no frames decoded.")
    logger.info("Loaded %d frames from %s.", len(frames), path)
    return frames


def load_frames(
    paths: Sequence[Path],
    duration: float | Fraction = DEFAULT_DURATION_S,
) -> list[Frame]:
    """One path to a multi-frame file loads its frames; otherwise stills."""
    if len(paths) == 1:
        with Image.open(paths[0]) as img:
            animated = getattr(img, "n_frames", 1) > 1
        if animated:
            return load_animation(paths[0])
    return load_image_sequence(paths, duration)


@dataclass
class FrameValidation:
    valid: bool
    total_frames: int
    empty_indices: List[int] = field(default_factory=list)
    dimension_mismatches: List[Tuple[int, Tuple[int, int]]] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)


def validate_frames(frames):
    """Non-raising validation report for a frame buffer."""
    result = FrameValidation(valid=True, total_frames=len(frames))
    if not frames:
        result.valid = False
        result.messages.append("Frame list is empty.")
        return result
    expected_size = frames[0].size
    for i, frame in enumerate(frames):
        if frame.width == 0 or frame.height == 0:
            result.empty_indices.append(i)
            result.messages.append(f"Frame {i}: zero dimension {frame.size}.")
            continue
        if frame.size != expected_size:
            result.dimension_mismatches.append((i, frame.size))
            result.messages.append(
                f"Frame {i}: size {frame.size} != expected {expected_size}.")
    if result.empty_indices or result.dimension_mismatches:
        result.valid = False
    return result
