"""
Similarity reduction: merge perceptually redundant consecutive frames.

Each candidate frame is compared against the last *kept* frame, not the
previous input frame, so slow drifts still accumulate into a visible
change and get kept.  The walk is inherently sequential.

Durations of dropped frames are folded into the frame that stays on
screen in their place; the total timeline duration is conserved.
"""

from __future__ import annotations

import logging
import math
from fractions import Fraction
from typing import Callable, Optional

import numpy as np
from PIL import Image

from framefit.types import Frame

logger = logging.getLogger(__name__)

# Side of the sample grid used for the perceptual distance.
SAMPLE_GRID = 32


def _sample(img: Image.Image) -> np.ndarray:
    """Sample *img* on a fixed grid, independent of its resolution."""
    w, h = img.size
    grid = (min(SAMPLE_GRID, w), min(SAMPLE_GRID, h))
    small = img.resize(grid, Image.Resampling.NEAREST)
    return np.asarray(small, dtype=np.int16)


def frame_distance(a: Image.Image, b: Image.Image) -> float:
    """Mean absolute RGBA difference (0 -- 255) over the sample grid.

    Frames of different size are infinitely far apart.
    """
    if a.size != b.size:
        return math.inf
    return float(np.mean(np.abs(_sample(a) - _sample(b))))


def reduce_similar(
    frames: list[Frame],
    threshold: float,
    progress: Optional[Callable[[float], None]] = None,
) -> list[Frame]:
    """Drop frames closer than *threshold* to the last kept frame.

    ``threshold == 0`` disables the stage.  The first frame is always kept.
    """
    if len(frames) <= 1 or threshold <= 0:
        return list(frames)

    kept_samples = [_sample(frames[0].image)]
    kept_size = frames[0].size
    kept = [frames[0]]
    n = len(frames)

    for i in range(1, n):
        candidate = frames[i]
        if candidate.size == kept_size:
            sample = _sample(candidate.image)
            dist = float(np.mean(np.abs(kept_samples[-1] - sample)))
        else:
            sample = None
            dist = math.inf

        if dist < threshold:
            last = kept[-1]
            kept[-1] = last.with_duration(last.duration + candidate.duration)
        else:
            kept.append(candidate)
            kept_samples.append(sample if sample is not None else _sample(candidate.image))
            kept_size = candidate.size

        if progress is not None:
            progress((i + 1) / n)

    if len(kept) < n:
        logger.debug("Similarity reduction (threshold %.2f): %d -> %d frames.",
                     threshold, n, len(kept))
    return kept


def merge_short_frames(frames: list[Frame], min_duration: float) -> list[Frame]:
    """Collapse runs of frames shorter than *min_duration*.

    A run of consecutive short frames becomes its first frame holding the
    run's summed duration.  ``min_duration == 0`` disables the pass.
    """
    if len(frames) <= 1 or min_duration <= 0:
        return list(frames)

    merged: list[Frame] = []
    run_head: Optional[Frame] = None
    run_duration = Fraction(0)

    for frame in frames:
        if frame.duration < min_duration:
            if run_head is None:
                run_head = frame
            run_duration += frame.duration
            continue
        if run_head is not None:
            merged.append(run_head.with_duration(run_duration))
            run_head, run_duration = None, Fraction(0)
        merged.append(frame)

    if run_head is not None:
        merged.append(run_head.with_duration(run_duration))
    return merged


def decimate(frames: list[Frame], keep_every: int) -> list[Frame]:
    """Keep every *keep_every*-th frame, folding dropped durations forward."""
    if keep_every <= 1 or len(frames) <= 2:
        return list(frames)

    reduced: list[Frame] = []
    for start in range(0, len(frames), keep_every):
        group = frames[start:start + keep_every]
        duration = Fraction(0)
        for f in group:
            duration += f.duration
        reduced.append(group[0].with_duration(duration))
    return reduced
