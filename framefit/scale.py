"""
Spatial scaling of a frame sequence to a maximum width.
"""

from __future__ import annotations

from typing import Callable, Optional

from PIL import Image

from framefit.types import Frame


def scaled_size(size: tuple[int, int], max_width: int) -> tuple[int, int]:
    """Dimensions *size* takes after limiting its width to *max_width*."""
    w, h = size
    if max_width <= 0 or w <= max_width:
        return size
    scale = max_width / w
    return max(1, int(round(w * scale))), max(1, int(round(h * scale)))


def scale_frames(
    frames: list[Frame],
    max_width: int,
    progress: Optional[Callable[[float], None]] = None,
) -> list[Frame]:
    """Downsample every frame so the first frame is at most *max_width* wide.

    The scale factor comes from the first frame and is applied uniformly;
    durations are untouched.  Returns the input unchanged when no scaling
    is needed.
    """
    if not frames or max_width <= 0 or frames[0].width <= max_width:
        return list(frames)

    scale = max_width / frames[0].width
    out: list[Frame] = []
    n = len(frames)
    for i, f in enumerate(frames):
        new_size = (
            max(1, int(round(f.width * scale))),
            max(1, int(round(f.height * scale))),
        )
        resized = f.image.resize(new_size, Image.Resampling.LANCZOS)
        out.append(Frame(image=resized, duration=f.duration))
        if progress is not None:
            progress((i + 1) / n)
    return out
