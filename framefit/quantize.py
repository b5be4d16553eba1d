"""
Palette quantization of RGBA frames.

Architecture
------------
``Quantizer`` is the capability interface; ``PillowQuantizer`` is the
in-process default built on Pillow's median-cut quantizer.  Per frame:

    1. Palette model -- median cut (plus optional k-means refinement)
       over the opaque pixels, sampled on a stride that grows with
       ``quantization_speed``.
    2. Remap -- nearest-colour mapping of every pixel onto the palette.
    3. Dither -- Floyd-Steinberg remapping blended in through a 4x4
       Bayer mask whose density is ``dither_level``, so dither strength
       scales linearly with the level instead of being all-or-nothing.

Pixels with alpha below ``ALPHA_CUTOFF`` share one reserved transparent
entry, which counts against ``max_colors``.

Lossless fast path
------------------
With ``skip_quantization_when_lossless`` set, quality 100 and 256
colours, frames are not quantized at all: a frame with at most 256
distinct colours gets an exact 1:1 palette, anything richer is passed
through untouched.

Failure
-------
Quantization never fails for a non-empty frame.  If Pillow cannot
produce a result the frame is passed through unquantized and a warning
is logged.

Parallelism
-----------
``quantize_frames`` fans frames out over a ``ThreadPoolExecutor`` in
batches (Pillow releases the GIL inside quantize/convert), collects
results with ``as_completed()`` and reassembles them in input order.
Cancellation is checked and progress delivered at every batch boundary.
"""

from __future__ import annotations

import abc
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Optional

import numpy as np
from PIL import Image

from framefit.progress import CancellationToken, check_cancelled
from framefit.types import ALPHA_CUTOFF, EncodeOptions, Frame, QuantizedFrame

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
TRANSPARENT: tuple[int, int, int, int] = (0, 0, 0, 0)

_BAYER_4X4 = np.array(
    [[0, 8, 2, 10],
     [12, 4, 14, 6],
     [3, 11, 1, 9],
     [15, 7, 13, 5]],
    dtype=np.float32,
)
_BAYER_THRESHOLDS = (_BAYER_4X4 + 0.5) / 16.0

# Weight of the dither level at the far corners in center-focused mode.
CENTER_FOCUS_EDGE_WEIGHT = 0.25


def sample_stride(speed: int) -> int:
    """Pixel stride used when building the palette model (1 = every pixel)."""
    return 1 + (max(1, min(10, speed)) - 1) // 3


def kmeans_passes(quality: int) -> int:
    """K-means refinement passes applied after median cut."""
    return int(max(0, min(100, quality)) / 100 * 3 + 0.5)


def dither_mask(
    size: tuple[int, int],
    level: float,
    center_focused: bool = False,
) -> np.ndarray:
    """Boolean (height, width) mask selecting the dithered pixels.

    The fraction of selected pixels equals *level*; in center-focused
    mode the level falls off linearly toward the corners.
    """
    w, h = size
    reps = (h // 4 + 1, w // 4 + 1)
    thresholds = np.tile(_BAYER_THRESHOLDS, reps)[:h, :w]
    if not center_focused:
        return thresholds < level
    ys = (np.arange(h, dtype=np.float32) - (h - 1) / 2.0)[:, None]
    xs = (np.arange(w, dtype=np.float32) - (w - 1) / 2.0)[None, :]
    radius = np.sqrt(xs ** 2 + ys ** 2)
    r_max = float(radius.max()) or 1.0
    weight = 1.0 - (1.0 - CENTER_FOCUS_EDGE_WEIGHT) * (radius / r_max)
    return thresholds < level * weight


def _passthrough(frame: Frame) -> QuantizedFrame:
    return QuantizedFrame(
        size=frame.size,
        duration=frame.duration,
        passthrough=frame.image,
    )


def _reference_palette(colors: np.ndarray) -> Image.Image:
    """1x1 "P" image whose palette is *colors* padded to 256 entries.

    Padding repeats the last colour, so any padded index Pillow picks
    folds back onto a real entry with ``min(index, k - 1)``.
    """
    k = len(colors)
    padded = np.concatenate([colors, np.repeat(colors[-1:], 256 - k, axis=0)])
    ref = Image.new("P", (1, 1))
    ref.putpalette(padded.astype(np.uint8).flatten().tolist())
    return ref


class Quantizer(abc.ABC):
    """Maps a true-colour frame to a bounded palette."""

    name: str = "abstract"

    @abc.abstractmethod
    def quantize(self, frame: Frame, options: EncodeOptions) -> QuantizedFrame:
        """Quantize *frame*; must not raise for a non-empty frame."""


class PillowQuantizer(Quantizer):
    """Median-cut quantizer with level-scaled Floyd-Steinberg dithering."""

    name = "pillow"

    def quantize(self, frame: Frame, options: EncodeOptions) -> QuantizedFrame:
        w, h = frame.size
        if w == 0 or h == 0:
            return _passthrough(frame)
        if options.lossless_requested:
            return self.lossless(frame)
        try:
            return self._quantize(frame, options)
        except Exception as exc:
            logger.warning(
                "Quantization failed for %dx%d frame, passing through: %s",
                w, h, exc,
            )
            return _passthrough(frame)

    @staticmethod
    def lossless(frame: Frame) -> QuantizedFrame:
        """Exact 1:1 palette, or passthrough when the frame exceeds 256 colours."""
        w, h = frame.size
        arr = np.ascontiguousarray(np.asarray(frame.image, dtype=np.uint8))
        packed = arr.view(np.uint32).reshape(h, w)
        colors, inverse = np.unique(packed, return_inverse=True)
        if len(colors) > 256:
            return _passthrough(frame)
        rgba = colors.view(np.uint8).reshape(-1, 4)
        return QuantizedFrame(
            size=frame.size,
            duration=frame.duration,
            indices=inverse.reshape(h, w).astype(np.uint8),
            palette=tuple(tuple(int(v) for v in c) for c in rgba),
        )

    def _quantize(self, frame: Frame, options: EncodeOptions) -> QuantizedFrame:
        w, h = frame.size
        arr = np.asarray(frame.image, dtype=np.uint8)
        opaque = arr[..., 3] >= ALPHA_CUTOFF
        has_transparent = not bool(opaque.all())

        if not opaque.any():
            return QuantizedFrame(
                size=frame.size,
                duration=frame.duration,
                indices=np.zeros((h, w), dtype=np.uint8),
                palette=(TRANSPARENT,),
            )

        budget = options.max_colors - 1 if has_transparent else options.max_colors
        colors = self._build_palette(arr, opaque, budget, options)
        k = len(colors)

        ref = _reference_palette(colors)
        rgb = frame.image.convert("RGB")
        plain = np.asarray(rgb.quantize(palette=ref, dither=Image.Dither.NONE))
        indices = np.minimum(plain, k - 1)

        level = options.dither_level if options.dither else 0.0
        if level > 0 and k > 1:
            fs = np.asarray(rgb.quantize(palette=ref, dither=Image.Dither.FLOYDSTEINBERG))
            mask = dither_mask(frame.size, level, options.center_focused_dither)
            indices = np.where(mask, np.minimum(fs, k - 1), indices)

        palette = [(int(r), int(g), int(b), 255) for r, g, b in colors]
        if has_transparent:
            indices = np.where(opaque, indices, k)
            palette.append(TRANSPARENT)

        return QuantizedFrame(
            size=frame.size,
            duration=frame.duration,
            indices=indices.astype(np.uint8),
            palette=tuple(palette),
        )

    @staticmethod
    def _build_palette(
        arr: np.ndarray,
        opaque: np.ndarray,
        budget: int,
        options: EncodeOptions,
    ) -> np.ndarray:
        """Median-cut palette (k x 3 uint8) from the sampled opaque pixels."""
        stride = sample_stride(options.quantization_speed)
        pixels = arr[::stride, ::stride][opaque[::stride, ::stride]][:, :3]
        if pixels.size == 0:
            # Stride skipped every opaque pixel; fall back to a full scan.
            pixels = arr[opaque][:, :3]
        sample = Image.fromarray(np.ascontiguousarray(pixels.reshape(1, -1, 3)))
        model = sample.quantize(
            colors=budget,
            method=Image.Quantize.MEDIANCUT,
            kmeans=kmeans_passes(options.quantization_quality),
            dither=Image.Dither.NONE,
        )
        used = np.unique(np.asarray(model))
        table = np.asarray(model.getpalette()[:768], dtype=np.uint8).reshape(-1, 3)
        used = used[used < len(table)]
        return table[used]


def _determine_worker_count(requested: int, n_frames: int) -> int:
    if requested > 0:
        workers = requested
    else:
        workers = max(1, (os.cpu_count() or 2) - 1)
    return max(1, min(workers, n_frames))


def quantize_frames(
    frames: list[Frame],
    options: EncodeOptions,
    quantizer: Optional[Quantizer] = None,
    progress: Optional[Callable[[float], None]] = None,
    cancel_token: Optional[CancellationToken] = None,
    batch_size: int = BATCH_SIZE,
) -> list[QuantizedFrame]:
    """Quantize every frame, preserving order.

    Raises
    ------
    EncodeCancelled
        If *cancel_token* fires; checked before the first batch and after
        every batch.
    """
    quantizer = quantizer or PillowQuantizer()
    n = len(frames)
    workers = _determine_worker_count(options.workers, n)
    batch_size = max(batch_size, workers)
    results: list[Optional[QuantizedFrame]] = [None] * n
    done = 0

    check_cancelled(cancel_token)

    if workers == 1:
        for start in range(0, n, batch_size):
            for i in range(start, min(n, start + batch_size)):
                results[i] = quantizer.quantize(frames[i], options)
                done += 1
                if progress is not None:
                    progress(done / n)
            check_cancelled(cancel_token)
        return results  # type: ignore[return-value]

    with ThreadPoolExecutor(max_workers=workers) as pool:
        for start in range(0, n, batch_size):
            future_to_index: dict[Future[QuantizedFrame], int] = {
                pool.submit(quantizer.quantize, frames[i], options): i
                for i in range(start, min(n, start + batch_size))
            }
            for fut in as_completed(future_to_index):
                results[future_to_index[fut]] = fut.result()
                done += 1
                if progress is not None:
                    progress(done / n)
            check_cancelled(cancel_token)

    return results  # type: ignore[return-value]
