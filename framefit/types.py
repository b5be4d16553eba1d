"""
Core data structures shared by every pipeline stage.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Optional

import numpy as np
from PIL import Image

from framefit.exceptions import EmptyInputError, FrameSizeMismatchError, OptionsError

RGBA = tuple[int, int, int, int]

# Palette entries with alpha below this are written as transparent.
ALPHA_CUTOFF = 128


class Stage(enum.Enum):
    """Pipeline stage reported alongside progress fractions."""
    REDUCE = "reduce"
    SCALE = "scale"
    QUANTIZE = "quantize"
    ENCODE = "encode"
    WRITE = "write"
    DONE = "done"


class FitStatus(enum.Enum):
    """Outcome of a size-fit run."""
    SATISFIED = "satisfied"     # Budget met (or unconstrained).
    EXHAUSTED = "exhausted"     # Gave up; best artifact still returned.


def as_duration(value: float | int | str | Fraction) -> Fraction:
    """Exact seconds for *value*.

    Floats are read through their shortest decimal form, so ``0.1`` becomes
    exactly ``1/10`` and ten of them sum to exactly one second.
    """
    if isinstance(value, Fraction):
        return value
    if isinstance(value, float):
        return Fraction(str(value))
    return Fraction(value)


@dataclass(frozen=True)
class Frame:
    """One straight-alpha RGBA raster plus its display duration in seconds.

    ``duration`` is always stored as a ``Fraction`` so that merging and
    splitting frames never drifts the timeline.
    """
    image: Image.Image
    duration: Fraction

    def __post_init__(self) -> None:
        object.__setattr__(self, "duration", as_duration(self.duration))
        if not self.duration > 0:
            raise ValueError(f"Frame duration must be positive, got {self.duration!r}")
        if self.image.mode != "RGBA":
            raise ValueError(
                f"Frame image must be RGBA, got {self.image.mode!r}; "
                f"use Frame.from_image() to convert."
            )

    @classmethod
    def from_image(cls, image: Image.Image, duration: float | Fraction) -> Frame:
        """Build a frame from any Pillow image, converting to RGBA."""
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls(image=image, duration=as_duration(duration))

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def with_duration(self, duration: float | Fraction) -> Frame:
        """Return a frame sharing this image with a new duration."""
        return Frame(image=self.image, duration=duration)


def total_duration(frames: list[Frame]) -> Fraction:
    """Exact sum of frame durations in temporal order."""
    total = Fraction(0)
    for f in frames:
        total += f.duration
    return total


def validate_sequence(frames: list[Frame]) -> None:
    """Raise unless *frames* is non-empty with uniform dimensions."""
    if not frames:
        raise EmptyInputError("Cannot encode an empty frame sequence.")
    expected = frames[0].size
    for i, f in enumerate(frames):
        if f.size != expected:
            raise FrameSizeMismatchError(
                f"Frame {i}: size {f.size} != expected {expected}.")


@dataclass(frozen=True)
class EncodeOptions:
    """Immutable settings for one pipeline invocation."""
    max_colors: int = 256               # palette entries (2 -- 256)
    dither: bool = True
    dither_level: float = 1.0           # 0 -- 1
    quantization_speed: int = 4         # 1 = best quality, 10 = fastest
    quantization_quality: int = 90      # 0 -- 100
    loop_count: int = 0                 # 0 = infinite
    max_width: int = 0                  # 0 = unscaled
    max_file_size_kb: int = 0           # 0 = unconstrained
    similarity_threshold: float = 0.0   # 0 = reducer disabled
    skip_quantization_when_lossless: bool = True
    center_focused_dither: bool = False
    min_frame_duration: float = 0.0     # 0 = no short-frame merging
    keep_every: int = 1                 # 1 = keep every frame
    workers: int = 0                    # 0 = auto

    def __post_init__(self) -> None:
        if not 2 <= self.max_colors <= 256:
            raise OptionsError(f"max_colors must be in [2, 256], got {self.max_colors}")
        if not 0.0 <= self.dither_level <= 1.0:
            raise OptionsError(f"dither_level must be in [0, 1], got {self.dither_level}")
        if not 1 <= self.quantization_speed <= 10:
            raise OptionsError(
                f"quantization_speed must be in [1, 10], got {self.quantization_speed}")
        if not 0 <= self.quantization_quality <= 100:
            raise OptionsError(
                f"quantization_quality must be in [0, 100], got {self.quantization_quality}")
        for name in ("loop_count", "max_width", "max_file_size_kb", "workers"):
            if getattr(self, name) < 0:
                raise OptionsError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.similarity_threshold < 0:
            raise OptionsError(
                f"similarity_threshold must be >= 0, got {self.similarity_threshold}")
        if self.min_frame_duration < 0:
            raise OptionsError(
                f"min_frame_duration must be >= 0, got {self.min_frame_duration}")
        if self.keep_every < 1:
            raise OptionsError(f"keep_every must be >= 1, got {self.keep_every}")

    @property
    def budget_bytes(self) -> int:
        """Size budget in bytes; 0 when unconstrained."""
        return self.max_file_size_kb * 1024

    @property
    def constrained(self) -> bool:
        return self.max_file_size_kb > 0

    @property
    def lossless_requested(self) -> bool:
        """True when the quantizer should skip quantization entirely."""
        return (
            self.skip_quantization_when_lossless
            and self.quantization_quality >= 100
            and self.max_colors >= 256
        )

    def replace(self, **changes) -> EncodeOptions:
        """Return a validated copy with *changes* applied."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in dataclasses.fields(cls)]


@dataclass(frozen=True)
class QuantizedFrame:
    """An indexed-colour frame, or a passthrough of the original raster.

    Indexed frames carry ``indices`` (uint8, shape ``(height, width)``)
    and a palette of RGBA tuples; every index is below ``len(palette)``.
    Passthrough frames keep the source RGBA image and an empty palette.
    """
    size: tuple[int, int]
    duration: Fraction
    indices: Optional[np.ndarray] = None
    palette: tuple[RGBA, ...] = ()
    passthrough: Optional[Image.Image] = None

    @property
    def is_indexed(self) -> bool:
        return self.indices is not None

    def to_image(self) -> Image.Image:
        """Expand back to an RGBA image."""
        if self.passthrough is not None:
            return self.passthrough.copy()
        lut = np.asarray(self.palette, dtype=np.uint8)
        return Image.fromarray(np.ascontiguousarray(lut[self.indices]))

    def to_palette_image(self) -> tuple[Image.Image, Optional[int]]:
        """Return a Pillow "P" image and its transparency index.

        Entries whose alpha is below ``ALPHA_CUTOFF`` collapse onto the
        first such entry, since GIF supports one transparent index.
        """
        if self.indices is None:
            raise ValueError("Passthrough frames have no palette image.")
        alpha = np.asarray([c[3] for c in self.palette])
        transparent = np.flatnonzero(alpha < ALPHA_CUTOFF)
        indices = self.indices
        t_index: Optional[int] = None
        if transparent.size:
            t_index = int(transparent[0])
            if transparent.size > 1:
                indices = np.where(np.isin(indices, transparent), t_index, indices)
        raw = np.ascontiguousarray(indices, dtype=np.uint8).tobytes()
        img = Image.frombytes("P", self.size, raw)
        flat: list[int] = []
        for r, g, b, _a in self.palette:
            flat += [r, g, b]
        img.putpalette(flat)
        return img, t_index


@dataclass
class EncodeAttemptResult:
    """Artifact and bookkeeping from one encode attempt."""
    artifact: bytes
    size_bytes: int
    options: EncodeOptions
    within_budget: bool
    frame_count: int = 0
    dimensions: tuple[int, int] = (0, 0)
    attempt: int = 1
    size_bound: int = 0


@dataclass
class FitResult:
    """Best artifact of a size-fit run plus every attempt made."""
    status: FitStatus
    best: EncodeAttemptResult
    attempts: list[EncodeAttemptResult] = field(default_factory=list)

    @property
    def artifact(self) -> bytes:
        return self.best.artifact

    @property
    def size_bytes(self) -> int:
        return self.best.size_bytes

    @property
    def within_budget(self) -> bool:
        return self.best.within_budget

    @property
    def options(self) -> EncodeOptions:
        return self.best.options
