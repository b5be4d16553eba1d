"""
framefit -- Size-constrained animated image encoding.

Deduplicates, scales and palette-quantizes a sequence of timed RGBA
frames, serialises them into GIF, WebP or APNG, and re-encodes under
progressively cheaper settings until a target file size is met.
"""

__version__ = "0.1.0"

from framefit.exceptions import (
    EmptyInputError,
    EncodeCancelled,
    EncodeFailedError,
    FrameFitError,
)
from framefit.pipeline import encode_animation
from framefit.progress import CancellationToken
from framefit.types import (
    EncodeAttemptResult,
    EncodeOptions,
    FitResult,
    FitStatus,
    Frame,
    QuantizedFrame,
    Stage,
)

__all__ = [
    "CancellationToken",
    "EmptyInputError",
    "EncodeAttemptResult",
    "EncodeCancelled",
    "EncodeFailedError",
    "EncodeOptions",
    "FitResult",
    "FitStatus",
    "Frame",
    "FrameFitError",
    "QuantizedFrame",
    "Stage",
    "encode_animation",
]
