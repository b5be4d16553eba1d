"""
Top-level encode entry point.

    frames --> [validate] --> SizeFitController --> artifact --> [atomic write]

The destination file only ever appears complete: the artifact is written
to a temporary sibling and moved into place with ``os.replace``.  A
cancelled or failed encode leaves nothing at the destination.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from framefit.controller import DEFAULT_MAX_ATTEMPTS, SizeFitController
from framefit.encoders import ContainerEncoder, PillowGifEncoder, select_encoder
from framefit.exceptions import EncodeFailedError
from framefit.progress import CancellationToken, ProgressSink, check_cancelled
from framefit.quantize import Quantizer
from framefit.scale import scaled_size
from framefit.types import (
    EncodeOptions,
    FitResult,
    FitStatus,
    Frame,
    Stage,
    validate_sequence,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def write_atomic(destination: Path, data: bytes) -> Path:
    """Write *data* to *destination* without exposing a partial file."""
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{destination.name}.", suffix=".part", dir=str(destination.parent))
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, destination)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise EncodeFailedError(f"Could not write {destination}: {exc}") from exc
    return destination


def encode_animation(
    frames: list[Frame],
    options: Optional[EncodeOptions] = None,
    destination: Optional[PathLike] = None,
    encoder: Optional[ContainerEncoder] = None,
    quantizer: Optional[Quantizer] = None,
    progress: Optional[ProgressSink] = None,
    cancel_token: Optional[CancellationToken] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> FitResult:
    """Encode *frames* under *options*, fitting the size budget if set.

    Parameters
    ----------
    frames : list[Frame]
        Finalised, uniformly sized input sequence.  Never modified.
    options : EncodeOptions, optional
        Settings for this call; defaults to ``EncodeOptions()``.
    destination : path, optional
        Where to write the best artifact.  When omitted the artifact is
        only returned in memory.
    encoder : ContainerEncoder, optional
        Defaults to the encoder matching the destination suffix, or GIF.
    progress : callable, optional
        Receives ``(Stage, fraction)``; fractions never decrease.
    cancel_token : CancellationToken, optional
        Checked at every batch and attempt boundary.

    Returns
    -------
    FitResult
        ``status`` is SATISFIED or EXHAUSTED; both carry an artifact.

    Raises
    ------
    EmptyInputError, FrameSizeMismatchError
        Invalid input sequence.
    EncodeFailedError
        The container encoder failed, or the destination could not be written.
    EncodeCancelled
        The cancellation token fired.
    """
    options = options or EncodeOptions()
    validate_sequence(frames)

    if encoder is None:
        encoder = select_encoder(Path(destination)) if destination else PillowGifEncoder()

    controller = SizeFitController(
        encoder=encoder,
        quantizer=quantizer,
        max_attempts=max_attempts,
    )
    result = controller.run(frames, options, progress=progress, cancel_token=cancel_token)

    if result.status is FitStatus.EXHAUSTED:
        logger.warning(
            "Returning %d-byte artifact over the %d KB budget.",
            result.size_bytes, options.max_file_size_kb,
        )

    if destination is not None:
        check_cancelled(cancel_token)
        path = write_atomic(Path(destination), result.artifact)
        if progress is not None:
            progress(Stage.WRITE, 1.0)
        logger.info("Wrote %s (%d bytes).", path, result.size_bytes)

    return result


def estimate_size(frames: list[Frame], options: Optional[EncodeOptions] = None) -> int:
    """Rough GIF size in bytes, without encoding.

    Pixels per frame scaled by palette size at ~0.4 bytes per pixel for
    a full palette, times the frame count.
    """
    if not frames:
        return 0
    options = options or EncodeOptions()
    w, h = scaled_size(frames[0].size, options.max_width)
    per_frame = w * h * options.max_colors / 256.0 * 0.4
    return max(1, int(per_frame * len(frames)))
