"""
Size-fit controller: re-encode under cheaper settings until a size
budget is met.

State machine
-------------
::

    INITIAL --> ATTEMPTING --+--> SATISFIED
                   ^         |
                   |         +--> DEGRADING --+
                   |                          |
                   +--------------------------+
                             |
                             +--> EXHAUSTED

Each attempt runs [Reduce -> Scale -> Quantize -> Encode -> Measure].
Attempts are strictly sequential: attempt N+1 depends on the measured
size of attempt N.

Degradation policy
------------------
Knobs are turned in a fixed order, least perceptually harmful first; a
knob is used until it reaches its floor, then the next one takes over:

    1. Similarity threshold   up the schedule 2 -> 4 -> 8 -> 16
    2. Palette size           halved, floor 16 colours
    3. Maximum width          x 0.75, floor 32 px
    4. Frame rate             keep every 2nd frame, floor 2 frames

Every accepted step strictly lowers ``size_bound`` for the next attempt.
A threshold step that drops no frame is skipped without spending an
encode attempt.  Threshold and frame-rate steps re-reduce the already
reduced sequence, so the frame count never grows.

Termination
-----------
After ``max_attempts`` encodes, or once every knob is at its floor, the
run is EXHAUSTED and returns the smallest artifact seen with
``within_budget=False``.  An unmet budget is never an exception.
Encoder faults (``EncodeFailedError``) propagate immediately and are not
retried.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from framefit.encoders import ContainerEncoder, PillowGifEncoder
from framefit.exceptions import EmptyInputError
from framefit.progress import (
    CancellationToken,
    ProgressSink,
    ProgressTracker,
    check_cancelled,
)
from framefit.quantize import PillowQuantizer, Quantizer, quantize_frames
from framefit.reduce import decimate, merge_short_frames, reduce_similar
from framefit.scale import scale_frames, scaled_size
from framefit.types import (
    EncodeAttemptResult,
    EncodeOptions,
    FitResult,
    FitStatus,
    Frame,
    Stage,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_THRESHOLD_SCHEDULE: tuple[float, ...] = (2.0, 4.0, 8.0, 16.0)
MIN_COLORS = 16
MIN_WIDTH = 32
WIDTH_FACTOR = 0.75


class FitState(enum.Enum):
    INITIAL = "initial"
    ATTEMPTING = "attempting"
    DEGRADING = "degrading"
    SATISFIED = "satisfied"
    EXHAUSTED = "exhausted"


class Knob(enum.Enum):
    """Degradation knobs in policy order."""
    SIMILARITY = "similarity_threshold"
    COLORS = "max_colors"
    WIDTH = "max_width"
    FRAME_RATE = "keep_every"


def size_bound(frame_count: int, width: int, height: int, colors: int) -> int:
    """Theoretical upper bound in bytes for an indexed animation.

    Index bits per pixel for every frame plus a full RGB palette per
    frame.  Monotonic in each argument.
    """
    bits = max(1, math.ceil(math.log2(max(2, colors))))
    per_frame = (width * height * bits + 7) // 8 + colors * 3
    return frame_count * per_frame


@dataclass
class DegradationStep:
    """A proposed next attempt."""
    knob: Knob
    options: EncodeOptions
    frames: list[Frame]
    bound: int


class SizeFitController:
    """Bounded, ordered, monotonic degradation loop."""

    def __init__(
        self,
        encoder: Optional[ContainerEncoder] = None,
        quantizer: Optional[Quantizer] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        min_colors: int = MIN_COLORS,
        min_width: int = MIN_WIDTH,
        width_factor: float = WIDTH_FACTOR,
        threshold_schedule: Sequence[float] = DEFAULT_THRESHOLD_SCHEDULE,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if not 0 < width_factor < 1:
            raise ValueError("width_factor must be in (0, 1)")
        self.encoder = encoder or PillowGifEncoder()
        self.quantizer = quantizer or PillowQuantizer()
        self.max_attempts = max_attempts
        self.min_colors = min_colors
        self.min_width = max(1, min_width)
        self.width_factor = width_factor
        self.threshold_schedule = tuple(sorted(threshold_schedule))
        self.state = FitState.INITIAL

    def _transition(self, state: FitState) -> None:
        logger.debug("Size-fit state: %s -> %s", self.state.value, state.value)
        self.state = state

    # ---- Public entry point ---------------------------------------------

    def run(
        self,
        frames: list[Frame],
        options: EncodeOptions,
        progress: Optional[ProgressSink] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> FitResult:
        """Encode *frames*, degrading settings until the budget is met.

        Raises
        ------
        EmptyInputError
            If *frames* is empty.
        EncodeFailedError
            If the container encoder fails on any attempt.
        EncodeCancelled
            If *cancel_token* fires.
        """
        if not frames:
            raise EmptyInputError("Cannot encode an empty frame sequence.")

        self.state = FitState.INITIAL
        tracker = ProgressTracker(progress, retry_slots=self.max_attempts - 1)
        attempts: list[EncodeAttemptResult] = []
        disabled: set[Knob] = set()

        check_cancelled(cancel_token)
        reduced = merge_short_frames(frames, options.min_frame_duration)
        reduced = reduce_similar(
            reduced,
            options.similarity_threshold,
            progress=lambda p: tracker.update(Stage.REDUCE, p),
        )
        reduced = decimate(reduced, options.keep_every)
        tracker.update(Stage.REDUCE, 1.0)
        current = options

        while True:
            check_cancelled(cancel_token)
            self._transition(FitState.ATTEMPTING)
            result = self._attempt(
                reduced, current, len(attempts) + 1, tracker, cancel_token)
            attempts.append(result)

            if result.within_budget:
                self._transition(FitState.SATISFIED)
                break
            if len(attempts) >= self.max_attempts:
                logger.info("Retry ceiling (%d attempts) reached.", self.max_attempts)
                self._transition(FitState.EXHAUSTED)
                break

            self._transition(FitState.DEGRADING)
            check_cancelled(cancel_token)
            tracker.begin_attempt(len(attempts) + 1)
            step = self.next_step(reduced, current, result.size_bound, disabled)
            if step is None:
                logger.info("All degradation knobs at their floor.")
                self._transition(FitState.EXHAUSTED)
                break
            logger.info(
                "Attempt %d over budget (%d > %d bytes); degrading %s.",
                result.attempt, result.size_bytes, current.budget_bytes,
                step.knob.value,
            )
            current, reduced = step.options, step.frames

        tracker.finish()

        if self.state is FitState.SATISFIED:
            status, best = FitStatus.SATISFIED, attempts[-1]
        else:
            status = FitStatus.EXHAUSTED
            best = min(attempts, key=lambda a: a.size_bytes)
            logger.warning(
                "Size budget unmet after %d attempts; best is %d bytes (budget %d).",
                len(attempts), best.size_bytes, options.budget_bytes,
            )
        return FitResult(status=status, best=best, attempts=attempts)

    # ---- One attempt ----------------------------------------------------

    def _attempt(
        self,
        reduced: list[Frame],
        options: EncodeOptions,
        attempt: int,
        tracker: ProgressTracker,
        cancel_token: Optional[CancellationToken],
    ) -> EncodeAttemptResult:
        tracker.begin_attempt(attempt)
        tracker.update(Stage.REDUCE, 1.0)

        scaled = scale_frames(
            reduced,
            options.max_width,
            progress=lambda p: tracker.update(Stage.SCALE, p),
        )
        tracker.update(Stage.SCALE, 1.0)

        quantized = quantize_frames(
            scaled,
            options,
            quantizer=self.quantizer,
            progress=lambda p: tracker.update(Stage.QUANTIZE, p),
            cancel_token=cancel_token,
        )
        check_cancelled(cancel_token)

        artifact = self.encoder.encode(
            quantized,
            options.loop_count,
            progress=lambda p: tracker.update(Stage.ENCODE, p),
        )
        tracker.update(Stage.ENCODE, 1.0)

        size = len(artifact)
        within = not options.constrained or size <= options.budget_bytes
        w, h = scaled[0].size
        bound = size_bound(len(scaled), w, h, options.max_colors)
        logger.info(
            "Attempt %d: %d frames at %dx%d, %d colours -> %d bytes%s.",
            attempt, len(scaled), w, h, options.max_colors, size,
            "" if within else " (over budget)",
        )
        return EncodeAttemptResult(
            artifact=artifact,
            size_bytes=size,
            options=options,
            within_budget=within,
            frame_count=len(scaled),
            dimensions=(w, h),
            attempt=attempt,
            size_bound=bound,
        )

    # ---- Degradation policy ---------------------------------------------

    def _bound_for(self, frames: list[Frame], options: EncodeOptions) -> int:
        w, h = scaled_size(frames[0].size, options.max_width)
        return size_bound(len(frames), w, h, options.max_colors)

    def next_step(
        self,
        reduced: list[Frame],
        options: EncodeOptions,
        current_bound: int,
        disabled: Optional[set[Knob]] = None,
    ) -> Optional[DegradationStep]:
        """Propose the next cheaper attempt, or None when every knob is spent.

        Knobs that turn out to be exhausted are added to *disabled* so
        later calls skip them without recomputation.
        """
        disabled = disabled if disabled is not None else set()
        for knob in Knob:
            if knob in disabled:
                continue
            step = self._propose(knob, reduced, options)
            if step is not None and step.bound < current_bound:
                return step
            disabled.add(knob)
        return None

    def _propose(
        self,
        knob: Knob,
        reduced: list[Frame],
        options: EncodeOptions,
    ) -> Optional[DegradationStep]:
        if knob is Knob.SIMILARITY:
            for threshold in self.threshold_schedule:
                if threshold <= options.similarity_threshold:
                    continue
                candidate = reduce_similar(reduced, threshold)
                if len(candidate) < len(reduced):
                    new_options = options.replace(similarity_threshold=threshold)
                    return DegradationStep(
                        knob, new_options, candidate,
                        self._bound_for(candidate, new_options))
                logger.debug("Threshold %.1f drops no frames; skipping.", threshold)
            return None

        if knob is Knob.COLORS:
            if options.max_colors <= self.min_colors:
                return None
            new_options = options.replace(
                max_colors=max(self.min_colors, options.max_colors // 2))
            return DegradationStep(
                knob, new_options, reduced, self._bound_for(reduced, new_options))

        if knob is Knob.FRAME_RATE:
            candidate = decimate(reduced, 2)
            if len(candidate) >= len(reduced):
                return None
            new_options = options.replace(keep_every=options.keep_every * 2)
            return DegradationStep(
                knob, new_options, candidate, self._bound_for(candidate, new_options))

        current_width = scaled_size(reduced[0].size, options.max_width)[0]
        if current_width <= self.min_width:
            return None
        new_width = max(self.min_width, int(current_width * self.width_factor))
        if new_width >= current_width:
            return None
        new_options = options.replace(max_width=new_width)
        return DegradationStep(
            knob, new_options, reduced, self._bound_for(reduced, new_options))
