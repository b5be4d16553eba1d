"""
Progress reporting and cooperative cancellation.

Every encode call reports one externally visible fraction in [0, 1]:

    attempt 1:  reduce + scale      0.00 -- 0.15
                quantize + encode   0.15 -- 0.85
    retries:    each size-fit retry sweeps its own equal slot of the
                remaining 0.85 -- 1.00

Reported values never decrease within one call, even if a stage reports
out of order.  Cancellation is checked at batch and attempt boundaries
only; nothing is interrupted mid-frame.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any, Callable, Optional

from tqdm import tqdm

from framefit.exceptions import EncodeCancelled
from framefit.types import Stage

logger = logging.getLogger(__name__)

ProgressSink = Callable[[Stage, float], None]

PREP_WEIGHT = 0.15
MAIN_WEIGHT = 0.70
RETRY_WEIGHT = 1.0 - PREP_WEIGHT - MAIN_WEIGHT

# Where each stage sits inside a single attempt's own 0 -> 1 sweep.
_STAGE_SPANS: dict[Stage, tuple[float, float]] = {
    Stage.REDUCE: (0.0, 0.1),
    Stage.SCALE: (0.1, 0.2),
    Stage.QUANTIZE: (0.2, 0.65),
    Stage.ENCODE: (0.65, 1.0),
}
_PREP_END = _STAGE_SPANS[Stage.SCALE][1]


class CancellationToken:
    """Thread-safe cancellation flag settable by the caller."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise EncodeCancelled("Encode cancelled by caller.")


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """Raise EncodeCancelled if *token* is set; no-op for ``None``."""
    if token is not None:
        token.raise_if_cancelled()


class ProgressTracker:
    """Map stage-local progress onto the single overall fraction."""

    def __init__(self, sink: Optional[ProgressSink], retry_slots: int = 1) -> None:
        self.sink = sink
        self.retry_slots = max(1, retry_slots)
        self.attempt = 1
        self.value = 0.0

    def begin_attempt(self, attempt: int) -> None:
        self.attempt = attempt

    def _attempt_to_overall(self, local: float) -> float:
        if self.attempt <= 1:
            if local <= _PREP_END:
                return PREP_WEIGHT * local / _PREP_END
            return PREP_WEIGHT + MAIN_WEIGHT * (local - _PREP_END) / (1.0 - _PREP_END)
        retry = min(self.attempt - 2, self.retry_slots - 1)
        slot = RETRY_WEIGHT / self.retry_slots
        return PREP_WEIGHT + MAIN_WEIGHT + slot * (retry + local)

    def update(self, stage: Stage, fraction: float) -> None:
        """Report *fraction* (0 -- 1) of *stage* within the current attempt."""
        fraction = min(1.0, max(0.0, fraction))
        lo, hi = _STAGE_SPANS.get(stage, (1.0, 1.0))
        overall = self._attempt_to_overall(lo + (hi - lo) * fraction)
        self._emit(stage, overall)

    def finish(self) -> None:
        self._emit(Stage.DONE, 1.0)

    def _emit(self, stage: Stage, overall: float) -> None:
        if overall < self.value:
            overall = self.value
        self.value = overall
        if self.sink is not None:
            self.sink(stage, overall)


class TqdmProgressSink:
    """Render overall progress on a tqdm bar (percent units)."""

    def __init__(self, description: str = "Encoding") -> None:
        self._bar: Any = tqdm(
            total=100, desc=description, unit="%",
            file=sys.stderr, dynamic_ncols=True,
            bar_format="{desc}: {percentage:3.0f}%|{bar}| {postfix}",
        )
        self._shown = 0

    def __call__(self, stage: Stage, fraction: float) -> None:
        target = int(round(fraction * 100))
        if target > self._shown:
            self._bar.update(target - self._shown)
            self._shown = target
        self._bar.set_postfix_str(stage.value)

    def close(self) -> None:
        self._bar.close()
