"""
Tests for the size-fit controller's degradation loop.
"""

from __future__ import annotations

import pytest

from framefit.controller import (
    DEFAULT_MAX_ATTEMPTS,
    FitState,
    Knob,
    SizeFitController,
    size_bound,
)
from framefit.encoders import ContainerEncoder
from framefit.exceptions import EmptyInputError, EncodeFailedError
from framefit.types import EncodeOptions, FitStatus

from conftest import noise_frame, solid_frame


class _SizedEncoder(ContainerEncoder):
    """Fake encoder whose artifact size is a function of the input."""

    name = "sized"

    def __init__(self, bytes_per_pixel=1.0):
        self.bytes_per_pixel = bytes_per_pixel
        self.calls = 0

    def encode(self, frames, loop_count=0, progress=None):
        self.calls += 1
        w, h = frames[0].size
        colors = max(len(f.palette) for f in frames) or 256
        n = int(len(frames) * w * h * self.bytes_per_pixel * colors / 256) + 1
        if progress is not None:
            progress(1.0)
        return b"x" * n


class _FailingEncoder(ContainerEncoder):
    name = "failing"

    def __init__(self):
        self.calls = 0

    def encode(self, frames, loop_count=0, progress=None):
        self.calls += 1
        raise EncodeFailedError("disk full", tool_output="E: disk full")


class TestSizeBound:
    def test_monotonic_in_each_argument(self):
        base = size_bound(10, 100, 80, 128)
        assert size_bound(9, 100, 80, 128) < base
        assert size_bound(10, 75, 60, 128) < base
        assert size_bound(10, 100, 80, 64) < base

    def test_value(self):
        # 4x2 pixels at 2 bits = 1 byte, plus 4 * 3 palette bytes.
        assert size_bound(2, 4, 2, 4) == 2 * (1 + 12)


class TestSizeFitController:
    def test_unconstrained_single_attempt(self, sample_frame_sequence):
        enc = _SizedEncoder()
        result = SizeFitController(encoder=enc).run(sample_frame_sequence, EncodeOptions())
        assert result.status is FitStatus.SATISFIED
        assert result.within_budget
        assert len(result.attempts) == 1
        assert enc.calls == 1

    def test_generous_budget_satisfied_first_try(self, noise_sequence):
        result = SizeFitController().run(noise_sequence, EncodeOptions(max_file_size_kb=10_000))
        assert result.status is FitStatus.SATISFIED
        assert len(result.attempts) == 1
        assert result.size_bytes <= 10_000 * 1024

    def test_degrades_until_satisfied(self, noise_sequence):
        # 8 frames x 64x64 at 1 byte/px = 32 KB; halving colours halves size.
        enc = _SizedEncoder()
        ctl = SizeFitController(encoder=enc)
        result = ctl.run(noise_sequence, EncodeOptions(max_file_size_kb=10))
        assert result.status is FitStatus.SATISFIED
        assert result.within_budget
        assert result.size_bytes <= 10 * 1024
        assert len(result.attempts) > 1
        assert result.options.max_colors < 256
        assert ctl.state is FitState.SATISFIED

    def test_exhausted_returns_smallest_without_raising(self):
        frames = [noise_frame(seed) for seed in range(50)]
        result = SizeFitController().run(frames, EncodeOptions(max_file_size_kb=1))
        assert result.status is FitStatus.EXHAUSTED
        assert not result.within_budget
        assert 1 <= len(result.attempts) <= DEFAULT_MAX_ATTEMPTS
        assert result.size_bytes == min(a.size_bytes for a in result.attempts)
        assert result.artifact

    def test_retry_ceiling_respected(self, noise_sequence):
        enc = _SizedEncoder(bytes_per_pixel=100)
        result = SizeFitController(encoder=enc, max_attempts=3).run(
            noise_sequence, EncodeOptions(max_file_size_kb=1))
        assert result.status is FitStatus.EXHAUSTED
        assert len(result.attempts) == 3
        assert enc.calls == 3

    def test_size_bound_strictly_decreases(self, noise_sequence):
        enc = _SizedEncoder(bytes_per_pixel=100)
        result = SizeFitController(encoder=enc).run(
            noise_sequence, EncodeOptions(max_file_size_kb=1))
        bounds = [a.size_bound for a in result.attempts]
        assert len(bounds) > 1
        assert all(b < a for a, b in zip(bounds, bounds[1:]))

    def test_knob_order_colours_before_width(self, noise_sequence):
        enc = _SizedEncoder(bytes_per_pixel=100)
        result = SizeFitController(encoder=enc).run(
            noise_sequence, EncodeOptions(max_file_size_kb=1))
        colors = [a.options.max_colors for a in result.attempts]
        widths = [a.dimensions[0] for a in result.attempts]
        # Noise frames never merge, so colours halve to the floor first.
        assert colors[:5] == [256, 128, 64, 32, 16]
        assert widths[:5] == [64] * 5
        assert widths[5] < 64

    def test_frame_rate_after_width_floor(self, noise_sequence):
        enc = _SizedEncoder(bytes_per_pixel=100)
        result = SizeFitController(encoder=enc).run(
            noise_sequence, EncodeOptions(max_file_size_kb=1))
        counts = [a.frame_count for a in result.attempts]
        widths = [a.dimensions[0] for a in result.attempts]
        assert len(result.attempts) == DEFAULT_MAX_ATTEMPTS
        assert counts[:8] == [8] * 8
        assert widths[5:8] == [48, 36, 32]
        assert counts[8:] == [4, 2]
        assert result.attempts[-1].options.keep_every == 4

    def test_keep_every_applied_up_front(self, noise_sequence):
        result = SizeFitController(encoder=_SizedEncoder()).run(
            noise_sequence, EncodeOptions(keep_every=2))
        assert result.attempts[0].frame_count == 4

    def test_similarity_knob_first(self):
        # Pairs of near-identical frames: threshold 2 halves the count.
        frames = []
        for i in range(6):
            frames.append(solid_frame((i * 40, 0, 0), (64, 64)))
            frames.append(solid_frame((i * 40 + 1, 0, 0), (64, 64)))
        enc = _SizedEncoder(bytes_per_pixel=100)
        result = SizeFitController(encoder=enc, max_attempts=2).run(
            frames, EncodeOptions(max_file_size_kb=1))
        assert result.attempts[0].frame_count == 12
        assert result.attempts[1].frame_count == 6
        assert result.attempts[1].options.similarity_threshold == 2.0
        assert result.attempts[1].options.max_colors == 256

    def test_all_knobs_at_floor_stops_early(self):
        frames = [noise_frame(0, (16, 16))]
        enc = _SizedEncoder(bytes_per_pixel=1000)
        opts = EncodeOptions(max_file_size_kb=1, max_colors=16)
        result = SizeFitController(encoder=enc).run(frames, opts)
        assert result.status is FitStatus.EXHAUSTED
        assert len(result.attempts) == 1

    def test_encoder_failure_not_retried(self, noise_sequence):
        enc = _FailingEncoder()
        with pytest.raises(EncodeFailedError) as info:
            SizeFitController(encoder=enc).run(
                noise_sequence, EncodeOptions(max_file_size_kb=1))
        assert enc.calls == 1
        assert info.value.tool_output == "E: disk full"

    def test_empty_input(self):
        with pytest.raises(EmptyInputError):
            SizeFitController().run([], EncodeOptions())

    def test_input_frames_untouched(self, noise_sequence):
        durations = [f.duration for f in noise_sequence]
        SizeFitController(encoder=_SizedEncoder(100)).run(
            noise_sequence, EncodeOptions(max_file_size_kb=1, similarity_threshold=3.0))
        assert [f.duration for f in noise_sequence] == durations
        assert len(noise_sequence) == 8

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            SizeFitController(max_attempts=0)
        with pytest.raises(ValueError):
            SizeFitController(width_factor=1.0)


class TestNextStep:
    def test_returns_none_when_exhausted(self):
        ctl = SizeFitController()
        frames = [noise_frame(0, (32, 32))]
        opts = EncodeOptions(max_colors=16, max_width=32)
        bound = size_bound(1, 32, 32, 16)
        disabled = set()
        assert ctl.next_step(frames, opts, bound, disabled) is None
        assert disabled == set(Knob)

    def test_width_step(self):
        ctl = SizeFitController()
        frames = [noise_frame(0, (100, 50))]
        opts = EncodeOptions(max_colors=16)
        step = ctl.next_step(frames, opts, size_bound(1, 100, 50, 16))
        assert step.knob is Knob.WIDTH
        assert step.options.max_width == 75
        assert step.bound == size_bound(1, 75, 38, 16)

    def test_frame_rate_step(self):
        ctl = SizeFitController()
        frames = [noise_frame(i, (32, 32)) for i in range(5)]
        opts = EncodeOptions(max_colors=16, max_width=32)
        disabled = set()
        step = ctl.next_step(frames, opts, size_bound(5, 32, 32, 16), disabled)
        assert step.knob is Knob.FRAME_RATE
        assert len(step.frames) == 3
        assert step.options.keep_every == 2
        assert step.bound == size_bound(3, 32, 32, 16)
        assert sum(f.duration for f in step.frames) == sum(f.duration for f in frames)
        assert Knob.WIDTH in disabled
