"""
Shared fixtures for the framefit test suite.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from framefit.types import Frame


def pytest_configure(config):
    """Register custom markers used across sub-suites."""
    config.addinivalue_line("markers", "external: needs an external encoder binary")


@pytest.fixture(scope="session")
def has_gifski() -> bool:
    return shutil.which("gifski") is not None


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory(prefix="framefit_test_") as d:
        yield Path(d)


def solid_frame(
    color: tuple[int, int, int],
    size: tuple[int, int] = (64, 48),
    duration: float = 0.1,
    alpha: int = 255,
) -> Frame:
    """A single-colour frame."""
    return Frame(Image.new("RGBA", size, (*color, alpha)), duration)


def noise_frame(
    seed: int,
    size: tuple[int, int] = (64, 64),
    duration: float = 0.1,
) -> Frame:
    """An opaque frame of uniform random noise (compresses badly)."""
    rng = np.random.default_rng(seed)
    w, h = size
    rgb = rng.integers(0, 256, size=(h, w, 3), dtype=np.uint8)
    return Frame.from_image(Image.fromarray(rgb), duration)


@pytest.fixture
def sample_rgba_frame() -> Frame:
    """A 100x100 frame with a red square on white background."""
    img = Image.new("RGBA", (100, 100), "white")
    img.paste((255, 0, 0, 255), (25, 25, 75, 75))
    return Frame(img, 0.1)


@pytest.fixture
def sample_frame_sequence() -> list[Frame]:
    """10 frames with a black dot moving across a white background."""
    frames = []
    for i in range(10):
        img = Image.new("RGBA", (100, 100), "white")
        cx = 10 + i * 8
        img.paste((0, 0, 0, 255), (cx - 5, 45, cx + 5, 55))
        frames.append(Frame(img, 0.1))
    return frames


@pytest.fixture
def gradient_frame() -> Frame:
    """A 128x64 horizontal RGB gradient with many distinct colours."""
    x = np.linspace(0, 255, 128, dtype=np.float32)
    y = np.linspace(0, 255, 64, dtype=np.float32)
    r = np.tile(x, (64, 1))
    g = np.tile(y[:, None], (1, 128))
    b = 255 - r
    rgb = np.stack([r, g, b], axis=-1).astype(np.uint8)
    return Frame.from_image(Image.fromarray(rgb), 0.1)


@pytest.fixture
def noise_sequence() -> list[Frame]:
    """8 distinct noise frames; far over any tiny size budget."""
    return [noise_frame(seed) for seed in range(8)]
