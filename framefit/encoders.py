"""
Container encoders: serialise quantized, timed frames into bytes.

Each encoder turns a list of ``QuantizedFrame`` into one artifact and
reports progress at least once per frame.  The controller treats them
as opaque; any hard failure surfaces as ``EncodeFailedError`` and is
never retried.

Encoder priority for ``select_encoder`` is by output suffix:

    .gif            PillowGifEncoder (in-process, default)
    .webp           PillowWebpEncoder
    .png / .apng    PillowApngEncoder

``GifskiEncoder`` shells out to the gifski CLI and is only used when
asked for by name.

Timing
------
Every container stores delays in a native unit (GIF: 1/100 s, WebP and
APNG: 1 ms).  Delays are rounded on the *cumulative* timeline, so
rounding error stays within half a unit over the whole animation instead
of compounding frame to frame.  Each delay is at least one unit.
"""

from __future__ import annotations

import abc
import io
import logging
import math
import subprocess
import tempfile
from fractions import Fraction
from pathlib import Path
from typing import Callable, Optional, Sequence

from PIL import Image, features

from framefit.config import resolve_tool
from framefit.exceptions import EncodeFailedError, EncoderNotFoundError, OptionsError
from framefit.types import QuantizedFrame, as_duration

logger = logging.getLogger(__name__)

FrameProgress = Callable[[float], None]


def quantize_delays(durations: Sequence[float | Fraction], unit_s: float) -> list[int]:
    """Per-frame delays in whole units of *unit_s* via cumulative rounding.

    The timeline is accumulated exactly before rounding.
    """
    unit = as_duration(unit_s)
    delays: list[int] = []
    elapsed = Fraction(0)
    emitted = 0
    for d in durations:
        elapsed += as_duration(d)
        target = math.floor(elapsed / unit + Fraction(1, 2))
        delay = max(1, target - emitted)
        delays.append(delay)
        emitted += delay
    return delays


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class ContainerEncoder(abc.ABC):
    """Abstract interface every container encoder implements."""

    name: str = "abstract"
    extension: str = ""
    time_unit_s: float = 0.001

    @abc.abstractmethod
    def encode(
        self,
        frames: Sequence[QuantizedFrame],
        loop_count: int = 0,
        progress: Optional[FrameProgress] = None,
    ) -> bytes:
        """Serialise *frames* and return the artifact bytes."""

    @staticmethod
    def is_available() -> bool:
        """Return True if this encoder's dependencies are satisfied."""
        return True

    @staticmethod
    def install_hint() -> str:
        """Human-readable install instructions."""
        return ""

    def delays_ms(self, frames: Sequence[QuantizedFrame]) -> list[int]:
        """Frame delays in milliseconds, aligned to this container's unit."""
        unit_ms = int(round(self.time_unit_s * 1000))
        return [d * unit_ms for d in quantize_delays(
            [f.duration for f in frames], self.time_unit_s)]

    def _save_with_pillow(
        self,
        images: list[Image.Image],
        fmt: str,
        **params,
    ) -> bytes:
        buf = io.BytesIO()
        try:
            images[0].save(
                buf,
                format=fmt,
                save_all=True,
                append_images=images[1:],
                **params,
            )
        except (OSError, ValueError, KeyError) as exc:
            raise EncodeFailedError(f"{self.name}: Pillow could not write {fmt}: {exc}") from exc
        return _checked(buf.getvalue(), self.name)


def _checked(data: bytes, name: str) -> bytes:
    if not data:
        raise EncodeFailedError(f"{name}: encoder produced an empty artifact.")
    return data


def _report(progress: Optional[FrameProgress], done: int, total: int, scale: float = 1.0) -> None:
    if progress is not None:
        progress(scale * done / total)


# ===================================================================
#  GIF (Pillow)
# ===================================================================

class PillowGifEncoder(ContainerEncoder):
    """In-process GIF writer with per-frame local palettes.

    Indexed frames are written with their own palette and binary
    transparency; passthrough frames are handed to Pillow as RGBA and
    quantized by Pillow's adaptive palette.
    """

    name = "gif"
    extension = ".gif"
    time_unit_s = 0.01

    def encode(self, frames, loop_count=0, progress=None):
        if not frames:
            raise EncodeFailedError("gif: no frames to encode.")
        images: list[Image.Image] = []
        n = len(frames)
        for i, qf in enumerate(frames):
            if qf.is_indexed:
                img, t_index = qf.to_palette_image()
                if t_index is not None:
                    img.info["transparency"] = t_index
            else:
                img = qf.to_image()
            images.append(img)
            _report(progress, i + 1, n, 0.9)

        data = self._save_with_pillow(
            images,
            "GIF",
            duration=self.delays_ms(frames),
            loop=loop_count,            # 0 = infinite
            disposal=2,                 # Restore to background
        )
        _report(progress, 1, 1)
        return data


# ===================================================================
#  WebP (Pillow)
# ===================================================================

class PillowWebpEncoder(ContainerEncoder):
    """Animated WebP via Pillow's libwebp bindings."""

    name = "webp"
    extension = ".webp"
    time_unit_s = 0.001

    def __init__(self, quality: int = 85, lossless: bool = True, method: int = 4) -> None:
        self.quality = quality          # 0 -- 100, ignored when lossless
        self.lossless = lossless        # Palette output is already lossy
        self.method = method            # Compression effort 0 -- 6

    @staticmethod
    def is_available() -> bool:
        return bool(features.check("webp"))

    @staticmethod
    def install_hint() -> str:
        return "Install a Pillow build with libwebp support."

    def encode(self, frames, loop_count=0, progress=None):
        if not frames:
            raise EncodeFailedError("webp: no frames to encode.")
        images = []
        n = len(frames)
        for i, qf in enumerate(frames):
            images.append(qf.to_image())
            _report(progress, i + 1, n, 0.9)
        data = self._save_with_pillow(
            images,
            "WEBP",
            duration=self.delays_ms(frames),
            loop=loop_count,
            quality=self.quality,
            lossless=self.lossless,
            method=self.method,
        )
        _report(progress, 1, 1)
        return data


# ===================================================================
#  APNG (Pillow)
# ===================================================================

class PillowApngEncoder(ContainerEncoder):
    """Animated PNG via Pillow; full 8-bit alpha."""

    name = "apng"
    extension = ".png"
    time_unit_s = 0.001

    def encode(self, frames, loop_count=0, progress=None):
        if not frames:
            raise EncodeFailedError("apng: no frames to encode.")
        images = []
        n = len(frames)
        for i, qf in enumerate(frames):
            images.append(qf.to_image())
            _report(progress, i + 1, n, 0.9)
        data = self._save_with_pillow(
            images,
            "PNG",
            duration=self.delays_ms(frames),
            loop=loop_count,
        )
        _report(progress, 1, 1)
        return data


# ===================================================================
#  gifski (external CLI)
# ===================================================================

class GifskiEncoder(ContainerEncoder):
    """Cross-frame optimising GIF encoder backed by the gifski CLI.

    gifski only accepts a constant frame rate, so frames are written
    once and listed repeatedly at 50 fps to reproduce per-frame delays
    in 1/50 s steps; gifski merges identical consecutive frames back
    into single long delays.

    Command structure::

        gifski --fps 50 --quality 90 [--repeat N] -o out.gif
               frame_000000.png frame_000000.png frame_000001.png ...
    """

    name = "gifski"
    extension = ".gif"
    time_unit_s = 0.02
    FPS = 50

    def __init__(self, quality: int = 90, timeout_s: float = 300.0) -> None:
        self.quality = quality          # 1 -- 100
        self.timeout_s = timeout_s

    @staticmethod
    def is_available() -> bool:
        try:
            resolve_tool("gifski")
        except EncoderNotFoundError:
            return False
        return True

    @staticmethod
    def install_hint() -> str:
        return "Install gifski (brew install gifski / cargo install gifski)."

    def build_command(
        self,
        binary: Path,
        frame_paths: list[Path],
        repeats: list[int],
        output: Path,
        loop_count: int,
    ) -> list[str]:
        cmd = [
            str(binary),
            "--fps", str(self.FPS),
            "--quality", str(max(1, min(100, self.quality))),
        ]
        if loop_count != 0:
            cmd += ["--repeat", str(loop_count)]
        cmd += ["-o", str(output)]
        for path, count in zip(frame_paths, repeats):
            cmd += [str(path)] * count
        return cmd

    def encode(self, frames, loop_count=0, progress=None):
        if not frames:
            raise EncodeFailedError("gifski: no frames to encode.")
        binary = resolve_tool("gifski", self.install_hint())
        repeats = quantize_delays([f.duration for f in frames], self.time_unit_s)
        n = len(frames)

        with tempfile.TemporaryDirectory(prefix="framefit_gifski_") as tmpdir:
            tmp = Path(tmpdir)
            frame_paths: list[Path] = []
            for i, qf in enumerate(frames):
                p = tmp / f"frame_{i:06d}.png"
                qf.to_image().save(str(p), format="PNG")
                frame_paths.append(p)
                _report(progress, i + 1, n, 0.5)

            output = tmp / "out.gif"
            cmd = self.build_command(binary, frame_paths, repeats, output, loop_count)
            logger.debug("gifski command: %s ... (%d args)", " ".join(cmd[:6]), len(cmd))
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_s,
                )
            except subprocess.TimeoutExpired as exc:
                raise EncodeFailedError(
                    f"gifski timed out after {self.timeout_s:.0f}s."
                ) from exc
            except OSError as exc:
                raise EncodeFailedError(f"gifski could not be started: {exc}") from exc

            if result.returncode != 0:
                raise EncodeFailedError(
                    f"gifski exited with status {result.returncode}.",
                    tool_output=(result.stderr or result.stdout or "").strip(),
                )
            if not output.is_file():
                raise EncodeFailedError("gifski reported success but wrote no file.")
            data = _checked(output.read_bytes(), self.name)

        _report(progress, 1, 1)
        return data


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ENCODERS: dict[str, type[ContainerEncoder]] = {
    "gif": PillowGifEncoder,
    "webp": PillowWebpEncoder,
    "apng": PillowApngEncoder,
    "gifski": GifskiEncoder,
}

_SUFFIX_TO_ENCODER = {
    ".gif": "gif",
    ".webp": "webp",
    ".png": "apng",
    ".apng": "apng",
}


def get_encoder(name: str) -> ContainerEncoder:
    """Instantiate the encoder registered under *name*."""
    try:
        cls = ENCODERS[name]
    except KeyError:
        raise OptionsError(
            f"Unknown encoder {name!r}; choose from {', '.join(ENCODERS)}."
        ) from None
    if not cls.is_available():
        raise EncoderNotFoundError(f"Encoder {name!r} is not available. {cls.install_hint()}")
    logger.info("Using encoder: %s", cls.name)
    return cls()


def select_encoder(path: Path) -> ContainerEncoder:
    """Pick an encoder from the output file suffix (GIF when unknown)."""
    name = _SUFFIX_TO_ENCODER.get(Path(path).suffix.lower(), "gif")
    return get_encoder(name)
