"""
Option presets, YAML option files and external-tool discovery.

There is no global configuration: every pipeline call receives an
explicit ``EncodeOptions``.  This module only helps build one.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Optional

import yaml

from framefit.exceptions import EncoderNotFoundError, OptionsError
from framefit.types import EncodeOptions


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

PRESETS: dict[str, dict[str, Any]] = {
    "light": {
        "max_colors": 64,
        "max_width": 500,
        "max_file_size_kb": 1000,
        "quantization_speed": 4,
        "similarity_threshold": 3.0,
        "min_frame_duration": 0.05,
    },
    "normal": {
        "max_colors": 128,
        "max_width": 800,
        "max_file_size_kb": 3000,
        "quantization_speed": 2,
        "similarity_threshold": 3.0,
    },
    "discord": {
        "max_colors": 256,
        "max_width": 720,
        "max_file_size_kb": 8000,
        "quantization_speed": 3,
        "similarity_threshold": 3.0,
    },
    "high": {
        "max_colors": 256,
        "max_width": 0,
        "max_file_size_kb": 0,
        "quantization_speed": 1,
        "quantization_quality": 95,
    },
}


def options_from_preset(name: str, base: Optional[EncodeOptions] = None) -> EncodeOptions:
    """Apply the named preset on top of *base* (defaults if omitted)."""
    try:
        values = PRESETS[name]
    except KeyError:
        raise OptionsError(
            f"Unknown preset {name!r}; choose from {', '.join(sorted(PRESETS))}."
        ) from None
    return (base or EncodeOptions()).replace(**values)


def options_from_mapping(
    data: dict[str, Any],
    base: Optional[EncodeOptions] = None,
) -> EncodeOptions:
    """Build options from a plain mapping; unknown keys are rejected.

    A ``preset`` key is applied first, explicit fields override it.
    """
    if not isinstance(data, dict):
        raise OptionsError(f"Options must be a mapping, got {type(data).__name__}.")
    data = dict(data)
    options = base or EncodeOptions()
    preset = data.pop("preset", None)
    if preset is not None:
        options = options_from_preset(str(preset), options)

    known = set(EncodeOptions.field_names())
    unknown = sorted(set(data) - known)
    if unknown:
        raise OptionsError(f"Unknown option(s): {', '.join(unknown)}.")
    try:
        return options.replace(**data)
    except TypeError as exc:
        raise OptionsError(str(exc)) from exc


def load_options(path: Path, base: Optional[EncodeOptions] = None) -> EncodeOptions:
    """Read encode options from a YAML file.

    Example::

        preset: light
        max_colors: 32
        dither_level: 0.5
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise OptionsError(f"Invalid YAML in {path}: {exc}") from exc
    return options_from_mapping(data, base)


def dump_options(options: EncodeOptions) -> str:
    """Serialise *options* as YAML (round-trips through ``load_options``)."""
    data = {name: getattr(options, name) for name in EncodeOptions.field_names()}
    return yaml.safe_dump(data, sort_keys=False)


# ---------------------------------------------------------------------------
# External tools
# ---------------------------------------------------------------------------

def resolve_tool(name: str, install_hint: str = "") -> Path:
    """Find the absolute path to an external encoder binary."""
    path = shutil.which(name)
    if path is None:
        hint = f" {install_hint}" if install_hint else ""
        raise EncoderNotFoundError(f"{name!r} not found on $PATH.{hint}")
    return Path(path)
