"""
Tests for presets, YAML option files and tool discovery.
"""

from __future__ import annotations

from pathlib import Path
from unittest import mock

import pytest

from framefit.config import (
    PRESETS,
    dump_options,
    load_options,
    options_from_mapping,
    options_from_preset,
    resolve_tool,
)
from framefit.exceptions import EncoderNotFoundError, OptionsError
from framefit.types import EncodeOptions


class TestPresets:
    def test_all_presets_valid(self):
        for name in PRESETS:
            opts = options_from_preset(name)
            assert isinstance(opts, EncodeOptions)

    def test_light(self):
        opts = options_from_preset("light")
        assert opts.max_colors == 64
        assert opts.max_width == 500
        assert opts.max_file_size_kb == 1000

    def test_high_is_unconstrained(self):
        opts = options_from_preset("high")
        assert not opts.constrained
        assert opts.max_width == 0

    def test_preset_over_base(self):
        base = EncodeOptions(loop_count=3, dither=False)
        opts = options_from_preset("normal", base)
        assert opts.loop_count == 3
        assert opts.dither is False
        assert opts.max_colors == 128

    def test_unknown(self):
        with pytest.raises(OptionsError, match="Unknown preset"):
            options_from_preset("ultra")


class TestMapping:
    def test_explicit_overrides_preset(self):
        opts = options_from_mapping({"preset": "light", "max_colors": 32})
        assert opts.max_colors == 32
        assert opts.max_width == 500

    def test_unknown_key(self):
        with pytest.raises(OptionsError, match="colours"):
            options_from_mapping({"colours": 12})

    def test_not_a_mapping(self):
        with pytest.raises(OptionsError):
            options_from_mapping([1, 2])  # type: ignore[arg-type]

    def test_invalid_value(self):
        with pytest.raises(OptionsError):
            options_from_mapping({"dither_level": 3})


class TestYaml:
    def test_load(self, tmp_dir):
        path = tmp_dir / "opts.yaml"
        path.write_text("preset: discord\ndither_level: 0.5\nloop_count: 2\n")
        opts = load_options(path)
        assert opts.max_file_size_kb == 8000
        assert opts.dither_level == 0.5
        assert opts.loop_count == 2

    def test_empty_file_gives_base(self, tmp_dir):
        path = tmp_dir / "empty.yaml"
        path.write_text("")
        base = EncodeOptions(max_colors=99)
        assert load_options(path, base) == base

    def test_invalid_yaml(self, tmp_dir):
        path = tmp_dir / "bad.yaml"
        path.write_text("max_colors: [1, 2\n")
        with pytest.raises(OptionsError, match="Invalid YAML"):
            load_options(path)

    def test_dump_round_trip(self, tmp_dir):
        opts = EncodeOptions(max_colors=48, dither=False, max_file_size_kb=250)
        path = tmp_dir / "dumped.yaml"
        path.write_text(dump_options(opts))
        assert load_options(path) == opts


class TestResolveTool:
    def test_found(self):
        with mock.patch("framefit.config.shutil.which", return_value="/opt/bin/gifski"):
            assert resolve_tool("gifski") == Path("/opt/bin/gifski")

    def test_missing_includes_hint(self):
        with mock.patch("framefit.config.shutil.which", return_value=None):
            with pytest.raises(EncoderNotFoundError, match="cargo install"):
                resolve_tool("gifski", "Try cargo install gifski.")
