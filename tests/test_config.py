"""
Tests for CodecConfig and YAML loading.
"""

from __future__ import annotations

import pytest

from apeng.config import DEFAULT_CONFIG, CodecConfig, load_config


def test_defaults():
    cfg = CodecConfig()
    assert cfg.compression_level == 9
    assert cfg.chunk_size == 65536
    assert cfg.force_animation is False
    assert cfg.bgr_output is True
    assert cfg.alpha_filler == 0xFF
    assert DEFAULT_CONFIG == cfg


def test_transform_follows_options():
    t = CodecConfig(bgr_output=False, alpha_filler=7).transform
    assert t.channel_order == "RGBA"
    assert t.alpha_filler == 7
    assert DEFAULT_CONFIG.transform.channel_order == "BGRA"


@pytest.mark.parametrize("kwargs", [
    {"compression_level": 10},
    {"compression_level": -1},
    {"chunk_size": 0},
    {"alpha_filler": 256},
])
def test_out_of_range_values(kwargs):
    with pytest.raises(ValueError):
        CodecConfig(**kwargs)


def test_from_mapping_rejects_unknown_keys():
    with pytest.raises(ValueError, match="colour_depth"):
        CodecConfig.from_mapping({"colour_depth": 8})


def test_load_yaml(tmp_dir):
    path = tmp_dir / "codec.yaml"
    path.write_text("compression_level: 3\nforce_animation: true\n", encoding="utf-8")
    cfg = load_config(path)
    assert cfg.compression_level == 3
    assert cfg.force_animation is True
    assert cfg.bgr_output is True


def test_load_empty_yaml(tmp_dir):
    path = tmp_dir / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == DEFAULT_CONFIG


def test_load_non_mapping(tmp_dir):
    path = tmp_dir / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_config(path)
