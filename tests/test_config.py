"""
Tests for YAML configuration loading.
"""

from pathlib import Path

import pytest

from netcoach.config import PipelineConfig, config_from_dict, load_config
from netcoach.errors import ConfigError

DEFAULT_YAML = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"


def test_none_returns_defaults():
    assert load_config(None) == PipelineConfig()


def test_shipped_yaml_matches_defaults():
    assert load_config(DEFAULT_YAML) == PipelineConfig()


def test_partial_override_keeps_other_defaults(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("frame_skip: 2\ntracker:\n  lost_timeout: 0.5\n")
    cfg = load_config(path)

    assert cfg.frame_skip == 2
    assert cfg.tracker.lost_timeout == 0.5
    assert cfg.tracker.max_trajectory == 10
    assert cfg.scoring.cooldown_frames == 30


def test_categories_become_tuple():
    cfg = config_from_dict({"angle": {"categories": ["Open", "Perfect"]}})
    assert cfg.angle.categories == ("Open", "Perfect")


def test_unknown_key_rejected():
    with pytest.raises(ConfigError, match="tracker"):
        config_from_dict({"tracker": {"warp_speed": 9}})


def test_section_must_be_mapping():
    with pytest.raises(ConfigError):
        config_from_dict({"scoring": 30})


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_malformed_yaml_raises_config_error(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("tracker: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(path)
