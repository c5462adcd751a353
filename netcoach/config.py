"""
Pipeline configuration settings.

This module centralizes all configurable parameters for the shot-analysis
pipeline.  Defaults reproduce the tuned on-device values; a YAML file can
override any subset of them (see ``configs/default.yaml``).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from netcoach.errors import ConfigError


@dataclass
class DetectorConfig:
    """Configuration for ObjectDetector."""

    ball_confidence: float = 0.5
    net_confidence: float = 0.5
    racquet_confidence: float = 0.5

    # Ball-size consistency filter
    min_ball_size_ratio: float = 0.5
    max_ball_size_ratio: float = 2.0
    ball_size_smoothing: float = 0.1


@dataclass
class SwingConfig:
    """Configuration for SwingClassifier."""

    window_length: int = 30
    keypoint_count: int = 18
    keypoint_min_confidence: float = 0.1
    impact_label: str = "impact"
    impact_threshold: float = 0.1


@dataclass
class TrackerConfig:
    """Configuration for BallTracker."""

    max_trajectory: int = 10
    velocity_history: int = 5
    side_history: int = 5

    # Ball-state thresholds (normalised distance to net centre)
    approach_distance: float = 0.15
    crossing_distance: float = 0.05
    crossed_margin: float = 0.1

    # Net box acquisition
    net_detection_max_frames: int = 10
    net_average_frames: int = 1
    max_net_variance: float = 0.05

    # Lost-ball inference
    lost_timeout: float = 1.0
    min_samples_for_inference: int = 3
    lost_height_margin: float = 0.02
    height_window: int = 8
    height_band: float = 0.1

    # Forward-trajectory validation
    forward_samples: int = 5
    forward_min_dx: float = 0.005
    forward_max_dy: float = 0.08


@dataclass
class ScoringConfig:
    """Configuration for ScoreEngine."""

    cooldown_frames: int = 30
    history_length: int = 200


@dataclass
class AngleConfig:
    """Configuration for AngleController."""

    proximity_threshold: float = 0.22
    cooldown: float = 0.1
    display_seconds: float = 1.0
    optimal_label: str = "Perfect"
    categories: tuple = ("Open", "Closed", "Perfect")


@dataclass
class CompanionConfig:
    """Configuration for CompanionMessenger and HttpCompanionLink."""

    base_url: Optional[str] = None
    request_timeout: float = 2.0
    status_ttl: float = 1.0
    throttle_interval: float = 0.5
    max_attempts: int = 3
    retry_interval: float = 2.0
    max_activation_attempts: int = 3
    health_check_interval: float = 5.0
    health_timeout: float = 30.0


@dataclass
class ModelConfig:
    """Weights and device for the recognition back-ends."""

    detector_weights: str = "models/racquet_ball_net.pt"
    angle_weights: str = "models/head_angle_cls.pt"
    swing_weights: str = "models/swing_lstm.pt"
    device: str = "cpu"
    pose_complexity: int = 0


@dataclass
class PipelineConfig:
    """Top-level configuration handed to TennisAnalyzer."""

    frame_skip: int = 1
    presence_cooldown: float = 3.0
    log_level: str = "INFO"

    detector: DetectorConfig = field(default_factory=DetectorConfig)
    swing: SwingConfig = field(default_factory=SwingConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    angle: AngleConfig = field(default_factory=AngleConfig)
    companion: CompanionConfig = field(default_factory=CompanionConfig)
    models: ModelConfig = field(default_factory=ModelConfig)


def _build(cls, values: Dict[str, Any], path: str):
    if not isinstance(values, dict):
        raise ConfigError(f"Section '{path}' must be a mapping, got {type(values).__name__}")

    known = {f.name: f for f in fields(cls)}
    unknown = set(values) - set(known)
    if unknown:
        raise ConfigError(f"Unknown keys in '{path}': {sorted(unknown)}")

    kwargs = {}
    for name, value in values.items():
        default = known[name].default_factory() if callable(known[name].default_factory) else None
        if default is not None and is_dataclass(default):
            kwargs[name] = _build(type(default), value or {}, f"{path}.{name}")
        elif name == "categories":
            kwargs[name] = tuple(value)
        else:
            kwargs[name] = value
    return cls(**kwargs)


def config_from_dict(values: Optional[Dict[str, Any]]) -> PipelineConfig:
    """Build a PipelineConfig from a (possibly partial) nested mapping."""
    return _build(PipelineConfig, values or {}, "root")


def load_config(config_path: Optional[Union[str, Path]] = None) -> PipelineConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to a YAML file. ``None`` returns the defaults.

    Returns:
        PipelineConfig with file values layered over the defaults

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ConfigError: If the file contains unknown keys or malformed sections
    """
    if config_path is None:
        return PipelineConfig()

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    with open(config_file, "r") as f:
        try:
            values = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Malformed YAML in {config_file}: {exc}") from exc

    return config_from_dict(values)
