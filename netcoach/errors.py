"""
errors.py
──────────────────────────────────────────────────────────────────────────────
Exception hierarchy shared by every NetCoach component.

Nothing in the real-time path lets these escape to the capture loop: model
failures skip the frame, link failures drop into the delivery fallback chain.
Constructors, on the other hand, raise them so that a missing model file is
reported once, at start-up, instead of printed on every frame.
"""


class NetCoachError(Exception):
    """Base class for all NetCoach errors."""


class ModelLoadError(NetCoachError):
    """A recognition model could not be loaded or initialised."""


class ModelInvocationError(NetCoachError):
    """A recognition model raised while classifying a frame."""


class LinkError(NetCoachError):
    """The companion link refused or failed a delivery."""


class ConfigError(NetCoachError):
    """Malformed or unknown configuration values."""
