"""
datatypes.py
──────────────────────────────────────────────────────────────────────────────
Value types flowing through the pipeline.

Coordinates are normalised to the frame: x ∈ [0, 1] left→right,
y ∈ [0, 1] top→bottom (image convention, so a *smaller* y is physically
higher).  The ball is assumed to travel left → right across a single net.
"""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

Point = Tuple[float, float]

# Object-detector labels
BALL    = "ball"
NET     = "net"
RACQUET = "racquet"
LABELS  = (BALL, NET, RACQUET)


# ──────────────────────────────────────────────────────────────────────────────
# Geometry primitives
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Box:
    """Normalised axis-aligned rectangle (top-left origin)."""

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "Box":
        return cls(min(x1, x2), min(y1, y2), abs(x2 - x1), abs(y2 - y1))

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_y(self) -> float:
        return self.y + self.height

    @property
    def mid_x(self) -> float:
        return self.x + self.width / 2

    @property
    def mid_y(self) -> float:
        return self.y + self.height / 2

    @property
    def center(self) -> Point:
        return self.mid_x, self.mid_y

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class DetectedObject:
    label: str
    confidence: float
    box: Box


@dataclass(frozen=True)
class DetectionResult:
    """Filtered object-detector output for one frame."""

    frame_index: int
    timestamp: float
    ball: Optional[Box] = None
    net: Optional[Box] = None
    racquet: Optional[Box] = None
    objects: Tuple[DetectedObject, ...] = ()


@dataclass(frozen=True)
class Frame:
    """One captured image plus its monotonic index and capture time."""

    image: np.ndarray
    index: int
    timestamp: float


# ──────────────────────────────────────────────────────────────────────────────
# Ball tracking
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class BallPosition:
    center: Point
    timestamp: float
    frame_index: int


class BallState(str, enum.Enum):
    UNKNOWN         = "unknown"
    DETECTED        = "detected"
    APPROACHING_NET = "approaching_net"
    CROSSING_NET    = "crossing_net"
    CROSSED_NET     = "crossed_net"
    LOST            = "lost"


class CrossingResult(str, enum.Enum):
    SUCCESS_OVER_NET = "success_over_net"
    FAILED_HIT_NET   = "failed_hit_net"
    FAILED_UNDER_NET = "failed_under_net"
    UNCERTAIN        = "uncertain"

    @property
    def is_decisive(self) -> bool:
        return self is not CrossingResult.UNCERTAIN

    @property
    def is_success(self) -> bool:
        return self is CrossingResult.SUCCESS_OVER_NET


# ──────────────────────────────────────────────────────────────────────────────
# Scoring / session
# ──────────────────────────────────────────────────────────────────────────────
@dataclass
class ShotCounters:
    total_attempts: int = 0
    successful_shots: int = 0
    failed_shots: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "total_attempts"  : self.total_attempts,
            "successful_shots": self.successful_shots,
            "failed_shots"    : self.failed_shots,
        }


@dataclass(frozen=True)
class SessionRecord:
    """Finalised summary of one processing run, handed to a SessionSink."""

    timestamp: float
    total_attempts: int
    successful_shots: int
    failed_shots: int
    video_reference: Optional[str] = None
    angle_timestamps: Mapping[str, float] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "timestamp"       : self.timestamp,
            "total_attempts"  : self.total_attempts,
            "successful_shots": self.successful_shots,
            "failed_shots"    : self.failed_shots,
            "video_reference" : self.video_reference,
            "angle_timestamps": dict(self.angle_timestamps),
        }


# ──────────────────────────────────────────────────────────────────────────────
# Companion wire messages
# ──────────────────────────────────────────────────────────────────────────────
class MessageType(str, enum.Enum):
    SHOT_FEEDBACK          = "shotFeedback"
    SESSION_ENDED          = "sessionEnded"
    NOT_IN_FRAME           = "notInFrame"
    BACK_IN_FRAME          = "backInFrame"
    LIVE_ANALYSIS_STARTED  = "liveAnalysisStarted"


@dataclass(frozen=True)
class FeedbackMessage:
    """
    Immutable unit handed to the companion service.

    ``payload`` holds the type-specific fields as sorted (key, value) pairs so
    the message stays hashable; ``to_dict()`` produces the flat wire map.
    """

    type: MessageType
    timestamp: float
    id: str
    payload: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def create(cls, type: MessageType, **fields: Any) -> "FeedbackMessage":
        return cls(
            type=MessageType(type),
            timestamp=time.time(),
            id=str(uuid.uuid4()),
            payload=tuple(sorted(fields.items())),
        )

    @classmethod
    def shot_feedback(cls, angle: str, is_successful: bool) -> "FeedbackMessage":
        return cls.create(
            MessageType.SHOT_FEEDBACK, angle=angle, isSuccessful=bool(is_successful)
        )

    def get(self, key: str, default: Any = None) -> Any:
        return dict(self.payload).get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        message: Dict[str, Any] = dict(self.payload)
        message["type"] = self.type.value
        message["timestamp"] = self.timestamp
        message["id"] = self.id
        return message


# ──────────────────────────────────────────────────────────────────────────────
# Result-channel variants
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class SwingResult:
    """Pose-path output for one frame."""

    frame_index: int
    pose_detected: bool
    label: Optional[str] = None
    confidence: float = 0.0
    is_impact: bool = False
    new_impact: bool = False
    failed: bool = False

    @property
    def status(self) -> str:
        if self.failed:
            return "Swing detection failed"
        if self.label is None:
            return "Collecting poses..."
        return f"Action: {self.label} ({int(self.confidence * 100)}%)"


@dataclass(frozen=True)
class SwingEvent:
    result: SwingResult


@dataclass(frozen=True)
class CrossingEvent:
    result: CrossingResult
    frame_index: int
    counters: ShotCounters
    message: Optional[FeedbackMessage] = None


@dataclass(frozen=True)
class AngleEvent:
    angle: str
    confidence: float
    frame_index: int
    message: Optional[FeedbackMessage] = None


def top_prediction(ranked: Any) -> Optional[Tuple[str, float]]:
    """
    Best (label, probability) from a classifier output.

    Accepts either a ``{label: prob}`` mapping or an iterable of
    ``(label, prob)`` pairs; returns None for an empty output.
    """
    items = list(ranked.items()) if isinstance(ranked, Mapping) else list(ranked)
    if not items:
        return None
    label, prob = max(items, key=lambda item: float(item[1]))
    return str(label), float(prob)
