"""
NetCoach: real-time tennis net-crossing fusion, scoring and wearable feedback.

The heavy recognition back-ends live in ``netcoach.backends`` and are only
imported by callers that need them.
"""

from netcoach.analyzer import SessionSink, TennisAnalyzer
from netcoach.angle_controller import AngleController
from netcoach.ball_tracker import BallTracker, classify_crossing
from netcoach.companion import (
    CompanionMessenger, ConnectionStatus, HttpCompanionLink, LogNotifier,
)
from netcoach.config import PipelineConfig, load_config
from netcoach.datatypes import (
    AngleEvent, BallState, Box, CrossingEvent, CrossingResult, DetectedObject,
    DetectionResult, FeedbackMessage, Frame, MessageType, SessionRecord,
    ShotCounters, SwingEvent, SwingResult,
)
from netcoach.frame_dispatcher import CaptureThread, FrameDispatcher
from netcoach.object_detector import ObjectDetector
from netcoach.score_engine import ScoreEngine
from netcoach.swing_classifier import SwingClassifier

__version__ = "0.1.0"

__all__ = [
    "AngleController", "AngleEvent", "BallState", "BallTracker", "Box",
    "CaptureThread", "CompanionMessenger", "ConnectionStatus", "CrossingEvent",
    "CrossingResult", "DetectedObject", "DetectionResult", "FeedbackMessage",
    "Frame", "FrameDispatcher", "HttpCompanionLink", "LogNotifier", "MessageType",
    "ObjectDetector", "PipelineConfig", "ScoreEngine", "SessionRecord",
    "SessionSink", "ShotCounters", "SwingClassifier", "SwingEvent", "SwingResult",
    "TennisAnalyzer", "classify_crossing", "load_config",
]
