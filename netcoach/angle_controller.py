"""
angle_controller.py
──────────────────────────────────────────────────────────────────────────────
Proximity-triggered racquet-face angle analysis.

Whenever a frame carries both a racquet and a ball box whose centres are
within ``proximity_threshold`` of each other, the angle classifier is run on
the dispatcher's current frame (at most once per ``cooldown`` seconds).
Classification is fire-and-forget on an executor; each request carries the
generation it was issued in, and losing proximity (or stopping) bumps the
generation so a late answer is dropped instead of shown.

Features
────────
• "current angle" for display, cleared on proximity loss, expires after 1 s
• latest category kept for shot feedback
• first-occurrence timestamp of each category for the session record
• every accepted result is forwarded to the messenger as ``shotFeedback``
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import numpy as np

from netcoach.config import AngleConfig
from netcoach.datatypes import AngleEvent, DetectionResult, FeedbackMessage, Frame, top_prediction
from netcoach.utils.geometry import center_distance
from netcoach.utils.logging_utils import log_service_init

logger = logging.getLogger(__name__)

AngleModel = Callable[[np.ndarray], Any]


@dataclass(frozen=True)
class AngleReading:
    label: str
    confidence: float
    received_at: float


class AngleController:
    """
    Parameters
    ──────────
    model          : angle classifier, ``model(image) -> ranked labels``
    frame_provider : returns the dispatcher's current Frame
    messenger      : receives one ``shotFeedback`` per accepted result
    executor       : where classifications run (defaults to one worker thread)
    on_result      : optional observer for AngleEvent
    clock          : monotonic time source
    """

    def __init__(
        self,
        model: AngleModel,
        frame_provider: Callable[[], Optional[Frame]],
        messenger: Optional[Any] = None,
        config: Optional[AngleConfig] = None,
        executor: Optional[Executor] = None,
        on_result: Optional[Callable[[AngleEvent], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.model          = model
        self.frame_provider = frame_provider
        self.messenger      = messenger
        self.config         = config or AngleConfig()
        self.on_result      = on_result
        self._clock         = clock
        self._lock          = threading.RLock()

        self._owns_executor = executor is None
        self._executor      = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="angle")

        self._generation     = 0
        self._last_trigger   : Optional[float] = None
        self._in_proximity   = False
        self._current        : Optional[AngleReading] = None
        self._latest_label   : Optional[str] = None
        self._session_start  = self._clock()
        self._first_seen     : Dict[str, float] = {}

        log_service_init("AngleController", vars(self.config))

    # ──────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────────
    def start(self) -> None:
        """Begin a new session: clears readings and category timestamps."""
        with self._lock:
            self._generation   += 1
            self._last_trigger  = None
            self._in_proximity  = False
            self._current       = None
            self._latest_label  = None
            self._first_seen    = {}
            self._session_start = self._clock()

    def stop(self) -> None:
        """Invalidate in-flight classifications."""
        with self._lock:
            self._generation  += 1
            self._in_proximity = False
            self._current      = None

    def shutdown(self) -> None:
        self.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ──────────────────────────────────────────────────────────────────────────
    # Per-frame input
    # ──────────────────────────────────────────────────────────────────────────
    def on_detection(self, detection: DetectionResult) -> bool:
        """
        Check racquet/ball proximity for one frame.

        Returns True when a classification was triggered.
        """
        with self._lock:
            close = (
                detection.racquet is not None
                and detection.ball is not None
                and center_distance(detection.racquet, detection.ball) <= self.config.proximity_threshold
            )
            if not close:
                if self._in_proximity:
                    self._generation  += 1
                    self._in_proximity = False
                    self._current      = None
                    logger.debug("Racquet/ball proximity lost, angle cleared")
                return False

            self._in_proximity = True
            now = self._clock()
            if self._last_trigger is not None and now - self._last_trigger < self.config.cooldown:
                return False

            frame = self.frame_provider()
            if frame is None:
                return False
            self._last_trigger = now
            generation = self._generation

        self._executor.submit(self._classify, frame, generation)
        return True

    # ──────────────────────────────────────────────────────────────────────────
    # Read-only views
    # ──────────────────────────────────────────────────────────────────────────
    @property
    def current_angle(self) -> Optional[AngleReading]:
        """Displayed angle, or None once cleared or older than the display time."""
        with self._lock:
            reading = self._current
            if reading is not None and self._clock() - reading.received_at > self.config.display_seconds:
                self._current = None
                return None
            return reading

    @property
    def latest_label(self) -> Optional[str]:
        with self._lock:
            return self._latest_label

    @property
    def angle_timestamps(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._first_seen)

    # ──────────────────────────────────────────────────────────────────────────
    # Worker side
    # ──────────────────────────────────────────────────────────────────────────
    def _classify(self, frame: Frame, generation: int) -> None:
        try:
            top = top_prediction(self.model(frame.image))
        except Exception:
            logger.exception("Angle classification failed on frame %d", frame.index)
            return
        if top is None:
            return
        self._apply(top[0], top[1], frame.index, generation)

    def _apply(self, label: str, confidence: float, frame_index: int, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("Stale angle result %s dropped (generation %d)", label, generation)
                return
            now = self._clock()
            self._current      = AngleReading(label, confidence, now)
            self._latest_label = label
            if label in self.config.categories and label not in self._first_seen:
                self._first_seen[label] = now - self._session_start

            message = FeedbackMessage.shot_feedback(
                angle=label, is_successful=(label == self.config.optimal_label)
            )
            event = AngleEvent(angle=label, confidence=confidence, frame_index=frame_index, message=message)
            logger.info("Racquet angle %s (%.0f%%) on frame %d", label, confidence * 100, frame_index)

        if self.messenger is not None:
            self.messenger.send(message)
        if self.on_result is not None:
            self.on_result(event)
