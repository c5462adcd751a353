"""
analyzer.py
──────────────────────────────────────────────────────────────────────────────
Single entry point wiring the real-time pipeline together:

    FrameDispatcher ─┬─► SwingClassifier ──► presence / shot-in-progress
                     └─► ObjectDetector ──┬─► BallTracker ──► ScoreEngine ──┐
                                          └─► AngleController ──────────────┴─► CompanionMessenger

Pose and detection results arrive on worker threads; every mutation of the
shared tracker / scoring / angle state happens under one analyzer lock, and
results tagged with a stale generation (issued before ``stop_session()``)
are discarded.  Companion messages are handed over only after that lock is
released.  Outcomes are published on an explicit result channel (``results``
queue plus listeners) as SwingEvent / CrossingEvent / AngleEvent.

Public API
──────────
    analyzer = TennisAnalyzer(pose_model, swing_model, detection_model, angle_model,
                              messenger=messenger, session_sink=sink)
    analyzer.start_session()
    analyzer.submit_frame(frame)            # asynchronous, from a capture thread
    analytics = analyzer.process(frame)     # or synchronous, one frame at a time
    record = analyzer.stop_session(video_reference="rally.mp4")
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Executor
from typing import Any, Callable, Dict, List, Optional, Protocol

from netcoach.angle_controller import AngleController, AngleModel
from netcoach.ball_tracker import BallTracker
from netcoach.config import PipelineConfig
from netcoach.datatypes import (
    CrossingEvent, CrossingResult, DetectionResult, FeedbackMessage, Frame, MessageType,
    SessionRecord, SwingEvent, SwingResult,
)
from netcoach.errors import ModelInvocationError
from netcoach.frame_dispatcher import FrameDispatcher
from netcoach.object_detector import DetectionModel, ObjectDetector
from netcoach.score_engine import ScoreEngine
from netcoach.swing_classifier import PoseModel, SwingClassifier, SwingModel
from netcoach.utils.logging_utils import log_service_init

logger = logging.getLogger(__name__)

SHOT_IN_PROGRESS = "Shot in progress..."


class SessionSink(Protocol):
    def save(self, record: SessionRecord) -> None: ...


# ──────────────────────────────────────────────────────────────────────────────
# TennisAnalyzer
# ──────────────────────────────────────────────────────────────────────────────
class TennisAnalyzer:
    """
    Real-time net-crossing fusion and scoring engine.

    Parameters
    ──────────
    pose_model, swing_model, detection_model, angle_model
        Recognition callables (see ``netcoach.backends``).
    messenger : CompanionMessenger (or anything with ``send(FeedbackMessage)``)
    session_sink : receives one SessionRecord per ``stop_session()``
    config : PipelineConfig
    executor : pool for the dispatcher's pose / detection paths
    angle_executor : pool for angle classification
    clock : monotonic time source for presence cooldowns
    """

    def __init__(
        self,
        pose_model: PoseModel,
        swing_model: SwingModel,
        detection_model: DetectionModel,
        angle_model: AngleModel,
        messenger: Optional[Any] = None,
        session_sink: Optional[SessionSink] = None,
        config: Optional[PipelineConfig] = None,
        executor: Optional[Executor] = None,
        angle_executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config       = config or PipelineConfig()
        self.messenger    = messenger
        self.session_sink = session_sink
        self._clock       = clock
        self._lock        = threading.RLock()

        # Sub-modules
        self.swing    = SwingClassifier(pose_model, swing_model, self.config.swing)
        self.detector = ObjectDetector(detection_model, self.config.detector)
        self.tracker  = BallTracker(self.config.tracker)
        self.angle    = AngleController(
            angle_model,
            frame_provider=self._frame_for_angle,
            messenger=messenger,
            config=self.config.angle,
            executor=angle_executor,
            on_result=self._emit,
            clock=clock,
        )
        # Counted shots are forwarded by the analyzer once its lock is released
        self.scorer   = ScoreEngine(
            config=self.config.scoring,
            angle_provider=lambda: self.angle.latest_label,
        )
        self.dispatcher = FrameDispatcher(
            self._on_pose_frame,
            self._on_detection_frame,
            frame_skip=self.config.frame_skip,
            executor=executor,
        )

        # Result channel
        self.results: "queue.Queue[object]" = queue.Queue()
        self._listeners: List[Callable[[object], None]] = []

        # Session state
        self._active           = False
        self._generation       = self.dispatcher.generation
        self._sync_frame       : Optional[Frame] = None
        self._last_detection   : Optional[DetectionResult] = None
        self._last_swing       : Optional[SwingResult] = None
        self._shot_in_progress = False
        self._status           = "Idle"

        # Presence feedback
        self._in_frame         = True
        self._last_presence    : Dict[MessageType, float] = {}

        log_service_init("TennisAnalyzer", {
            "frame_skip"       : self.config.frame_skip,
            "presence_cooldown": self.config.presence_cooldown,
        }, logging.INFO)

    # ──────────────────────────────────────────────────────────────────────────
    # Session lifecycle
    # ──────────────────────────────────────────────────────────────────────────
    def start_session(self) -> None:
        """Reset all tracking and scoring state and start accepting frames."""
        with self._lock:
            self._reset_state()
            self.angle.start()
            self._generation = self.dispatcher.generation
            self._active     = True
            self._status     = "Collecting poses..."
        logger.info("Session started")
        self._send(FeedbackMessage.create(MessageType.LIVE_ANALYSIS_STARTED))

    def stop_session(self, video_reference: Optional[str] = None) -> SessionRecord:
        """
        Stop processing, discard in-flight results and emit the session record.

        The record goes to the SessionSink once; ``sessionEnded`` goes to the
        companion.
        """
        self.dispatcher.stop()
        self.angle.stop()
        with self._lock:
            self._active     = False
            self._generation = self.dispatcher.generation
            self._status     = "Idle"
            record = self.scorer.session_record(
                video_reference=video_reference,
                angle_timestamps=self.angle.angle_timestamps,
            )
        logger.info(
            "Session stopped: %d attempts, %d successful, %d failed",
            record.total_attempts, record.successful_shots, record.failed_shots,
        )
        self._send(FeedbackMessage.create(MessageType.SESSION_ENDED))
        if self.session_sink is not None:
            self.session_sink.save(record)
        return record

    def reset(self) -> None:
        """Clear state without touching the session's active flag or sending messages."""
        with self._lock:
            self._reset_state()
            self.angle.start()

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    # ──────────────────────────────────────────────────────────────────────────
    # Frame input
    # ──────────────────────────────────────────────────────────────────────────
    def submit_frame(self, frame: Frame) -> bool:
        """Asynchronous path: hand a captured frame to the dispatcher."""
        if not self.active:
            return False
        return self.dispatcher.submit(frame)

    def process(self, frame: Frame) -> dict:
        """
        Synchronous path: run both recognition paths on ``frame`` in the
        calling thread and return the analytics snapshot.
        """
        with self._lock:
            self._sync_frame = frame
            generation = self._generation
        self._on_pose_frame(frame, generation)
        self._on_detection_frame(frame, generation)
        return self.snapshot()

    # ──────────────────────────────────────────────────────────────────────────
    # Result channel
    # ──────────────────────────────────────────────────────────────────────────
    def add_listener(self, listener: Callable[[object], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[object], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def drain_results(self) -> List[object]:
        events = []
        while True:
            try:
                events.append(self.results.get_nowait())
            except queue.Empty:
                return events

    # ──────────────────────────────────────────────────────────────────────────
    # Analytics snapshot
    # ──────────────────────────────────────────────────────────────────────────
    def snapshot(self) -> dict:
        with self._lock:
            counters  = self.scorer.snapshot()
            tracker   = self.tracker.snapshot()
            reading   = self.angle.current_angle
            detection = self._last_detection
            swing     = self._last_swing
            return {
                "status"          : self._status,
                "active"          : self._active,
                "total_attempts"  : counters.total_attempts,
                "successful_shots": counters.successful_shots,
                "failed_shots"    : counters.failed_shots,
                "success_rate"    : round(self.scorer.success_rate, 3),
                "ball_state"      : tracker["state"],
                "trajectory"      : tracker["trajectory"],
                "velocity"        : tracker["velocity"],
                "net_box"         : tracker["net_box"],
                "net_confirmed"   : tracker["net_confirmed"],
                "crossing_in_progress": tracker["crossing_in_progress"],
                "ball_box"        : detection.ball if detection else None,
                "racquet_box"     : detection.racquet if detection else None,
                "objects"         : list(detection.objects) if detection else [],
                "current_angle"   : reading.label if reading else None,
                "angle_confidence": reading.confidence if reading else 0.0,
                "swing_label"     : swing.label if swing else None,
                "in_frame"        : self._in_frame,
                "shot_in_progress": self._shot_in_progress,
                "dropped_frames"  : dict(self.dispatcher.dropped_frames),
            }

    def shutdown(self) -> None:
        self.dispatcher.shutdown()
        self.angle.shutdown()

    # ──────────────────────────────────────────────────────────────────────────
    # Path handlers (worker threads)
    # ──────────────────────────────────────────────────────────────────────────
    def _on_pose_frame(self, frame: Frame, generation: int) -> None:
        if not self._is_current(generation):
            return
        result = self.swing.process(frame)
        with self._lock:
            if not self._is_current(generation):
                logger.debug("Stale pose result for frame %d dropped", frame.index)
                return
            outgoing = self._apply_swing(result)
        self._emit(SwingEvent(result))
        if outgoing is not None:
            self._send(outgoing)

    def _on_detection_frame(self, frame: Frame, generation: int) -> None:
        if not self._is_current(generation):
            return
        try:
            detection = self.detector.detect(frame)
        except ModelInvocationError:
            logger.exception("Object detection failed, frame %d skipped", frame.index)
            return

        event = None
        with self._lock:
            if not self._is_current(generation):
                logger.debug("Stale detection for frame %d dropped", frame.index)
                return
            self._last_detection = detection
            crossing = self.tracker.update(detection)
            if crossing is not None:
                event = self._apply_crossing(crossing, frame.index)
            self.angle.on_detection(detection)

        if event is not None:
            self._emit(event)
            if event.message is not None:
                self._send(event.message)

    # ──────────────────────────────────────────────────────────────────────────
    # State updates (called with the lock held)
    # ──────────────────────────────────────────────────────────────────────────
    def _apply_swing(self, result: SwingResult) -> Optional[FeedbackMessage]:
        """Returns the presence message to send, if any."""
        self._last_swing = result
        if result.failed:
            self._status = result.status
            return None

        outgoing = self._update_presence(result.pose_detected)
        if result.new_impact:
            self._shot_in_progress = True
        self._status = SHOT_IN_PROGRESS if self._shot_in_progress else result.status
        return outgoing

    def _apply_crossing(self, crossing: CrossingResult, frame_index: int) -> CrossingEvent:
        message = self.scorer.on_crossing(crossing, frame_index)
        if crossing.is_decisive:
            self._shot_in_progress = False
        return CrossingEvent(
            result=crossing,
            frame_index=frame_index,
            counters=self.scorer.snapshot(),
            message=message,
        )

    def _update_presence(self, detected: bool) -> Optional[FeedbackMessage]:
        if detected == self._in_frame:
            return None
        self._in_frame = detected
        kind = MessageType.BACK_IN_FRAME if detected else MessageType.NOT_IN_FRAME
        now  = self._clock()
        last = self._last_presence.get(kind)
        if last is not None and now - last < self.config.presence_cooldown:
            logger.debug("%s suppressed by presence cooldown", kind.value)
            return None
        self._last_presence[kind] = now
        logger.info("Player %s", "back in frame" if detected else "not in frame")
        return FeedbackMessage.create(kind)

    def _reset_state(self) -> None:
        self.tracker.reset_all_tracking()
        self.scorer.reset()
        self.swing.reset()
        self.detector.reset()
        self._last_detection   = None
        self._last_swing       = None
        self._shot_in_progress = False
        self._in_frame         = True
        self._last_presence    = {}
        self._sync_frame       = None

    # ──────────────────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────────────────
    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return self._active and generation == self._generation

    def _frame_for_angle(self) -> Optional[Frame]:
        return self.dispatcher.current_frame or self._sync_frame

    def _emit(self, event: object) -> None:
        self.results.put(event)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Result listener %r failed", listener)

    def _send(self, message: FeedbackMessage) -> None:
        if self.messenger is not None:
            self.messenger.send(message)
