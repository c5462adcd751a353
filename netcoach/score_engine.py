"""
score_engine.py
──────────────────────────────────────────────────────────────────────────────
Turns net-crossing outcomes into shot counters and feedback messages.

The engine never looks at geometry; it only consumes the ``CrossingResult``
values the BallTracker emits, in frame order:

  • decisive result, not in cooldown → count it, emit ``shotFeedback``,
    start a cooldown of N frames
  • decisive result, in cooldown     → ignored (transient re-detection)
  • ``uncertain``                    → ignored entirely

The feedback message is handed to an injected messenger (anything with
``send(FeedbackMessage)``), so the engine stays testable without a link.
"""

from __future__ import annotations

import collections
import logging
import threading
import time
from typing import Callable, Deque, Dict, Optional, Protocol, Tuple

from netcoach.config import ScoringConfig
from netcoach.datatypes import CrossingResult, FeedbackMessage, SessionRecord, ShotCounters
from netcoach.utils.logging_utils import log_service_init

logger = logging.getLogger(__name__)

# Angle field used when no racquet angle has been classified yet
OUTCOME_LABELS: Dict[CrossingResult, str] = {
    CrossingResult.SUCCESS_OVER_NET: "Success",
    CrossingResult.FAILED_HIT_NET  : "Hit net",
    CrossingResult.FAILED_UNDER_NET: "Under net",
}


class Messenger(Protocol):
    def send(self, message: FeedbackMessage) -> bool: ...


# ──────────────────────────────────────────────────────────────────────────────
# ScoreEngine
# ──────────────────────────────────────────────────────────────────────────────
class ScoreEngine:
    """
    Maintains shot counters for one session.

    Parameters
    ──────────
    messenger      : receives one ``shotFeedback`` per counted shot (optional)
    config         : ScoringConfig (cooldown length, history size)
    angle_provider : returns the latest racquet angle category or None
    """

    def __init__(
        self,
        messenger: Optional[Messenger] = None,
        config: Optional[ScoringConfig] = None,
        angle_provider: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.config         = config or ScoringConfig()
        self.messenger      = messenger
        self.angle_provider = angle_provider
        self._lock          = threading.RLock()

        self.counters = ShotCounters()
        self.history: Deque[Tuple[int, CrossingResult]] = collections.deque(
            maxlen=self.config.history_length
        )
        self._cooldown_until: Optional[int] = None
        self._last_frame = 0

        log_service_init("ScoreEngine", vars(self.config))

    # ──────────────────────────────────────────────────────────────────────────
    def on_crossing(
        self, result: CrossingResult, frame_index: int
    ) -> Optional[FeedbackMessage]:
        """
        Apply one crossing result.

        Returns the emitted FeedbackMessage when the result was counted,
        otherwise None.
        """
        with self._lock:
            self._last_frame = frame_index
            if not result.is_decisive:
                logger.debug("Uncertain crossing at frame %d ignored", frame_index)
                return None
            if self.in_cooldown(frame_index):
                logger.debug(
                    "Crossing %s at frame %d ignored (cooldown until %d)",
                    result.value, frame_index, self._cooldown_until,
                )
                return None

            self.counters.total_attempts += 1
            if result.is_success:
                self.counters.successful_shots += 1
            else:
                self.counters.failed_shots += 1
            self.history.append((frame_index, result))
            self._cooldown_until = frame_index + self.config.cooldown_frames

            angle = self.angle_provider() if self.angle_provider else None
            message = FeedbackMessage.shot_feedback(
                angle=angle or OUTCOME_LABELS[result],
                is_successful=result.is_success,
            )
            logger.info(
                "Shot %d scored %s (success %d / failed %d)",
                self.counters.total_attempts, result.value,
                self.counters.successful_shots, self.counters.failed_shots,
            )

        if self.messenger is not None:
            self.messenger.send(message)
        return message

    def in_cooldown(self, frame_index: int) -> bool:
        with self._lock:
            return self._cooldown_until is not None and frame_index < self._cooldown_until

    def snapshot(self) -> ShotCounters:
        with self._lock:
            return ShotCounters(**self.counters.as_dict())

    @property
    def success_rate(self) -> float:
        with self._lock:
            total = self.counters.total_attempts
            return self.counters.successful_shots / total if total else 0.0

    def session_record(
        self,
        video_reference: Optional[str] = None,
        angle_timestamps: Optional[Dict[str, float]] = None,
        timestamp: Optional[float] = None,
    ) -> SessionRecord:
        """Finalised summary of the counters for a SessionSink."""
        with self._lock:
            return SessionRecord(
                timestamp=time.time() if timestamp is None else timestamp,
                total_attempts=self.counters.total_attempts,
                successful_shots=self.counters.successful_shots,
                failed_shots=self.counters.failed_shots,
                video_reference=video_reference,
                angle_timestamps=dict(angle_timestamps or {}),
            )

    def reset(self) -> None:
        """Full session reset."""
        with self._lock:
            self.counters = ShotCounters()
            self.history.clear()
            self._cooldown_until = None
            self._last_frame = 0
