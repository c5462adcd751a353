"""
ball_tracker.py
──────────────────────────────────────────────────────────────────────────────
Ball trajectory + net-crossing state machine.

Consumes the filtered ``DetectionResult`` of every frame and is the single
owner of:
  • the rolling ball trajectory (last N samples, FIFO)
  • the smoothed velocity estimate
  • the confirmed net box
  • the left/right side history and the crossing-in-progress flag

A crossing is triggered by a left → right side change between two
consecutive accepted ball samples; the outcome is decided by
``classify_crossing`` from the ball height at that instant.  When the ball
disappears mid-crossing the outcome is inferred from the estimated height
where the trajectory meets the net.

All public methods take the tracker's lock, and every view is returned as a
copy, so the pose and detection callbacks can never race on this state.
"""

from __future__ import annotations

import collections
import logging
import threading
from typing import Deque, List, Optional, Tuple

from netcoach.config import TrackerConfig
from netcoach.datatypes import (
    BallPosition, BallState, Box, CrossingResult, DetectionResult,
)
from netcoach.utils.geometry import (
    LEFT, RIGHT, ball_side, box_average, center_distance, estimate_crossing_height,
    mean_step,
)
from netcoach.utils.logging_utils import log_service_init

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# Outcome classification (pure)
# ──────────────────────────────────────────────────────────────────────────────
def classify_crossing(
    height: float,
    net_top: float,
    net_bottom: float,
    forward_valid: bool = True,
    margin: float = 0.0,
) -> CrossingResult:
    """
    Decide a crossing outcome from the ball height at the net.

    Image coordinates: a smaller y is physically higher.

        height < net_top - margin     → success (if forward_valid) else uncertain
        height > net_bottom + margin  → failed_under_net
        otherwise                     → failed_hit_net
    """
    if height < net_top - margin:
        return CrossingResult.SUCCESS_OVER_NET if forward_valid else CrossingResult.UNCERTAIN
    if height > net_bottom + margin:
        return CrossingResult.FAILED_UNDER_NET
    return CrossingResult.FAILED_HIT_NET


def validate_forward_trajectory(
    positions: List[BallPosition],
    min_dx: float = 0.005,
    max_dy: float = 0.08,
) -> bool:
    """Steady net-ward motion: mean dx above ``min_dx`` and no vertical jump."""
    if len(positions) < 2:
        return False
    avg_dx, worst_dy = mean_step(p.center for p in positions)
    return avg_dx > min_dx and worst_dy < max_dy


# ──────────────────────────────────────────────────────────────────────────────
# BallTracker
# ──────────────────────────────────────────────────────────────────────────────
class BallTracker:
    """
    Per-session ball tracker.

    Usage
    ─────
    tracker = BallTracker()
    result  = tracker.update(detection)     # CrossingResult or None
    """

    def __init__(self, config: Optional[TrackerConfig] = None):
        self.config = config or TrackerConfig()
        self._lock  = threading.RLock()

        self._trajectory : Deque[BallPosition] = collections.deque(maxlen=self.config.max_trajectory)
        self._velocities : Deque[Tuple[float, float]] = collections.deque(maxlen=self.config.velocity_history)
        self._sides      : Deque[str] = collections.deque(maxlen=self.config.side_history)

        self._net_box        : Optional[Box] = None
        self._net_confirmed  = False
        self._net_samples    : List[Box] = []

        self._state               = BallState.UNKNOWN
        self._crossing_in_progress = False
        self._frame_count         = 0
        self._last_seen           : Optional[float] = None

        log_service_init("BallTracker", vars(self.config))

    # ──────────────────────────────────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────────────────────────────────
    def update(self, detection: DetectionResult) -> Optional[CrossingResult]:
        """
        Feed one frame's detections.

        Returns
        ───────
        CrossingResult when this frame resolved a crossing episode (including
        ``UNCERTAIN``), otherwise None.
        """
        with self._lock:
            self._frame_count += 1
            if detection.net is not None:
                self._observe_net(detection.net)

            if detection.ball is None:
                return self._handle_missing(detection.timestamp)
            return self._handle_ball(detection.ball, detection.timestamp, detection.frame_index)

    def reset_all_tracking(self) -> None:
        """Clear trajectory, velocity, sides, net box, crossing flag and frame counter."""
        with self._lock:
            self._clear_shot()
            self._net_box       = None
            self._net_confirmed = False
            self._net_samples   = []
            self._frame_count   = 0
            self._state         = BallState.UNKNOWN
            logger.debug("Ball tracking reset")

    # ── read-only views ───────────────────────────────────────────────────────
    @property
    def trajectory(self) -> List[BallPosition]:
        with self._lock:
            return list(self._trajectory)

    @property
    def velocity(self) -> Tuple[float, float]:
        with self._lock:
            return self._smoothed_velocity()

    @property
    def state(self) -> BallState:
        with self._lock:
            return self._state

    @property
    def net_box(self) -> Optional[Box]:
        with self._lock:
            return self._net_box

    @property
    def net_confirmed(self) -> bool:
        with self._lock:
            return self._net_confirmed

    @property
    def side_history(self) -> List[str]:
        with self._lock:
            return list(self._sides)

    @property
    def crossing_in_progress(self) -> bool:
        with self._lock:
            return self._crossing_in_progress

    @property
    def frame_count(self) -> int:
        with self._lock:
            return self._frame_count

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "state"               : self._state.value,
                "trajectory"          : [p.center for p in self._trajectory],
                "velocity"            : self._smoothed_velocity(),
                "net_box"             : self._net_box,
                "net_confirmed"       : self._net_confirmed,
                "crossing_in_progress": self._crossing_in_progress,
            }

    # ──────────────────────────────────────────────────────────────────────────
    # Net box acquisition
    # ──────────────────────────────────────────────────────────────────────────
    def _observe_net(self, box: Box) -> None:
        if self._net_confirmed:
            return
        if self._frame_count > self.config.net_detection_max_frames:
            # Window closed: settle on whatever has been collected so far
            if self._net_box is not None:
                self._net_confirmed = True
            return

        if self.config.net_average_frames <= 1:
            self._net_box       = box
            self._net_confirmed = True
            logger.info("Net box confirmed: %s", box)
            return

        if self._net_samples:
            recent = box_average(self._net_samples[-5:])
            if center_distance(box, recent) >= self.config.max_net_variance:
                logger.debug("Discarded inconsistent net observation %s", box)
                return

        self._net_samples.append(box)
        self._net_box = box_average(self._net_samples)
        if len(self._net_samples) >= self.config.net_average_frames:
            self._net_confirmed = True
            logger.info(
                "Net box confirmed from %d observations: %s",
                len(self._net_samples), self._net_box,
            )

    # ──────────────────────────────────────────────────────────────────────────
    # Ball sample handling
    # ──────────────────────────────────────────────────────────────────────────
    def _handle_ball(self, ball: Box, timestamp: float, frame_index: int) -> Optional[CrossingResult]:
        pos = BallPosition(center=ball.center, timestamp=timestamp, frame_index=frame_index)

        if self._trajectory:
            prev = self._trajectory[-1]
            dt = pos.timestamp - prev.timestamp
            if dt > 0:
                self._velocities.append((
                    (pos.center[0] - prev.center[0]) / dt,
                    (pos.center[1] - prev.center[1]) / dt,
                ))
        self._trajectory.append(pos)
        self._last_seen = timestamp

        net = self._net_box
        if net is None:
            self._state = BallState.DETECTED
            return None

        self._state = self._compute_state(pos.center[0], net)

        side = ball_side(pos.center[0], net)
        previous_side = self._sides[-1] if self._sides else None
        self._sides.append(side)

        if side == LEFT and self._state in (BallState.APPROACHING_NET, BallState.CROSSING_NET):
            self._crossing_in_progress = True

        if previous_side == LEFT and side == RIGHT:
            return self._resolve_crossing(pos, net)
        return None

    def _compute_state(self, x: float, net: Box) -> BallState:
        vx, _ = self._smoothed_velocity()
        distance = abs(x - net.mid_x)
        # Approaching is tested first; crossing only covers a ball not moving netward
        if distance < self.config.approach_distance and vx > 0:
            return BallState.APPROACHING_NET
        if distance < self.config.crossing_distance:
            return BallState.CROSSING_NET
        if x > net.mid_x + self.config.crossed_margin:
            return BallState.CROSSED_NET
        return BallState.DETECTED

    def _resolve_crossing(self, pos: BallPosition, net: Box) -> CrossingResult:
        recent = list(self._trajectory)[-self.config.forward_samples:]
        forward_valid = validate_forward_trajectory(
            recent, self.config.forward_min_dx, self.config.forward_max_dy,
        )
        result = classify_crossing(pos.center[1], net.min_y, net.max_y, forward_valid)
        logger.info(
            "Net crossing at frame %d: y=%.3f net=[%.3f, %.3f] forward=%s → %s",
            pos.frame_index, pos.center[1], net.min_y, net.max_y, forward_valid, result.value,
        )
        self._clear_shot()
        self._state = BallState.CROSSED_NET
        return result

    # ──────────────────────────────────────────────────────────────────────────
    # Lost ball
    # ──────────────────────────────────────────────────────────────────────────
    def _handle_missing(self, timestamp: float) -> Optional[CrossingResult]:
        if self._last_seen is None or timestamp - self._last_seen <= self.config.lost_timeout:
            return None

        self._state = BallState.LOST
        result = None
        if (self._crossing_in_progress
                and len(self._trajectory) >= self.config.min_samples_for_inference):
            result = self._infer_lost_crossing()

        logger.debug("Ball lost for more than %.1fs, clearing shot state", self.config.lost_timeout)
        self._clear_shot()
        self._state = BallState.LOST
        return result

    def _infer_lost_crossing(self) -> Optional[CrossingResult]:
        net = self._net_box
        if net is None:
            return None
        vx, _ = self._smoothed_velocity()
        last_x = self._trajectory[-1].center[0]
        if vx <= 0 or abs(last_x - net.mid_x) >= self.config.approach_distance:
            return None

        height = estimate_crossing_height(
            self._trajectory, net.mid_x, self.config.height_window, self.config.height_band,
        )
        if height is None:
            return CrossingResult.UNCERTAIN

        result = classify_crossing(
            height, net.min_y, net.max_y, True, self.config.lost_height_margin,
        )
        logger.info("Inferred crossing from lost ball: height=%.3f → %s", height, result.value)
        return result

    # ──────────────────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────────────────
    def _smoothed_velocity(self) -> Tuple[float, float]:
        if not self._velocities:
            return 0.0, 0.0
        n = len(self._velocities)
        return (
            sum(v[0] for v in self._velocities) / n,
            sum(v[1] for v in self._velocities) / n,
        )

    def _clear_shot(self) -> None:
        self._trajectory.clear()
        self._velocities.clear()
        self._sides.clear()
        self._crossing_in_progress = False
        self._last_seen = None
