"""
swing_classifier.py
──────────────────────────────────────────────────────────────────────────────
Pose keypoints → sliding window → swing-phase classification.

Each frame goes through the pose model (``netcoach.backends.MediaPipePoseModel``
in production), producing an ``(18, 3)`` array of ``(x, y, confidence)``
rows.  Low-confidence joints are zeroed and the sample is appended to a
fixed-length window.  Only when the window is exactly full is the swing
model called, with the whole window as one ``(window, 3, 18)`` batch.

An *impact* rising edge (top label contains "impact" with confidence above
the threshold while the previous top label did not) marks a shot as being
in progress.  It never counts an attempt by itself.
"""

from __future__ import annotations

import collections
import logging
import threading
from typing import Any, Callable, Deque, Optional

import numpy as np

from netcoach.config import SwingConfig
from netcoach.datatypes import Frame, SwingResult, top_prediction
from netcoach.utils.logging_utils import log_service_init

logger = logging.getLogger(__name__)

# Joint order of a PoseKeypointSet
JOINT_NAMES = (
    "nose", "left_eye", "right_eye", "left_ear", "right_ear",
    "left_shoulder", "right_shoulder", "left_elbow", "right_elbow",
    "left_wrist", "right_wrist", "left_hip", "right_hip",
    "left_knee", "right_knee", "left_ankle", "right_ankle", "neck",
)

PoseModel  = Callable[[np.ndarray], Optional[np.ndarray]]
SwingModel = Callable[[np.ndarray], Any]


class SwingClassifier:
    """
    Parameters
    ──────────
    pose_model  : ``model(image) -> (18, 3) array`` or None when no body found
    swing_model : ``model(window) -> ranked labels`` for a ``(N, 3, 18)`` batch
    config      : SwingConfig
    """

    def __init__(
        self,
        pose_model: PoseModel,
        swing_model: SwingModel,
        config: Optional[SwingConfig] = None,
    ):
        self.pose_model  = pose_model
        self.swing_model = swing_model
        self.config      = config or SwingConfig()

        self._window: Deque[np.ndarray] = collections.deque(maxlen=self.config.window_length)
        self._last_label      : Optional[str] = None
        self._last_confidence = 0.0
        self._was_impact      = False
        # Guards the window and the last label; the pose model runs outside it
        self._lock            = threading.RLock()

        log_service_init("SwingClassifier", vars(self.config))

    # ──────────────────────────────────────────────────────────────────────────
    def process(self, frame: Frame) -> SwingResult:
        """Run the pose model on ``frame`` and feed the window."""
        try:
            keypoints = self.pose_model(frame.image)
        except Exception:
            logger.exception("Pose estimation failed on frame %d", frame.index)
            return SwingResult(frame_index=frame.index, pose_detected=False, failed=True)

        if keypoints is None:
            with self._lock:
                return SwingResult(
                    frame_index=frame.index,
                    pose_detected=False,
                    label=self._last_label,
                    confidence=self._last_confidence,
                    is_impact=self._was_impact,
                )
        return self.add_keypoints(keypoints, frame.index)

    def add_keypoints(self, keypoints: np.ndarray, frame_index: int = 0) -> SwingResult:
        """Append one keypoint set and classify once the window is full."""
        with self._lock:
            return self._add_locked(keypoints, frame_index)

    def _add_locked(self, keypoints: np.ndarray, frame_index: int) -> SwingResult:
        sample = np.asarray(keypoints, dtype=np.float32).reshape(self.config.keypoint_count, 3).copy()
        sample[sample[:, 2] < self.config.keypoint_min_confidence] = 0.0
        self._window.append(sample)

        if len(self._window) < self.config.window_length:
            return SwingResult(frame_index=frame_index, pose_detected=True)

        batch = self.window_array()
        try:
            top = top_prediction(self.swing_model(batch))
        except Exception:
            logger.exception("Swing classification failed on frame %d", frame_index)
            return SwingResult(frame_index=frame_index, pose_detected=True, failed=True)

        if top is None:
            return SwingResult(frame_index=frame_index, pose_detected=True)

        label, confidence = top
        is_impact  = (
            self.config.impact_label.lower() in label.lower()
            and confidence > self.config.impact_threshold
        )
        new_impact = is_impact and not self._was_impact
        if new_impact:
            logger.info("Impact detected on frame %d (%.0f%%)", frame_index, confidence * 100)

        self._last_label      = label
        self._last_confidence = confidence
        self._was_impact      = is_impact

        return SwingResult(
            frame_index=frame_index,
            pose_detected=True,
            label=label,
            confidence=confidence,
            is_impact=is_impact,
            new_impact=new_impact,
        )

    def window_array(self) -> np.ndarray:
        """Current window as a ``(len, 3, keypoints)`` float32 batch in [0, 1]."""
        with self._lock:
            samples = list(self._window)
        if not samples:
            return np.zeros((0, 3, self.config.keypoint_count), dtype=np.float32)
        stacked = np.stack(samples).transpose(0, 2, 1)
        return np.clip(stacked, 0.0, 1.0).astype(np.float32)

    @property
    def window_size(self) -> int:
        return len(self._window)

    def reset(self) -> None:
        with self._lock:
            self._window.clear()
            self._last_label      = None
            self._last_confidence = 0.0
            self._was_impact      = False
