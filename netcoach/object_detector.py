"""
object_detector.py
──────────────────────────────────────────────────────────────────────────────
Ball / net / racquet detection with confidence and ball-size filtering.

The detection model itself is an injected callable
``model(image) -> list[DetectedObject]`` (see ``netcoach.backends`` for the
YOLO implementation).  This module only decides which of the candidates the
rest of the pipeline gets to see:

  • per-label confidence threshold (strictly above)
  • highest-confidence box per label
  • ball size consistency against an EMA of accepted ball areas
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from netcoach.config import DetectorConfig
from netcoach.datatypes import (
    BALL, NET, RACQUET, Box, DetectedObject, DetectionResult, Frame,
)
from netcoach.errors import ModelInvocationError
from netcoach.utils.logging_utils import log_service_init

logger = logging.getLogger(__name__)

DetectionModel = Callable[[np.ndarray], Sequence[DetectedObject]]


class ObjectDetector:
    """
    Filters raw detections into at most one box per label.

    Parameters
    ──────────
    model  : callable returning the raw candidate list for an image
    config : DetectorConfig thresholds / EMA settings
    """

    def __init__(self, model: DetectionModel, config: Optional[DetectorConfig] = None):
        self.model  = model
        self.config = config or DetectorConfig()
        self._lock  = threading.Lock()

        self._thresholds = {
            BALL   : self.config.ball_confidence,
            NET    : self.config.net_confidence,
            RACQUET: self.config.racquet_confidence,
        }
        # Running EMA of the accepted ball area (None until first acceptance)
        self.avg_ball_size: Optional[float] = None

        log_service_init("ObjectDetector", vars(self.config))

    # ──────────────────────────────────────────────────────────────────────────
    def detect(self, frame: Frame) -> DetectionResult:
        """Run the model on ``frame`` and filter its output."""
        try:
            candidates = list(self.model(frame.image))
        except Exception as exc:
            raise ModelInvocationError(f"object detection failed on frame {frame.index}") from exc
        return self.filter(candidates, frame.index, frame.timestamp)

    def filter(
        self,
        candidates: Iterable[DetectedObject],
        frame_index: int = 0,
        timestamp: float = 0.0,
    ) -> DetectionResult:
        kept: List[DetectedObject] = [
            c for c in candidates
            if c.label in self._thresholds and c.confidence > self._thresholds[c.label]
        ]
        ranked = sorted(kept, key=lambda c: c.confidence, reverse=True)

        # The EMA is shared by every caller of filter()
        with self._lock:
            ball = self._select_ball([c for c in ranked if c.label == BALL])
        net     = next((c.box for c in ranked if c.label == NET), None)
        racquet = next((c.box for c in ranked if c.label == RACQUET), None)

        return DetectionResult(
            frame_index=frame_index,
            timestamp=timestamp,
            ball=ball,
            net=net,
            racquet=racquet,
            objects=tuple(kept),
        )

    def reset(self) -> None:
        with self._lock:
            self.avg_ball_size = None

    # ──────────────────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────────────────
    def _select_ball(self, balls: List[DetectedObject]) -> Optional[Box]:
        """Highest-confidence ball whose area is consistent with the EMA."""
        for cand in balls:
            area = cand.box.area
            if self.avg_ball_size is None:
                self.avg_ball_size = area
                return cand.box

            ratio = area / self.avg_ball_size if self.avg_ball_size > 0 else 1.0
            if self.config.min_ball_size_ratio <= ratio <= self.config.max_ball_size_ratio:
                alpha = self.config.ball_size_smoothing
                self.avg_ball_size = self.avg_ball_size * (1.0 - alpha) + area * alpha
                return cand.box

            logger.debug(
                "Rejected ball candidate: area %.5f vs avg %.5f (ratio %.2f)",
                area, self.avg_ball_size, ratio,
            )
        return None
