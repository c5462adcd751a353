"""
backends.py
──────────────────────────────────────────────────────────────────────────────
Concrete recognition models behind the pipeline's callable interfaces.

  MediaPipePoseModel   frame → (18, 3) keypoints            (mediapipe)
  SwingLSTM            PyTorch LSTM over the keypoint window
  TorchSwingModel      (N, 3, 18) window → {label: prob}    (torch)
  YoloObjectModel      frame → [DetectedObject]             (ultralytics + supervision)
  YoloAngleModel       frame → {label: prob}                (ultralytics classify)

Every constructor loads its weights eagerly and raises ModelLoadError on
failure, so a missing file is reported once at start-up.  This module is
imported explicitly by the app; the core package never imports it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import cv2
import mediapipe as mp
import numpy as np
import supervision as sv
import torch
import torch.nn as nn
from ultralytics import YOLO

from netcoach.datatypes import BALL, LABELS, NET, RACQUET, Box, DetectedObject
from netcoach.errors import ModelLoadError

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# Pose (MediaPipe → 18-joint layout)
# ──────────────────────────────────────────────────────────────────────────────
class _Idx:
    NOSE       = 0
    L_EYE      = 2
    R_EYE      = 5
    L_EAR      = 7
    R_EAR      = 8
    L_SHOULDER = 11
    R_SHOULDER = 12
    L_ELBOW    = 13
    R_ELBOW    = 14
    L_WRIST    = 15
    R_WRIST    = 16
    L_HIP      = 23
    R_HIP      = 24
    L_KNEE     = 25
    R_KNEE     = 26
    L_ANKLE    = 27
    R_ANKLE    = 28


# MediaPipe landmark for each joint of a PoseKeypointSet (neck is synthesised)
_JOINT_SOURCES = (
    _Idx.NOSE, _Idx.L_EYE, _Idx.R_EYE, _Idx.L_EAR, _Idx.R_EAR,
    _Idx.L_SHOULDER, _Idx.R_SHOULDER, _Idx.L_ELBOW, _Idx.R_ELBOW,
    _Idx.L_WRIST, _Idx.R_WRIST, _Idx.L_HIP, _Idx.R_HIP,
    _Idx.L_KNEE, _Idx.R_KNEE, _Idx.L_ANKLE, _Idx.R_ANKLE,
)


class MediaPipePoseModel:
    """
    Single-person MediaPipe Pose returning normalised ``(x, y, visibility)``
    rows in the 18-joint order; the neck is the shoulder midpoint.
    """

    def __init__(
        self,
        model_complexity: int = 0,     # 0=Lite, 1=Full, 2=Heavy
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        try:
            self._pose = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=model_complexity,
                smooth_landmarks=True,
                enable_segmentation=False,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to initialise MediaPipe Pose: {exc}") from exc

    def __call__(self, image: np.ndarray) -> Optional[np.ndarray]:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        result = self._pose.process(rgb)
        if result.pose_landmarks is None:
            return None

        lms = result.pose_landmarks.landmark
        rows = [[lms[i].x, lms[i].y, lms[i].visibility] for i in _JOINT_SOURCES]
        ls, rs = lms[_Idx.L_SHOULDER], lms[_Idx.R_SHOULDER]
        rows.append([
            (ls.x + rs.x) / 2,
            (ls.y + rs.y) / 2,
            min(ls.visibility, rs.visibility),
        ])
        return np.asarray(rows, dtype=np.float32)

    def close(self) -> None:
        self._pose.close()


# ──────────────────────────────────────────────────────────────────────────────
# Swing phase (PyTorch LSTM)
# ──────────────────────────────────────────────────────────────────────────────
class SwingLSTM(nn.Module):
    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        num_layers: int,
        num_classes: int,
        dropout: float = 0.3,
    ):
        super().__init__()
        self.hidden_size = hidden_size
        self.num_layers = num_layers
        self.lstm = nn.LSTM(
            input_size=input_size,
            hidden_size=hidden_size,
            num_layers=num_layers,
            batch_first=True,
            dropout=dropout if num_layers > 1 else 0,
        )
        self.dropout = nn.Dropout(dropout)
        self.fc = nn.Linear(hidden_size, num_classes)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        batch_size = x.size(0)
        h0 = torch.zeros(self.num_layers, batch_size, self.hidden_size).to(x.device)
        c0 = torch.zeros(self.num_layers, batch_size, self.hidden_size).to(x.device)

        out, _ = self.lstm(x, (h0, c0))
        out = self.dropout(out[:, -1, :])
        return self.fc(out)


class TorchSwingModel:
    """
    Loads a checkpoint ``{"config": {...}, "model_state_dict": ..., "labels": [...]}``
    and maps a ``(N, 3, 18)`` window to ``{label: probability}``.
    """

    def __init__(self, weights: str, device: str = "cpu"):
        path = Path(weights)
        if not path.exists():
            raise ModelLoadError(f"Swing model not found at: {path}")

        self.device = torch.device(device)
        try:
            checkpoint = torch.load(path, map_location=self.device, weights_only=False)
            cfg = checkpoint["config"]
            self.model = SwingLSTM(
                input_size=cfg["input_size"],
                hidden_size=cfg["hidden_size"],
                num_layers=cfg["num_layers"],
                num_classes=cfg["num_classes"],
                dropout=cfg.get("dropout", 0.3),
            )
            self.model.load_state_dict(checkpoint["model_state_dict"])
            self.model.eval()
            self.model.to(self.device)
            self.labels: List[str] = list(checkpoint["labels"])
        except Exception as exc:
            raise ModelLoadError(f"Failed to load swing model from {path}: {exc}") from exc

    def __call__(self, window: np.ndarray) -> Dict[str, float]:
        frames = window.reshape(window.shape[0], -1)          # (N, 3*18)
        x = torch.from_numpy(frames).float().unsqueeze(0).to(self.device)
        with torch.no_grad():
            probs = torch.softmax(self.model(x), dim=1)[0].cpu().numpy()
        return {label: float(p) for label, p in zip(self.labels, probs)}


# ──────────────────────────────────────────────────────────────────────────────
# Object detection (YOLO + supervision)
# ──────────────────────────────────────────────────────────────────────────────
class YoloObjectModel:
    """
    YOLO detector whose class names include ball / net / racquet
    ("tennis racket" and "sports ball" from COCO are mapped too).
    Boxes are returned normalised to the frame.
    """

    _ALIASES = {
        "sports ball"  : BALL,
        "tennis ball"  : BALL,
        "tennis racket": RACQUET,
        "racket"       : RACQUET,
    }

    def __init__(self, weights: str, device: str = "cpu", min_confidence: float = 0.25):
        try:
            self._model = YOLO(weights)
        except Exception as exc:
            raise ModelLoadError(f"Failed to load YOLO detector from {weights}: {exc}") from exc
        self.device = device
        self.min_confidence = min_confidence

    def _label(self, name: str) -> Optional[str]:
        name = name.lower()
        if name in LABELS:
            return name
        return self._ALIASES.get(name)

    def __call__(self, image: np.ndarray) -> Sequence[DetectedObject]:
        h, w = image.shape[:2]
        results = self._model(image, conf=self.min_confidence, verbose=False, device=self.device)
        detections = sv.Detections.from_ultralytics(results[0]) if results else sv.Detections.empty()

        names = results[0].names if results else {}
        objects: List[DetectedObject] = []
        for xyxy, conf, cls_id in zip(detections.xyxy, detections.confidence, detections.class_id):
            label = self._label(names.get(int(cls_id), ""))
            if label is None:
                continue
            x1, y1, x2, y2 = (float(v) for v in xyxy)
            objects.append(DetectedObject(
                label=label,
                confidence=float(conf),
                box=Box.from_xyxy(x1 / w, y1 / h, x2 / w, y2 / h),
            ))
        return objects


# ──────────────────────────────────────────────────────────────────────────────
# Racquet-face angle (YOLO classify)
# ──────────────────────────────────────────────────────────────────────────────
class YoloAngleModel:
    """Image classifier over the racquet-face categories (Open / Closed / Perfect)."""

    def __init__(self, weights: str, device: str = "cpu"):
        try:
            self._model = YOLO(weights)
        except Exception as exc:
            raise ModelLoadError(f"Failed to load angle classifier from {weights}: {exc}") from exc
        self.device = device

    def __call__(self, image: np.ndarray) -> Dict[str, float]:
        results = self._model(image, verbose=False, device=self.device)
        if not results or results[0].probs is None:
            return {}
        probs = results[0].probs.data.cpu().numpy()
        names = results[0].names
        return {names[i]: float(p) for i, p in enumerate(probs)}


def build_models(config) -> Dict[str, object]:
    """Instantiate every back-end from a ModelConfig."""
    return {
        "pose_model" : MediaPipePoseModel(model_complexity=config.pose_complexity),
        "swing_model": TorchSwingModel(config.swing_weights, device=config.device),
        "detector"   : YoloObjectModel(config.detector_weights, device=config.device),
        "angle_model": YoloAngleModel(config.angle_weights, device=config.device),
    }
