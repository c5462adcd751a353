"""
geometry.py
──────────────────────────────────────────────────────────────────────────────
Normalised-coordinate helpers shared by the tracker, the angle controller
and the annotator.

Features
────────
• Centre-to-centre distance between two boxes.
• Side discrimination (left / right of the net's leading edge).
• Crossing-height estimation from a partial trajectory.
• Normalised ↔ pixel conversion for drawing.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence, Tuple

from netcoach.datatypes import BallPosition, Box, Point

LEFT  = "left"
RIGHT = "right"


# ──────────────────────────────────────────────────────────────────────────────
# Distances
# ──────────────────────────────────────────────────────────────────────────────
def center_distance(a: Box, b: Box) -> float:
    """Euclidean distance between the centres of two normalised boxes."""
    return math.hypot(a.mid_x - b.mid_x, a.mid_y - b.mid_y)


def box_average(boxes: Sequence[Box]) -> Optional[Box]:
    """Centre/size average of several boxes (used to stabilise the net)."""
    if not boxes:
        return None
    n = len(boxes)
    cx = sum(b.mid_x for b in boxes) / n
    cy = sum(b.mid_y for b in boxes) / n
    w  = sum(b.width for b in boxes) / n
    h  = sum(b.height for b in boxes) / n
    return Box(cx - w / 2, cy - h / 2, w, h)


# ──────────────────────────────────────────────────────────────────────────────
# Side detector
# ──────────────────────────────────────────────────────────────────────────────
def ball_side(ball_x: float, net: Box) -> str:
    """Returns 'left' when the ball centre is short of the net's leading edge."""
    return LEFT if ball_x < net.min_x else RIGHT


# ──────────────────────────────────────────────────────────────────────────────
# Crossing height
# ──────────────────────────────────────────────────────────────────────────────
def estimate_crossing_height(
    trajectory: Sequence[BallPosition],
    net_x: float,
    window: int = 8,
    band: float = 0.1,
) -> Optional[float]:
    """
    Estimate the ball's y where it meets the vertical line ``x = net_x``.

    1. Mean y of the recent samples lying within ``band`` of the net.
    2. Otherwise, linear extrapolation of the last two samples.
    Returns None when neither is possible.
    """
    recent = list(trajectory)[-window:]
    close = [p.center[1] for p in recent if abs(p.center[0] - net_x) < band]
    if close:
        return sum(close) / len(close)

    if len(recent) >= 2:
        (x1, y1), (x2, y2) = recent[-2].center, recent[-1].center
        if x2 != x1:
            slope = (y2 - y1) / (x2 - x1)
            return y1 + slope * (net_x - x1)
    return None


def mean_step(points: Iterable[Point]) -> Tuple[float, float]:
    """Mean dx and max |dy| between consecutive points."""
    pts: List[Point] = list(points)
    if len(pts) < 2:
        return 0.0, 0.0
    dxs = [b[0] - a[0] for a, b in zip(pts, pts[1:])]
    dys = [abs(b[1] - a[1]) for a, b in zip(pts, pts[1:])]
    return sum(dxs) / len(dxs), max(dys)


# ──────────────────────────────────────────────────────────────────────────────
# Drawing helpers
# ──────────────────────────────────────────────────────────────────────────────
def to_px(point: Point, width: int, height: int) -> Tuple[int, int]:
    return int(point[0] * width), int(point[1] * height)


def box_to_px(box: Box, width: int, height: int) -> Tuple[int, int, int, int]:
    return (
        int(box.min_x * width), int(box.min_y * height),
        int(box.max_x * width), int(box.max_y * height),
    )
