"""
annotator.py
──────────────────────────────────────────────────────────────────────────────
Pure-OpenCV frame annotation for the demo driver.

Draws:
  • Net box (dashed once confirmed)
  • Ball box + fading trajectory trail
  • Racquet box, with a contact ring when it is near the ball
  • HUD: shot counters, success rate, status line, current racquet angle,
    companion connection status
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from netcoach.datatypes import Box, Point
from netcoach.utils.geometry import box_to_px, to_px


# ──────────────────────────────────────────────────────────────────────────────
# Colour palette (BGR)
# ──────────────────────────────────────────────────────────────────────────────
_COLOUR = {
    "ball"        : (0, 255, 255),      # yellow
    "racquet"     : (255, 160, 0),      # blue-ish
    "net"         : (255, 255, 255),    # white
    "contact"     : (0, 0, 255),        # red
    "hud_bg"      : (20, 20, 20),       # near-black
    "success"     : (80, 200, 80),
    "failed"      : (80, 80, 220),
    "text"        : (240, 240, 240),
    "text_hi"     : (0, 255, 150),
}

_ANGLE_COLOUR = {
    "Perfect": (0, 220, 80),
    "Open"   : (0, 165, 255),
    "Closed" : (220, 80, 0),
}

_STATUS_COLOUR = {
    "connected"   : (80, 200, 80),
    "connecting"  : (0, 200, 255),
    "disconnected": (150, 150, 150),
    "failed"      : (60, 60, 230),
}


def _fade_colour(base: Tuple[int, int, int], alpha: float) -> Tuple[int, int, int]:
    return tuple(int(c * alpha) for c in base)


# ──────────────────────────────────────────────────────────────────────────────
# Annotator class
# ──────────────────────────────────────────────────────────────────────────────
class Annotator:
    """
    Stateless frame annotator.  ``annotate()`` draws on a copy of the frame
    from the analytics dict returned by ``TennisAnalyzer.process()``.
    """

    def __init__(
        self,
        line_width: int = 2,
        font_scale: float = 0.55,
        hud_alpha: float = 0.65,
        show_trail: bool = True,
        show_hud: bool = True,
    ):
        self.line_width = line_width
        self.font_scale = font_scale
        self.hud_alpha  = hud_alpha
        self.show_trail = show_trail
        self.show_hud   = show_hud

        self._font = cv2.FONT_HERSHEY_SIMPLEX

    # ──────────────────────────────────────────────────────────────────────────
    def annotate(
        self,
        frame: np.ndarray,
        analytics: Dict,
        companion_status: Optional[str] = None,
    ) -> np.ndarray:
        """Master annotation call.  Returns an annotated copy of ``frame``."""
        out = frame.copy()
        h, w = out.shape[:2]

        net = analytics.get("net_box")
        if net is not None:
            self._draw_box(out, net, _COLOUR["net"], "NET",
                           dashed=bool(analytics.get("net_confirmed")))

        if self.show_trail and analytics.get("trajectory"):
            self._draw_trail(out, analytics["trajectory"], w, h)

        ball    = analytics.get("ball_box")
        racquet = analytics.get("racquet_box")
        if racquet is not None:
            self._draw_box(out, racquet, _COLOUR["racquet"], "RACQUET")
        if ball is not None:
            self._draw_ball(out, ball, w, h)
            if racquet is not None and analytics.get("current_angle"):
                cx, cy = to_px(ball.center, w, h)
                cv2.circle(out, (cx, cy), 22, _COLOUR["contact"], 2, cv2.LINE_AA)

        if self.show_hud:
            self._draw_hud(out, analytics, companion_status)
        return out

    # ──────────────────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────────────────
    def _draw_box(self, out: np.ndarray, box: Box, colour, label: str, dashed: bool = False) -> None:
        h, w = out.shape[:2]
        x1, y1, x2, y2 = box_to_px(box, w, h)
        if dashed:
            self._draw_dashed_rect(out, (x1, y1), (x2, y2), colour)
        else:
            cv2.rectangle(out, (x1, y1), (x2, y2), colour, self.line_width, cv2.LINE_AA)
        (tw, th), _ = cv2.getTextSize(label, self._font, self.font_scale * 0.8, 1)
        cv2.rectangle(out, (x1, y1 - th - 6), (x1 + tw + 6, y1), colour, -1)
        cv2.putText(out, label, (x1 + 3, y1 - 4), self._font, self.font_scale * 0.8,
                    (0, 0, 0), 1, cv2.LINE_AA)

    def _draw_dashed_rect(self, out: np.ndarray, p1, p2, colour, dash: int = 8) -> None:
        (x1, y1), (x2, y2) = p1, p2
        corners = [(x1, y1), (x2, y1), (x2, y2), (x1, y2), (x1, y1)]
        for (ax, ay), (bx, by) in zip(corners, corners[1:]):
            length = max(abs(bx - ax), abs(by - ay))
            # Draw every other dash-length segment along the edge
            for start in range(0, length, dash * 2):
                end = min(start + dash, length)
                sx = ax + (bx - ax) * start // length
                sy = ay + (by - ay) * start // length
                ex = ax + (bx - ax) * end // length
                ey = ay + (by - ay) * end // length
                cv2.line(out, (sx, sy), (ex, ey), colour, self.line_width, cv2.LINE_AA)

    def _draw_trail(self, out: np.ndarray, trail: Sequence[Point], w: int, h: int) -> None:
        pts: List[Tuple[int, int]] = [to_px(p, w, h) for p in trail]
        n = len(pts)
        for i in range(1, n):
            alpha  = i / n
            colour = _fade_colour(_COLOUR["ball"], alpha)
            r      = max(1, int(4 * alpha))
            cv2.line(out, pts[i - 1], pts[i], colour, r, cv2.LINE_AA)

    def _draw_ball(self, out: np.ndarray, ball: Box, w: int, h: int) -> None:
        pos = to_px(ball.center, w, h)
        cv2.circle(out, pos, 8, _COLOUR["ball"], -1, cv2.LINE_AA)
        cv2.circle(out, pos, 8, (255, 255, 255), 1, cv2.LINE_AA)   # white ring

    def _draw_hud(self, out: np.ndarray, a: Dict, companion_status: Optional[str]) -> None:
        h, w = out.shape[:2]
        hud_h = 80
        overlay = out[:hud_h, :w].copy()
        cv2.rectangle(overlay, (0, 0), (w, hud_h), _COLOUR["hud_bg"], -1)
        cv2.addWeighted(overlay, self.hud_alpha, out[:hud_h, :w],
                        1 - self.hud_alpha, 0, out[:hud_h, :w])

        fn, fc = self._font, _COLOUR["text"]

        # ── Counters ──
        total = a.get("total_attempts", 0)
        ok    = a.get("successful_shots", 0)
        bad   = a.get("failed_shots", 0)
        cv2.putText(out, f"Shots {total}", (20, 28), fn, 0.8, _COLOUR["text_hi"], 2, cv2.LINE_AA)
        cv2.putText(out, f"In {ok}", (150, 28), fn, 0.7, _COLOUR["success"], 2, cv2.LINE_AA)
        cv2.putText(out, f"Out {bad}", (230, 28), fn, 0.7, _COLOUR["failed"], 2, cv2.LINE_AA)
        cv2.putText(out, f"Rate {a.get('success_rate', 0.0) * 100:.0f}%", (20, 55), fn, 0.5, fc, 1, cv2.LINE_AA)

        # ── Status line ──
        cv2.putText(out, str(a.get("status", "")), (20, 72), fn, 0.45, fc, 1, cv2.LINE_AA)

        # ── Current angle ──
        angle = a.get("current_angle")
        if angle:
            col = _ANGLE_COLOUR.get(angle, fc)
            cv2.putText(out, angle.upper(), (w // 2 - 50, 40), fn, 1.0, col, 2, cv2.LINE_AA)

        # ── Companion status dot ──
        if companion_status:
            col = _STATUS_COLOUR.get(companion_status, fc)
            cv2.circle(out, (w - 150, 24), 6, col, -1, cv2.LINE_AA)
            cv2.putText(out, companion_status, (w - 138, 29), fn, 0.45, fc, 1, cv2.LINE_AA)
