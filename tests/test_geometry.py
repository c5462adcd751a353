"""
Tests for the normalised-coordinate geometry helpers.
"""

import pytest

from conftest import NET_BOX
from netcoach.datatypes import BallPosition, Box
from netcoach.utils.geometry import (
    LEFT, RIGHT, ball_side, box_average, box_to_px, estimate_crossing_height, mean_step,
)


def test_ball_side_uses_net_leading_edge():
    assert ball_side(0.44, NET_BOX) == LEFT
    assert ball_side(0.46, NET_BOX) == RIGHT


def test_box_average_and_pixels():
    avg = box_average([Box(0.4, 0.4, 0.2, 0.2), Box(0.6, 0.4, 0.2, 0.2)])
    assert avg.mid_x == pytest.approx(0.6)
    assert box_average([]) is None
    assert box_to_px(Box(0.5, 0.5, 0.25, 0.25), 100, 200) == (50, 100, 75, 150)


def test_crossing_height_extrapolates_when_no_sample_near_net():
    traj = [BallPosition((0.1, 0.2), 0.0, 0), BallPosition((0.2, 0.3), 0.1, 1)]
    assert estimate_crossing_height(traj, 0.5) == pytest.approx(0.6)
    assert estimate_crossing_height(traj[:1], 0.5) is None


def test_mean_step():
    dx, dy = mean_step([(0.1, 0.3), (0.2, 0.35), (0.4, 0.3)])
    assert dx == pytest.approx(0.15)
    assert dy == pytest.approx(0.05)
