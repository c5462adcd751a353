"""
Tests for BallTracker: trajectory buffer, side-change crossing trigger,
net box acquisition, outcome classification and lost-ball inference.
"""

import pytest

from conftest import NET_BOX, ball_box, detection
from netcoach.ball_tracker import BallTracker, classify_crossing, validate_forward_trajectory
from netcoach.config import TrackerConfig
from netcoach.datatypes import BallPosition, BallState, Box, CrossingResult
from netcoach.score_engine import ScoreEngine


def feed(tracker, samples, start_index=0, dt=1 / 30.0):
    """Feed (x, y) ball samples with the default net; returns non-None results."""
    results = []
    for i, (x, y) in enumerate(samples):
        idx = start_index + i
        out = tracker.update(detection(idx, timestamp=idx * dt, ball=ball_box(x, y)))
        if out is not None:
            results.append((idx, out))
    return results


# ============================================================================
# Trajectory buffer
# ============================================================================

def test_trajectory_never_exceeds_capacity_and_evicts_oldest():
    tracker = BallTracker()
    samples = [(0.05 + 0.01 * i, 0.3) for i in range(15)]   # all left of the net
    feed(tracker, samples)

    traj = tracker.trajectory
    assert len(traj) == 10
    assert traj[0].frame_index == 5
    assert traj[-1].frame_index == 14
    assert [p.frame_index for p in traj] == sorted(p.frame_index for p in traj)


def test_trajectory_view_is_a_copy():
    tracker = BallTracker()
    feed(tracker, [(0.2, 0.3), (0.25, 0.3)])
    view = tracker.trajectory
    view.clear()
    assert len(tracker.trajectory) == 2


def test_velocity_is_mean_of_instantaneous_velocities():
    tracker = BallTracker()
    tracker.update(detection(0, timestamp=0.0, ball=ball_box(0.1, 0.5), net=None))
    tracker.update(detection(1, timestamp=0.1, ball=ball_box(0.2, 0.5), net=None))
    tracker.update(detection(2, timestamp=0.2, ball=ball_box(0.4, 0.5), net=None))

    vx, vy = tracker.velocity
    assert vx == pytest.approx(1.5)
    assert vy == pytest.approx(0.0)
    assert tracker.state == BallState.DETECTED   # no net yet


# ============================================================================
# Ball state
# ============================================================================

def test_state_approaching_when_close_and_moving_netward():
    tracker = BallTracker()
    feed(tracker, [(0.30, 0.3), (0.38, 0.3)])
    assert tracker.state == BallState.APPROACHING_NET
    assert tracker.crossing_in_progress


def test_state_crossing_when_very_close_to_net_centre():
    tracker = BallTracker()
    feed(tracker, [(0.52, 0.3)])
    assert tracker.state == BallState.CROSSING_NET


def test_state_approaching_takes_precedence_over_crossing_near_net():
    narrow = Box(0.48, 0.4, 0.04, 0.2)   # centre 0.5, leading edge 0.48
    tracker = BallTracker()
    tracker.update(detection(0, timestamp=0.0, ball=ball_box(0.40, 0.3), net=narrow))
    tracker.update(detection(1, timestamp=0.1, ball=ball_box(0.46, 0.3), net=narrow))

    assert tracker.state == BallState.APPROACHING_NET
    assert tracker.crossing_in_progress


def test_state_crossing_near_net_without_netward_motion():
    narrow = Box(0.48, 0.4, 0.04, 0.2)
    tracker = BallTracker()
    tracker.update(detection(0, timestamp=0.0, ball=ball_box(0.46, 0.3), net=narrow))
    assert tracker.state == BallState.CROSSING_NET


def test_state_crossed_when_past_net_by_margin():
    tracker = BallTracker()
    feed(tracker, [(0.65, 0.3)])
    assert tracker.state == BallState.CROSSED_NET


def test_state_detected_when_far_from_net():
    tracker = BallTracker()
    feed(tracker, [(0.1, 0.3)])
    assert tracker.state == BallState.DETECTED
    assert not tracker.crossing_in_progress


# ============================================================================
# Crossing trigger
# ============================================================================

@pytest.mark.parametrize("sides", [
    "LLLL",
    "RRRR",
    "LR",
    "LLR",
    "RL",
    "LRLR",
    "LRRL",
    "RLLRR",
    "LRLLLRRLR",
])
def test_crossing_iff_consecutive_left_to_right(sides):
    tracker = BallTracker()
    xs = {"L": 0.3, "R": 0.7}
    results = feed(tracker, [(xs[s], 0.3) for s in sides])

    expected = [i for i in range(1, len(sides)) if sides[i - 1] == "L" and sides[i] == "R"]
    assert [idx for idx, _ in results] == expected


def test_repeated_same_side_never_triggers():
    tracker = BallTracker()
    assert feed(tracker, [(0.2 + 0.02 * i, 0.3) for i in range(10)]) == []


# ============================================================================
# Scenarios
# ============================================================================

def test_scenario_ball_over_net_is_success():
    tracker = BallTracker()
    engine  = ScoreEngine()

    results = feed(tracker, [(0.3, 0.3), (0.4, 0.3), (0.6, 0.3)])
    assert results == [(2, CrossingResult.SUCCESS_OVER_NET)]

    for idx, result in results:
        engine.on_crossing(result, idx)
    assert engine.counters.total_attempts == 1
    assert engine.counters.successful_shots == 1
    assert engine.counters.failed_shots == 0


def test_scenario_ball_into_net_is_hit():
    tracker = BallTracker()
    engine  = ScoreEngine()

    results = feed(tracker, [(0.3, 0.5), (0.4, 0.5), (0.6, 0.5)])
    assert results == [(2, CrossingResult.FAILED_HIT_NET)]

    for idx, result in results:
        engine.on_crossing(result, idx)
    assert engine.counters.total_attempts == 1
    assert engine.counters.failed_shots == 1
    assert engine.counters.successful_shots == 0


def test_ball_below_net_is_under():
    tracker = BallTracker()
    results = feed(tracker, [(0.3, 0.7), (0.4, 0.7), (0.6, 0.7)])
    assert results == [(2, CrossingResult.FAILED_UNDER_NET)]


def test_erratic_trajectory_over_net_is_uncertain():
    tracker = BallTracker()
    # Large vertical jump invalidates the forward trajectory
    results = feed(tracker, [(0.3, 0.1), (0.4, 0.3), (0.6, 0.1)])
    assert results == [(2, CrossingResult.UNCERTAIN)]


def test_crossing_clears_shot_state_but_keeps_net():
    tracker = BallTracker()
    feed(tracker, [(0.3, 0.3), (0.4, 0.3), (0.6, 0.3)])
    assert tracker.trajectory == []
    assert tracker.side_history == []
    assert not tracker.crossing_in_progress
    assert tracker.net_box == NET_BOX


# ============================================================================
# Net box
# ============================================================================

def test_net_box_first_detection_wins_and_never_changes():
    tracker = BallTracker()
    first = Box(0.45, 0.4, 0.1, 0.2)
    other = Box(0.2, 0.1, 0.3, 0.3)

    tracker.update(detection(0, ball=None, net=first))
    for i in range(1, 30):
        tracker.update(detection(i, ball=ball_box(0.2, 0.3), net=other))

    assert tracker.net_box == first
    assert tracker.net_confirmed


def test_net_box_ignored_after_acquisition_window():
    tracker = BallTracker(TrackerConfig(net_detection_max_frames=3))
    for i in range(5):
        tracker.update(detection(i, ball=None, net=None))
    tracker.update(detection(5, ball=None, net=NET_BOX))
    assert tracker.net_box is None


def test_net_box_averaged_over_consistent_observations():
    tracker = BallTracker(TrackerConfig(net_average_frames=3))
    tracker.update(detection(0, net=Box(0.44, 0.4, 0.1, 0.2)))
    tracker.update(detection(1, net=Box(0.80, 0.1, 0.1, 0.2)))   # inconsistent, discarded
    tracker.update(detection(2, net=Box(0.46, 0.4, 0.1, 0.2)))
    assert not tracker.net_confirmed
    tracker.update(detection(3, net=Box(0.45, 0.4, 0.1, 0.2)))

    assert tracker.net_confirmed
    net = tracker.net_box
    assert net.mid_x == pytest.approx(0.5)
    assert net.mid_y == pytest.approx(0.5)

    tracker.update(detection(4, net=Box(0.40, 0.4, 0.1, 0.2)))
    assert tracker.net_box == net


def test_reset_all_tracking_clears_everything():
    tracker = BallTracker()
    feed(tracker, [(0.3, 0.3), (0.4, 0.3)])
    tracker.reset_all_tracking()

    assert tracker.trajectory == []
    assert tracker.side_history == []
    assert tracker.net_box is None
    assert not tracker.crossing_in_progress
    assert tracker.frame_count == 0
    assert tracker.velocity == (0.0, 0.0)
    assert tracker.state == BallState.UNKNOWN


def test_reset_then_replay_reproduces_scoring():
    tracker = BallTracker()
    engine  = ScoreEngine()
    samples = (
        [(0.3, 0.3), (0.4, 0.3), (0.6, 0.3)]
        + [(0.2, 0.5)] * 40
        + [(0.3, 0.5), (0.4, 0.5), (0.6, 0.5)]
    )

    def run():
        outcome = []
        for idx, result in feed(tracker, samples):
            engine.on_crossing(result, idx)
            outcome.append((idx, result))
        return outcome, engine.counters.as_dict()

    first = run()
    tracker.reset_all_tracking()
    engine.reset()
    second = run()

    assert first == second
    assert first[1] == {"total_attempts": 2, "successful_shots": 1, "failed_shots": 1}


# ============================================================================
# Lost ball
# ============================================================================

def test_lost_ball_mid_crossing_infers_outcome_once():
    tracker = BallTracker()
    feed(tracker, [(0.30, 0.3), (0.36, 0.3), (0.42, 0.3)])
    assert tracker.crossing_in_progress
    last_t = 2 / 30.0

    # Within the timeout nothing happens
    assert tracker.update(detection(3, timestamp=last_t + 0.5)) is None
    assert tracker.state == BallState.APPROACHING_NET

    result = tracker.update(detection(4, timestamp=last_t + 1.5))
    assert result == CrossingResult.SUCCESS_OVER_NET
    assert tracker.state == BallState.LOST
    assert tracker.trajectory == []

    assert tracker.update(detection(5, timestamp=last_t + 3.0)) is None


def test_lost_ball_low_trajectory_inferred_under_net():
    tracker = BallTracker()
    feed(tracker, [(0.30, 0.7), (0.36, 0.7), (0.42, 0.7)])
    result = tracker.update(detection(3, timestamp=2 / 30.0 + 1.5))
    assert result == CrossingResult.FAILED_UNDER_NET


def test_lost_ball_without_crossing_in_progress_just_clears():
    tracker = BallTracker()
    feed(tracker, [(0.1, 0.3), (0.12, 0.3)])
    assert tracker.update(detection(2, timestamp=5.0)) is None
    assert tracker.state == BallState.LOST
    assert tracker.trajectory == []


# ============================================================================
# Pure helpers
# ============================================================================

@pytest.mark.parametrize("height, valid, expected", [
    (0.30, True,  CrossingResult.SUCCESS_OVER_NET),
    (0.30, False, CrossingResult.UNCERTAIN),
    (0.40, True,  CrossingResult.FAILED_HIT_NET),
    (0.50, True,  CrossingResult.FAILED_HIT_NET),
    (0.60, False, CrossingResult.FAILED_HIT_NET),
    (0.70, True,  CrossingResult.FAILED_UNDER_NET),
    (0.70, False, CrossingResult.FAILED_UNDER_NET),
])
def test_classify_crossing_is_pure(height, valid, expected):
    first  = classify_crossing(height, 0.4, 0.6, valid)
    second = classify_crossing(height, 0.4, 0.6, valid)
    assert first == second == expected


def test_classify_crossing_margin_widens_hit_band():
    assert classify_crossing(0.39, 0.4, 0.6, True, margin=0.02) == CrossingResult.FAILED_HIT_NET
    assert classify_crossing(0.37, 0.4, 0.6, True, margin=0.02) == CrossingResult.SUCCESS_OVER_NET
    assert classify_crossing(0.61, 0.4, 0.6, True, margin=0.02) == CrossingResult.FAILED_HIT_NET


def test_forward_validation_requires_two_samples_and_steady_motion():
    def pos(x, y, i):
        return BallPosition((x, y), i / 30.0, i)

    assert not validate_forward_trajectory([pos(0.3, 0.3, 0)])
    assert validate_forward_trajectory([pos(0.3, 0.3, 0), pos(0.4, 0.3, 1)])
    assert not validate_forward_trajectory([pos(0.4, 0.3, 0), pos(0.3, 0.3, 1)])
    assert not validate_forward_trajectory([pos(0.3, 0.3, 0), pos(0.4, 0.5, 1)])
