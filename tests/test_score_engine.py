"""
Tests for ScoreEngine counters, cooldown and shotFeedback emission.
"""

import pytest

from netcoach.config import ScoringConfig
from netcoach.datatypes import CrossingResult, MessageType
from netcoach.score_engine import ScoreEngine


def test_success_counts_attempt_and_success(messenger):
    engine = ScoreEngine(messenger=messenger)
    msg = engine.on_crossing(CrossingResult.SUCCESS_OVER_NET, 10)

    assert engine.counters.as_dict() == {
        "total_attempts": 1, "successful_shots": 1, "failed_shots": 0,
    }
    assert msg is not None
    assert msg.type == MessageType.SHOT_FEEDBACK
    assert msg.get("isSuccessful") is True
    assert messenger.messages == [msg]


@pytest.mark.parametrize("result", [CrossingResult.FAILED_HIT_NET, CrossingResult.FAILED_UNDER_NET])
def test_failures_count_as_failed_shots(result, messenger):
    engine = ScoreEngine(messenger=messenger)
    msg = engine.on_crossing(result, 10)

    assert engine.counters.total_attempts == 1
    assert engine.counters.failed_shots == 1
    assert engine.counters.successful_shots == 0
    assert msg.get("isSuccessful") is False


def test_uncertain_changes_nothing(messenger):
    engine = ScoreEngine(messenger=messenger)
    assert engine.on_crossing(CrossingResult.UNCERTAIN, 5) is None
    assert engine.counters.total_attempts == 0
    assert messenger.messages == []
    assert not engine.in_cooldown(6)


def test_cooldown_suppresses_repeat_detections():
    engine = ScoreEngine(config=ScoringConfig(cooldown_frames=30))
    assert engine.on_crossing(CrossingResult.SUCCESS_OVER_NET, 100) is not None
    assert engine.in_cooldown(129)
    assert engine.on_crossing(CrossingResult.FAILED_HIT_NET, 129) is None
    assert not engine.in_cooldown(130)
    assert engine.on_crossing(CrossingResult.FAILED_HIT_NET, 130) is not None

    assert engine.counters.as_dict() == {
        "total_attempts": 2, "successful_shots": 1, "failed_shots": 1,
    }


def test_counters_invariant_holds_over_sequence():
    engine = ScoreEngine(config=ScoringConfig(cooldown_frames=1))
    results = [
        CrossingResult.SUCCESS_OVER_NET, CrossingResult.UNCERTAIN,
        CrossingResult.FAILED_UNDER_NET, CrossingResult.FAILED_HIT_NET,
        CrossingResult.SUCCESS_OVER_NET,
    ]
    for i, result in enumerate(results):
        engine.on_crossing(result, i * 10)
        c = engine.counters
        assert c.total_attempts == c.successful_shots + c.failed_shots

    assert engine.counters.total_attempts == 4
    assert engine.success_rate == pytest.approx(0.5)


def test_message_angle_prefers_classified_angle():
    engine = ScoreEngine(angle_provider=lambda: "Open")
    msg = engine.on_crossing(CrossingResult.FAILED_HIT_NET, 1)
    assert msg.get("angle") == "Open"


def test_message_angle_falls_back_to_outcome_label():
    engine = ScoreEngine(angle_provider=lambda: None)
    assert engine.on_crossing(CrossingResult.SUCCESS_OVER_NET, 1).get("angle") == "Success"
    engine.reset()
    assert engine.on_crossing(CrossingResult.FAILED_UNDER_NET, 1).get("angle") == "Under net"


def test_snapshot_is_detached_copy():
    engine = ScoreEngine()
    engine.on_crossing(CrossingResult.SUCCESS_OVER_NET, 1)
    snap = engine.snapshot()
    snap.total_attempts = 99
    assert engine.counters.total_attempts == 1


def test_session_record_and_reset():
    engine = ScoreEngine()
    engine.on_crossing(CrossingResult.SUCCESS_OVER_NET, 1)
    engine.on_crossing(CrossingResult.FAILED_HIT_NET, 50)

    record = engine.session_record("clip.mp4", {"Perfect": 1.5}, timestamp=1234.0)
    assert record.as_dict() == {
        "timestamp": 1234.0,
        "total_attempts": 2,
        "successful_shots": 1,
        "failed_shots": 1,
        "video_reference": "clip.mp4",
        "angle_timestamps": {"Perfect": 1.5},
    }

    engine.reset()
    assert engine.counters.total_attempts == 0
    assert len(engine.history) == 0
    assert not engine.in_cooldown(2)
