"""
Shared fixtures and fakes for the NetCoach test suite.

Run:
    python -m pytest tests -v
"""

import time
from concurrent.futures import Future
from typing import List, Optional

import numpy as np
import pytest

from netcoach.datatypes import Box, DetectionResult, FeedbackMessage, Frame
from netcoach.errors import LinkError

# Net used by the scenario tests: x ∈ [0.45, 0.55], y ∈ [0.4, 0.6]
NET_BOX = Box(0.45, 0.4, 0.1, 0.2)


# ============================================================================
# Fakes
# ============================================================================

class InlineExecutor:
    """Executor running every task synchronously in the caller's thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True):
        pass


class DeferredExecutor:
    """Executor holding tasks until ``run_all()``; lets tests interleave events."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        self.pending.append((fn, args, kwargs))
        return Future()

    def run_all(self):
        pending, self.pending = self.pending, []
        for fn, args, kwargs in pending:
            fn(*args, **kwargs)

    def shutdown(self, wait=True):
        pass


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLink:
    """Scriptable CompanionLink recording every call."""

    def __init__(self, paired=True, reachable=True, activated=True,
                 fail_send=False, fail_user_info=False, fail_context=False,
                 activate_result=True):
        self.paired          = paired
        self.reachable       = reachable
        self.activated       = activated
        self.fail_send       = fail_send
        self.fail_user_info  = fail_user_info
        self.fail_context    = fail_context
        self.activate_result = activate_result

        self.sent: List[dict]       = []
        self.user_info: List[dict]  = []
        self.contexts: List[dict]   = []
        self.send_attempts          = 0
        self.activate_calls         = 0

    def is_paired(self):
        return self.paired

    def is_reachable(self):
        return self.reachable

    def is_activated(self):
        return self.activated

    def activate(self):
        self.activate_calls += 1
        if self.activate_result:
            self.activated = True
        return self.activate_result

    def send_message(self, payload):
        self.send_attempts += 1
        if self.fail_send:
            raise LinkError("send failed")
        self.sent.append(payload)
        return {"status": "ok"}

    def transfer_user_info(self, payload):
        if self.fail_user_info:
            raise LinkError("transfer failed")
        self.user_info.append(payload)

    def update_application_context(self, payload):
        if self.fail_context:
            raise LinkError("context failed")
        self.contexts.append(payload)


class StalledPairingLink(FakeLink):
    """FakeLink whose pairing query blocks, like a wireless stack mid-handshake."""

    def __init__(self, delay=0.5, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay

    def is_paired(self):
        time.sleep(self.delay)
        return super().is_paired()


class FakeNotifier:
    def __init__(self):
        self.notified: List[FeedbackMessage] = []

    def notify(self, message):
        self.notified.append(message)


class RecordingMessenger:
    """Stand-in for CompanionMessenger capturing messages handed to it."""

    def __init__(self):
        self.messages: List[FeedbackMessage] = []

    def send(self, message):
        self.messages.append(message)
        return True

    def of_type(self, type_):
        return [m for m in self.messages if m.type == type_]


class RecordingSink:
    def __init__(self):
        self.records = []

    def save(self, record):
        self.records.append(record)


# ============================================================================
# Builders
# ============================================================================

def ball_box(x: float, y: float, size: float = 0.02) -> Box:
    """Ball box centred on (x, y)."""
    return Box(x - size / 2, y - size / 2, size, size)


def detection(
    index: int,
    timestamp: Optional[float] = None,
    ball: Optional[Box] = None,
    net: Optional[Box] = NET_BOX,
    racquet: Optional[Box] = None,
) -> DetectionResult:
    return DetectionResult(
        frame_index=index,
        timestamp=index / 30.0 if timestamp is None else timestamp,
        ball=ball,
        net=net,
        racquet=racquet,
    )


def make_frame(index: int = 0, timestamp: Optional[float] = None) -> Frame:
    return Frame(
        image=np.zeros((48, 64, 3), dtype=np.uint8),
        index=index,
        timestamp=index / 30.0 if timestamp is None else timestamp,
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def notifier():
    return FakeNotifier()
