"""
frame_dispatcher.py
──────────────────────────────────────────────────────────────────────────────
Fan-out of captured frames to the pose and detection paths.

    CaptureThread ──► FrameDispatcher.submit()
                            ├──► pose path      (thread pool)
                            └──► detection path (thread pool)

Each path runs independently; a path still busy with an earlier frame drops
the new one instead of queueing it, so capture is never held up.  Every
dispatch carries the dispatcher's generation; ``stop()`` bumps it and the
receiver ignores anything tagged with an older one.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Dict, Optional, Union

import cv2
import numpy as np

from netcoach.datatypes import Frame

logger = logging.getLogger(__name__)

POSE      = "pose"
DETECTION = "detection"

FrameHandler = Callable[[Frame, int], None]


class FrameDispatcher:
    """
    Parameters
    ──────────
    pose_handler      : ``handler(frame, generation)`` for the pose path
    detection_handler : ``handler(frame, generation)`` for the detection path
    frame_skip        : keep one frame out of every ``frame_skip``
    executor          : pool running both paths (defaults to two worker threads)
    """

    def __init__(
        self,
        pose_handler: FrameHandler,
        detection_handler: FrameHandler,
        frame_skip: int = 1,
        executor: Optional[Executor] = None,
    ):
        if frame_skip < 1:
            raise ValueError("frame_skip must be >= 1")

        self.frame_skip = frame_skip
        self._handlers: Dict[str, FrameHandler] = {
            POSE     : pose_handler,
            DETECTION: detection_handler,
        }
        self._owns_executor = executor is None
        self._executor      = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="dispatch")
        self._lock          = threading.Lock()

        self._busy          : Dict[str, bool] = {POSE: False, DETECTION: False}
        self.dropped_frames : Dict[str, int] = {POSE: 0, DETECTION: 0}
        self._received      = 0
        self._generation    = 0
        self._current       : Optional[Frame] = None

    # ──────────────────────────────────────────────────────────────────────────
    def submit(self, frame: Frame) -> bool:
        """
        Offer one captured frame.

        Returns True when the frame was retained by the skip policy (whether
        or not both paths accepted it).
        """
        with self._lock:
            self._received += 1
            if (self._received - 1) % self.frame_skip != 0:
                return False
            self._current = frame
            generation = self._generation

            accepted = []
            for path in (POSE, DETECTION):
                if self._busy[path]:
                    self.dropped_frames[path] += 1
                    continue
                self._busy[path] = True
                accepted.append(path)

        for path in accepted:
            self._executor.submit(self._run, path, frame, generation)
        return True

    @property
    def current_frame(self) -> Optional[Frame]:
        with self._lock:
            return self._current

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def stop(self) -> int:
        """Invalidate in-flight work; returns the new generation."""
        with self._lock:
            self._generation += 1
            self._current = None
            return self._generation

    def shutdown(self) -> None:
        self.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    # ──────────────────────────────────────────────────────────────────────────
    def _run(self, path: str, frame: Frame, generation: int) -> None:
        try:
            self._handlers[path](frame, generation)
        except Exception:
            logger.exception("%s path failed on frame %d, signal skipped", path, frame.index)
        finally:
            with self._lock:
                self._busy[path] = False


# ──────────────────────────────────────────────────────────────────────────────
# Capture thread
# ──────────────────────────────────────────────────────────────────────────────
class CaptureThread:
    """
    Dedicated frame-producing thread over ``cv2.VideoCapture``.

    Usage
    ─────
    capture = CaptureThread("rally.mp4", dispatcher.submit)
    capture.start()
    ...
    capture.stop(); capture.join()

    File sources are stamped with ``frame_index / fps``; cameras with the
    monotonic clock.  With ``realtime=True`` a file source is read at its
    native frame rate instead of as fast as it decodes.
    """

    def __init__(
        self,
        source: Union[str, int],
        sink: Callable[[Frame], object],
        max_frames: Optional[int] = None,
        realtime: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source     = source
        self.sink       = sink
        self.max_frames = max_frames
        self.realtime   = realtime
        self._clock     = clock
        self._stop      = threading.Event()
        self._thread    : Optional[threading.Thread] = None
        self.frames_read = 0

    def start(self) -> None:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            raise ValueError(f"Failed to open capture source: {self.source}")
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, args=(cap,), name="capture", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self, cap: cv2.VideoCapture) -> None:
        fps     = cap.get(cv2.CAP_PROP_FPS) if isinstance(self.source, str) else 0.0
        paced   = self.realtime and fps and fps > 0
        started = self._clock()
        try:
            while not self._stop.is_set():
                if self.max_frames is not None and self.frames_read >= self.max_frames:
                    break
                ret, image = cap.read()
                if not ret:
                    break
                index = self.frames_read
                stamp = index / fps if fps and fps > 0 else self._clock()
                if paced:
                    delay = started + stamp - self._clock()
                    if delay > 0 and self._stop.wait(delay):
                        break
                self.sink(Frame(image=np.ascontiguousarray(image), index=index, timestamp=stamp))
                self.frames_read += 1
        finally:
            cap.release()
            logger.info("Capture from %s finished after %d frames", self.source, self.frames_read)
