"""
companion.py
──────────────────────────────────────────────────────────────────────────────
Throttled, retried, best-effort delivery of feedback to a paired wearable.

Delivery chain for one message
──────────────────────────────
1. link reachable → direct send, up to ``max_attempts`` tries ``retry_interval``
   seconds apart
2. unreachable / retries exhausted → queued transfer + application-context
   snapshot (run in parallel for ``shotFeedback``, one after the other
   otherwise)
3. both fallbacks failed → exactly one local notification

Messages produced before the link is activated wait in a FIFO queue that is
flushed once activation succeeds or reachability comes back; ``reconnect()``
discards it.  Messages of the same type closer together than
``throttle_interval`` are dropped, and nothing is sent to an unpaired device.

All deliveries run on a background worker so a stalled link never blocks
frame processing.  ``HttpCompanionLink`` talks to a small wearable bridge over
HTTP with ``requests``; any other transport only needs the ``CompanionLink``
methods.
"""

from __future__ import annotations

import collections
import enum
import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Deque, Dict, Optional, Protocol, Tuple

import requests

from netcoach.config import CompanionConfig
from netcoach.datatypes import FeedbackMessage, MessageType
from netcoach.errors import LinkError
from netcoach.utils.logging_utils import log_service_init

logger = logging.getLogger(__name__)


class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING   = "connecting"
    CONNECTED    = "connected"
    FAILED       = "failed"


# ──────────────────────────────────────────────────────────────────────────────
# Collaborator interfaces
# ──────────────────────────────────────────────────────────────────────────────
class CompanionLink(Protocol):
    """Transport to the wearable.  Delivery methods raise LinkError on failure."""

    def is_paired(self) -> bool: ...
    def is_reachable(self) -> bool: ...
    def is_activated(self) -> bool: ...
    def activate(self) -> bool: ...
    def send_message(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...
    def transfer_user_info(self, payload: Dict[str, Any]) -> None: ...
    def update_application_context(self, payload: Dict[str, Any]) -> None: ...


class Notifier(Protocol):
    def notify(self, message: FeedbackMessage) -> None: ...


def notification_content(message: FeedbackMessage) -> Optional[Tuple[str, str]]:
    """(title, body) shown to the user for a message that could not be delivered."""
    if message.type is MessageType.SHOT_FEEDBACK:
        title = "Great Shot!" if message.get("isSuccessful") else "Keep Trying"
        return title, f"Racquet angle: {message.get('angle')}"
    return {
        MessageType.SESSION_ENDED        : ("Session Complete", "Your tennis session has ended"),
        MessageType.NOT_IN_FRAME         : ("Warning", "You are not in frame!"),
        MessageType.BACK_IN_FRAME        : ("Info", "You are back in frame!"),
        MessageType.LIVE_ANALYSIS_STARTED: ("Live Analysis Started", "Open NetCoach on your watch."),
    }.get(message.type)


class LogNotifier:
    """Local notification surfaced as a WARNING log line."""

    def notify(self, message: FeedbackMessage) -> None:
        content = notification_content(message)
        if content is None:
            return
        title, body = content
        logger.warning("[notification] %s: %s", title, body)


# ──────────────────────────────────────────────────────────────────────────────
# HTTP bridge link
# ──────────────────────────────────────────────────────────────────────────────
class HttpCompanionLink:
    """
    ``CompanionLink`` over a wearable bridge exposing

        GET  /status      → {"paired": bool, "reachable": bool, "activated": bool}
        POST /activate    → {"activated": bool}
        POST /message     → reply map
        POST /user-info
        PUT  /context

    A bridge that cannot be queried is reported as paired, activated and
    unreachable, which routes messages through the fallback chain.  A
    successful status reply is reused for ``status_ttl`` seconds so one
    delivery costs a single status round trip.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        session: Optional[requests.Session] = None,
        status_ttl: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url   = base_url.rstrip("/")
        self.timeout    = timeout
        self.status_ttl = status_ttl
        self._session   = session or requests.Session()
        self._clock     = clock
        self._lock      = threading.Lock()
        self._last_status = {"paired": True, "reachable": False, "activated": True}
        self._status_at   : Optional[float] = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def status(self) -> Dict[str, bool]:
        with self._lock:
            if self._status_at is not None and self._clock() - self._status_at < self.status_ttl:
                return dict(self._last_status)
        try:
            resp = self._session.get(self._url("/status"), timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Companion bridge status unavailable: %s", exc)
            with self._lock:
                self._status_at = None
                return dict(self._last_status, reachable=False)
        with self._lock:
            self._last_status = {
                "paired"   : bool(data.get("paired", False)),
                "reachable": bool(data.get("reachable", False)),
                "activated": bool(data.get("activated", False)),
            }
            self._status_at = self._clock()
            return dict(self._last_status)

    def invalidate_status(self) -> None:
        with self._lock:
            self._status_at = None

    def is_paired(self) -> bool:
        return self.status()["paired"]

    def is_reachable(self) -> bool:
        return self.status()["reachable"]

    def is_activated(self) -> bool:
        return self.status()["activated"]

    def activate(self) -> bool:
        try:
            resp = self._session.post(self._url("/activate"), timeout=self.timeout)
            resp.raise_for_status()
            activated = bool(resp.json().get("activated", False))
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Companion activation request failed: %s", exc)
            return False
        # Activation changes the bridge state; re-read it on the next query
        self.invalidate_status()
        return activated

    def send_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._request("POST", "/message", payload)
        try:
            return resp.json()
        except ValueError:
            return {}

    def transfer_user_info(self, payload: Dict[str, Any]) -> None:
        self._request("POST", "/user-info", payload)

    def update_application_context(self, payload: Dict[str, Any]) -> None:
        self._request("PUT", "/context", payload)

    def _request(self, method: str, path: str, payload: Dict[str, Any]) -> requests.Response:
        try:
            resp = self._session.request(method, self._url(path), json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise LinkError(f"{method} {path} failed: {exc}") from exc
        return resp


# ──────────────────────────────────────────────────────────────────────────────
# CompanionMessenger
# ──────────────────────────────────────────────────────────────────────────────
class CompanionMessenger:
    """
    Process-scoped messaging service, constructed once and injected.

    Parameters
    ──────────
    link     : CompanionLink transport
    notifier : last-resort local notification (defaults to LogNotifier)
    config   : CompanionConfig
    executor : delivery worker (defaults to a single background thread)
    clock    : monotonic time source used for throttling and health checks
    sleep    : pause between direct-send retries
    """

    def __init__(
        self,
        link: CompanionLink,
        notifier: Optional[Notifier] = None,
        config: Optional[CompanionConfig] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.link     = link
        self.notifier = notifier or LogNotifier()
        self.config   = config or CompanionConfig()
        self._clock   = clock
        self._sleep   = sleep
        self._lock    = threading.RLock()

        self._executor          = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="companion")
        self._fallback_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="companion-fallback")

        self._status              = ConnectionStatus.DISCONNECTED
        self._queue               : Deque[FeedbackMessage] = collections.deque()
        self._last_sent           : Dict[MessageType, float] = {}
        self._activation_attempts = 0
        self._last_success        = self._clock()
        self._last_error          : Optional[str] = None
        self._was_reachable       = False
        self.notifications_sent   = 0

        self._monitor_stop   = threading.Event()
        self._monitor_thread : Optional[threading.Thread] = None

        log_service_init("CompanionMessenger", vars(self.config))

    # ──────────────────────────────────────────────────────────────────────────
    # Producer side
    # ──────────────────────────────────────────────────────────────────────────
    def send(self, message: FeedbackMessage) -> bool:
        """
        Hand a message to the delivery worker.

        Returns False when the message was throttled, True when it was
        accepted for delivery.  Never touches the link: pairing and
        reachability are checked on the worker, so a stalled link cannot
        hold up the caller.
        """
        with self._lock:
            now  = self._clock()
            last = self._last_sent.get(message.type)
            if last is not None and now - last < self.config.throttle_interval:
                logger.debug("%s throttled (%.2fs since last)", message.type.value, now - last)
                return False
            self._last_sent[message.type] = now

        self._executor.submit(self._deliver, message)
        return True

    def send_shot_feedback(self, angle: str, is_successful: bool) -> bool:
        return self.send(FeedbackMessage.shot_feedback(angle, is_successful))

    def send_session_ended(self) -> bool:
        return self.send(FeedbackMessage.create(MessageType.SESSION_ENDED))

    def send_not_in_frame(self) -> bool:
        return self.send(FeedbackMessage.create(MessageType.NOT_IN_FRAME))

    def send_back_in_frame(self) -> bool:
        return self.send(FeedbackMessage.create(MessageType.BACK_IN_FRAME))

    def send_live_analysis_started(self) -> bool:
        return self.send(FeedbackMessage.create(MessageType.LIVE_ANALYSIS_STARTED))

    # ──────────────────────────────────────────────────────────────────────────
    # Connection management
    # ──────────────────────────────────────────────────────────────────────────
    def connect(self) -> bool:
        """Activate the link (bounded attempts) and flush anything queued."""
        if self._safe(self.link.is_activated):
            self._on_activated()
            return True
        return self._try_activate()

    def reconnect(self) -> bool:
        """Drop the pending queue and start activation from scratch."""
        with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
            self._activation_attempts = 0
            self._status = ConnectionStatus.CONNECTING
        logger.info("Companion reconnect requested (%d queued messages dropped)", dropped)
        return self._try_activate()

    def on_reachability_changed(self, reachable: bool) -> None:
        """Called by the transport (or the health monitor) on reachability changes."""
        with self._lock:
            self._was_reachable = reachable
            if not reachable:
                if self._status is ConnectionStatus.CONNECTED:
                    self._status = ConnectionStatus.DISCONNECTED
                return
            self._status = ConnectionStatus.CONNECTED
        logger.info("Companion reachable again, flushing queue")
        self.flush()

    def flush(self) -> int:
        """Deliver every queued message in FIFO order; returns how many were sent out."""
        if not self._safe(self.link.is_activated):
            return 0
        with self._lock:
            pending = list(self._queue)
            self._queue.clear()
        if pending:
            logger.info("Flushing %d queued companion messages", len(pending))
        for message in pending:
            self._dispatch(message)
        return len(pending)

    def check_health(self) -> bool:
        """Reconnect when nothing got through for ``health_timeout`` seconds while activated but unreachable."""
        with self._lock:
            silent_for = self._clock() - self._last_success
        if (silent_for > self.config.health_timeout
                and self._safe(self.link.is_activated)
                and not self._safe(self.link.is_reachable)):
            logger.warning("No successful companion message in %.0fs, reconnecting", silent_for)
            self.reconnect()
            return True

        reachable = self._safe(self.link.is_reachable)
        if reachable and not self._was_reachable:
            self.on_reachability_changed(True)
        elif not reachable and self._was_reachable:
            self.on_reachability_changed(False)
        return False

    def start_health_monitor(self) -> None:
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return
        self._monitor_stop.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitor_loop, name="companion-health", daemon=True
        )
        self._monitor_thread.start()

    def shutdown(self) -> None:
        self._monitor_stop.set()
        if self._monitor_thread is not None:
            self._monitor_thread.join(timeout=1.0)
        self._executor.shutdown(wait=True)
        self._fallback_executor.shutdown(wait=True)

    # ── read-only views ───────────────────────────────────────────────────────
    @property
    def status(self) -> ConnectionStatus:
        with self._lock:
            return self._status

    @property
    def queue_size(self) -> int:
        with self._lock:
            return len(self._queue)

    def debug_info(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "status"             : self._status.value,
                "paired"             : self._safe(self.link.is_paired),
                "reachable"          : self._safe(self.link.is_reachable),
                "activated"          : self._safe(self.link.is_activated),
                "queue_size"         : len(self._queue),
                "activation_attempts": self._activation_attempts,
                "last_error"         : self._last_error,
                "since_last_success" : round(self._clock() - self._last_success, 1),
                "notifications_sent" : self.notifications_sent,
            }

    # ──────────────────────────────────────────────────────────────────────────
    # Worker side
    # ──────────────────────────────────────────────────────────────────────────
    def _deliver(self, message: FeedbackMessage) -> None:
        try:
            if not self._safe(self.link.is_paired):
                logger.debug("Companion not paired, skipping %s", message.type.value)
                return
            if not self._safe(self.link.is_activated):
                with self._lock:
                    self._queue.append(message)
                    size = len(self._queue)
                logger.debug("Link not activated, queued %s (queue size %d)", message.type.value, size)
                self._try_activate()
                return
            self._dispatch(message)
        except Exception:
            logger.exception("Unexpected failure delivering %s", message.type.value)

    def _dispatch(self, message: FeedbackMessage) -> bool:
        payload = message.to_dict()

        if self._safe(self.link.is_reachable):
            for attempt in range(1, self.config.max_attempts + 1):
                try:
                    reply = self.link.send_message(payload)
                except LinkError as exc:
                    self._record_error(exc)
                    logger.warning(
                        "Direct send of %s failed (attempt %d/%d): %s",
                        message.type.value, attempt, self.config.max_attempts, exc,
                    )
                    if attempt < self.config.max_attempts:
                        self._sleep(self.config.retry_interval)
                    continue
                if isinstance(reply, dict) and reply.get("status") == "error":
                    logger.warning("Companion replied with error: %s", reply.get("message"))
                self._record_success()
                return True

        if self._fallback(message.type, payload):
            return True

        logger.warning("All delivery paths failed for %s, notifying locally", message.type.value)
        with self._lock:
            self.notifications_sent += 1
        self.notifier.notify(message)
        return False

    def _fallback(self, message_type: MessageType, payload: Dict[str, Any]) -> bool:
        calls = (self.link.transfer_user_info, self.link.update_application_context)
        if message_type is MessageType.SHOT_FEEDBACK:
            futures = [self._fallback_executor.submit(self._attempt, call, payload) for call in calls]
            results = [f.result() for f in futures]
        else:
            results = [self._attempt(call, payload) for call in calls]
        return any(results)

    def _attempt(self, call: Callable[[Dict[str, Any]], Any], payload: Dict[str, Any]) -> bool:
        try:
            call(payload)
        except LinkError as exc:
            self._record_error(exc)
            logger.warning("Fallback %s failed: %s", getattr(call, "__name__", call), exc)
            return False
        return True

    def _try_activate(self) -> bool:
        with self._lock:
            if self._activation_attempts >= self.config.max_activation_attempts:
                self._status = ConnectionStatus.FAILED
                return False
            self._activation_attempts += 1
            attempt = self._activation_attempts
            self._status = ConnectionStatus.CONNECTING
        logger.info("Activating companion link (attempt %d/%d)", attempt, self.config.max_activation_attempts)

        if self._safe(self.link.activate):
            self._on_activated()
            return True

        with self._lock:
            if self._activation_attempts >= self.config.max_activation_attempts:
                self._status = ConnectionStatus.FAILED
                logger.warning("Companion activation failed after %d attempts", attempt)
            else:
                self._status = ConnectionStatus.DISCONNECTED
        return False

    def _on_activated(self) -> None:
        with self._lock:
            self._activation_attempts = 0
            self._was_reachable = self._safe(self.link.is_reachable)
            self._status = ConnectionStatus.CONNECTED if self._was_reachable else ConnectionStatus.DISCONNECTED
        self.flush()

    def _record_success(self) -> None:
        with self._lock:
            self._last_success = self._clock()
            self._activation_attempts = 0
            self._status = ConnectionStatus.CONNECTED

    def _record_error(self, exc: Exception) -> None:
        with self._lock:
            self._last_error = str(exc)

    def _monitor_loop(self) -> None:
        while not self._monitor_stop.wait(self.config.health_check_interval):
            try:
                self.check_health()
            except Exception:
                logger.exception("Companion health check failed")

    def _safe(self, query: Callable[[], bool]) -> bool:
        try:
            return bool(query())
        except LinkError as exc:
            self._record_error(exc)
            return False
