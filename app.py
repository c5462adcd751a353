"""
app.py
──────────────────────────────────────────────────────────────────────────────
Streamlit NetCoach demo driver.

A capture thread feeds frames from an uploaded video or a webcam into
``TennisAnalyzer.submit_frame``; the page polls the analytics snapshot and the
result channel, and shows what the wearable would receive.

Run:
    streamlit run app.py -- --config configs/default.yaml

Features
────────
  ① Video file upload  OR  webcam live stream
  ② Annotated video (net / ball / racquet boxes, trail, HUD)
  ③ Live counters, current racquet angle, companion connection status
  ④ Session history table with CSV export
"""

import argparse
import logging
import tempfile
import time
from pathlib import Path

import cv2
import pandas as pd
import streamlit as st

from netcoach.analyzer import TennisAnalyzer
from netcoach.annotator import Annotator
from netcoach.backends import build_models
from netcoach.companion import CompanionMessenger, HttpCompanionLink
from netcoach.config import load_config
from netcoach.datatypes import CrossingEvent, SessionRecord
from netcoach.errors import ModelLoadError
from netcoach.frame_dispatcher import CaptureThread
from netcoach.utils.logging_utils import configure_logging

ROOT = Path(__file__).parent.resolve()

logger = logging.getLogger("netcoach.app")


def _parse_args():
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--config", default=str(ROOT / "configs" / "default.yaml"))
    args, _ = parser.parse_known_args()
    return args


# ──────────────────────────────────────────────────────────────────────────────
# Page config
# ──────────────────────────────────────────────────────────────────────────────
st.set_page_config(
    page_title="NetCoach",
    page_icon="🎾",
    layout="wide",
    initial_sidebar_state="expanded",
)


class _SessionTable:
    """SessionSink keeping finished sessions in Streamlit state."""

    def save(self, record: SessionRecord) -> None:
        st.session_state.sessions.append(record.as_dict())


# ──────────────────────────────────────────────────────────────────────────────
# Session state helpers
# ──────────────────────────────────────────────────────────────────────────────
def _init_session():
    defaults = {
        "config"    : None,
        "analyzer"  : None,
        "messenger" : None,
        "running"   : False,
        "sessions"  : [],
        "outcomes"  : [],
    }
    for k, v in defaults.items():
        if k not in st.session_state:
            st.session_state[k] = v

_init_session()


def _get_analyzer() -> TennisAnalyzer:
    """Return the cached analyzer, building models and messenger on first use."""
    if st.session_state.analyzer is not None:
        return st.session_state.analyzer

    config = load_config(_parse_args().config)
    configure_logging(config.log_level)

    messenger = None
    if config.companion.base_url:
        link = HttpCompanionLink(
            config.companion.base_url,
            timeout=config.companion.request_timeout,
            status_ttl=config.companion.status_ttl,
        )
        messenger = CompanionMessenger(link, config=config.companion)
        messenger.connect()
        messenger.start_health_monitor()

    models = build_models(config.models)
    analyzer = TennisAnalyzer(
        pose_model=models["pose_model"],
        swing_model=models["swing_model"],
        detection_model=models["detector"],
        angle_model=models["angle_model"],
        messenger=messenger,
        session_sink=_SessionTable(),
        config=config,
    )
    st.session_state.config    = config
    st.session_state.messenger = messenger
    st.session_state.analyzer  = analyzer
    return analyzer


def _collect_outcomes(analyzer: TennisAnalyzer) -> None:
    """Move crossing outcomes from the result channel into session state."""
    for event in analyzer.drain_results():
        if isinstance(event, CrossingEvent):
            st.session_state.outcomes.append({
                "frame"  : event.frame_index,
                "outcome": event.result.value,
                "angle"  : event.message.get("angle") if event.message else None,
            })


def _companion_status() -> str:
    messenger = st.session_state.messenger
    return messenger.status.value if messenger is not None else "disconnected"


def _update_metrics(m_shots, m_rate, m_angle, m_link, a: dict) -> None:
    m_shots.metric(
        "Shots  In / Out",
        f"{a.get('successful_shots', 0)}  /  {a.get('failed_shots', 0)}",
        delta=f"{a.get('total_attempts', 0)} attempts",
    )
    m_rate.metric("Success rate", f"{a.get('success_rate', 0.0) * 100:.0f}%")
    m_angle.metric("Racquet angle", a.get("current_angle") or "—")
    m_link.metric("Watch", _companion_status())


def _count_frames(path: str) -> int:
    cap = cv2.VideoCapture(path)
    try:
        return int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    finally:
        cap.release()


def _run_capture(source, n_frames: int, source_name: str) -> None:
    """
    Run one session: the capture thread submits frames to the analyzer's
    dispatcher while this loop renders the latest dispatched frame.
    """
    analyzer  = _get_analyzer()
    annotator = Annotator(show_trail=show_trail, show_hud=show_hud)

    analyzer.start_session()
    capture = CaptureThread(source, analyzer.submit_frame, realtime=isinstance(source, str))
    try:
        capture.start()
    except ValueError as exc:
        st.session_state.running = False
        analyzer.stop_session(video_reference=source_name)
        st.error(str(exc))
        return

    shown   = -1
    t_start = time.perf_counter()
    try:
        while st.session_state.running and capture.running:
            _collect_outcomes(analyzer)
            frame = analyzer.dispatcher.current_frame
            if frame is None or frame.index == shown:
                time.sleep(0.01)
                continue
            shown = frame.index

            analytics = analyzer.snapshot()
            annotated = annotator.annotate(frame.image, analytics, _companion_status())
            video_placeholder.image(
                cv2.cvtColor(annotated, cv2.COLOR_BGR2RGB),
                channels="RGB", use_column_width=True,
            )
            read = capture.frames_read
            if n_frames > 0:
                progress_placeholder.progress(
                    min(1.0, read / n_frames), text=f"Frame {read}/{n_frames}"
                )
            dropped = sum(analytics["dropped_frames"].values())
            status_placeholder.caption(
                f"{analytics['status']}  ·  {read / max(time.perf_counter() - t_start, 1e-9):.1f} FPS"
                f"  ·  {dropped} dropped"
            )
            _update_metrics(metric_shots, metric_rate, metric_angle, metric_link, analytics)
    finally:
        capture.stop()
        capture.join(timeout=2.0)
        st.session_state.running = False
        analyzer.stop_session(video_reference=source_name)
        _collect_outcomes(analyzer)


def _render_sessions_tab() -> None:
    sessions = st.session_state.sessions
    if not sessions:
        st.info("Finish a session to see it here.")
        return

    df = pd.DataFrame([{
        "timestamp"       : pd.to_datetime(s["timestamp"], unit="s"),
        "total_attempts"  : s["total_attempts"],
        "successful_shots": s["successful_shots"],
        "failed_shots"    : s["failed_shots"],
        "video"           : s["video_reference"],
        **{f"first_{k.lower()}_s": round(v, 1) for k, v in s["angle_timestamps"].items()},
    } for s in sessions])
    st.subheader("Sessions")
    st.dataframe(df, use_container_width=True)

    if st.session_state.outcomes:
        st.subheader("Shot outcomes")
        outcomes = pd.DataFrame(st.session_state.outcomes)
        st.bar_chart(outcomes["outcome"].value_counts())
        st.dataframe(outcomes.tail(50), use_container_width=True)

    csv = df.to_csv(index=False).encode()
    st.download_button("⬇️ Download CSV", csv, "netcoach_sessions.csv", "text/csv")


# ──────────────────────────────────────────────────────────────────────────────
# Sidebar
# ──────────────────────────────────────────────────────────────────────────────
with st.sidebar:
    st.title("🎾 NetCoach")
    st.caption("MediaPipe · YOLO · LSTM swing detector")

    st.markdown("---")
    st.subheader("📹 Input Source")
    input_mode = st.radio("Source", ["Upload video", "Webcam"], index=0)

    st.markdown("---")
    st.subheader("🎨 Overlay Options")
    show_trail = st.toggle("Ball trail", value=True)
    show_hud   = st.toggle("HUD",        value=True)

    st.markdown("---")
    if st.button("🔄 Reconnect watch"):
        if st.session_state.messenger is not None:
            st.session_state.messenger.reconnect()
    if st.session_state.messenger is not None:
        with st.expander("Connection debug"):
            st.json(st.session_state.messenger.debug_info())


# ──────────────────────────────────────────────────────────────────────────────
# Main panel layout
# ──────────────────────────────────────────────────────────────────────────────
st.title("🎾 Live Net-Crossing Analysis")

tab_live, tab_sessions = st.tabs(["▶ Live Analysis", "📊 Sessions"])

with tab_live:
    col_video, col_metrics = st.columns([3, 1])

    with col_video:
        video_placeholder    = st.empty()
        progress_placeholder = st.empty()
        status_placeholder   = st.empty()

    with col_metrics:
        st.markdown("### 📈 Live Metrics")
        metric_shots = st.empty()
        metric_rate  = st.empty()
        metric_angle = st.empty()
        metric_link  = st.empty()

    try:
        if input_mode == "Upload video":
            uploaded = st.file_uploader(
                "Upload a rally video", type=["mp4", "avi", "mov", "mkv"], key="video_uploader",
            )
            if uploaded is not None:
                with tempfile.NamedTemporaryFile(suffix=Path(uploaded.name).suffix, delete=False) as tmp:
                    tmp.write(uploaded.read())
                    tmp_path = tmp.name

                col_ctrl1, col_ctrl2 = st.columns(2)
                with col_ctrl1:
                    if st.button("▶ Start Analysis", type="primary"):
                        st.session_state.running = True
                with col_ctrl2:
                    if st.button("⏹ Stop"):
                        st.session_state.running = False

                if st.session_state.running:
                    _run_capture(tmp_path, _count_frames(tmp_path), uploaded.name)
                    Path(tmp_path).unlink(missing_ok=True)
        else:
            cam_idx = st.number_input("Camera index", 0, 4, 0)
            col_c1, col_c2 = st.columns(2)
            with col_c1:
                if st.button("▶ Start Webcam", type="primary"):
                    st.session_state.running = True
            with col_c2:
                if st.button("⏹ Stop Webcam"):
                    st.session_state.running = False

            if st.session_state.running:
                _run_capture(int(cam_idx), 0, f"camera:{cam_idx}")
    except ModelLoadError as exc:
        st.session_state.running = False
        st.error(f"Could not load recognition models: {exc}")

with tab_sessions:
    _render_sessions_tab()
