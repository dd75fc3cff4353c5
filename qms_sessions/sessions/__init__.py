"""Heartbeat ingest, timeout sweep and workspace document operations."""

from qms_sessions.sessions.heartbeat import HeartbeatResult, record_heartbeat
from qms_sessions.sessions.sweep import AUTO_LOGOUT_NOTE, TIMEOUT_MS, SweepResult, sweep_timeouts

__all__ = [
    "AUTO_LOGOUT_NOTE",
    "HeartbeatResult",
    "SweepResult",
    "TIMEOUT_MS",
    "record_heartbeat",
    "sweep_timeouts",
]
