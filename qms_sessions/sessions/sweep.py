"""Timeout sweep: close the sessions of users whose heartbeats went stale.

The sweep runs inside every heartbeat call and scans the whole heartbeat
map, not only the caller. There is no background timer, so a stale user is
only closed when somebody else calls in.

For every tracked user with ``now - last_seen > TIMEOUT_MS``:

1. the latest audit-log entry for that user without a ``logoutTime`` gets a
   ``logoutTime``, a ``durationMinutes`` (at least 1) and the auto-logout
   note;
2. the user is dropped from the heartbeat map, whether or not step 1 found
   an open entry.

``elapsed == TIMEOUT_MS`` still counts as live.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, MutableMapping, Optional, Sequence
from zoneinfo import ZoneInfo

from qms_sessions.server.logging_setup import log_event
from qms_sessions.sessions.timefmt import duration_minutes, format_timestamp, parse_epoch_ms
from qms_sessions.state.models import AuditLogEntry, Timestamp

TIMEOUT_MS = 90_000
AUTO_LOGOUT_NOTE = "Auto-Logout (Heartbeat Timeout)"

_UTC = ZoneInfo("UTC")


@dataclass
class ClosedSession:
    username: str
    index: int
    logout_time: str
    duration_minutes: Optional[int]


@dataclass
class SweepResult:
    """What a sweep pass changed."""

    expired: List[str] = field(default_factory=list)
    closed: List[ClosedSession] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.expired)


def is_expired(last_seen: Timestamp, now: int, timeout_ms: int = TIMEOUT_MS) -> bool:
    return now - last_seen > timeout_ms


def find_open_session(audit_logs: Sequence[AuditLogEntry], username: str) -> Optional[int]:
    """Index of the most recent open entry for ``username``, if any."""
    for idx in range(len(audit_logs) - 1, -1, -1):
        entry = audit_logs[idx]
        if entry.username == username and entry.is_open:
            return idx
    return None


def close_session(
    entry: AuditLogEntry,
    now: int,
    *,
    tz: ZoneInfo = _UTC,
    style: Literal["locale", "iso"] = "locale",
) -> Optional[int]:
    """Stamp ``entry`` as auto-logged-out at ``now``.

    Returns the duration written, or ``None`` when ``loginTime`` could not be
    parsed (the entry is still closed, just without a duration).
    """
    login_ms = parse_epoch_ms(entry.login_time, tz)
    entry.logout_time = format_timestamp(now, tz, style)
    minutes: Optional[int] = None
    if login_ms is None:
        log_event(
            "sweep.unparseable_login",
            "warning",
            username=entry.username,
            login_time=entry.login_time,
        )
    else:
        minutes = duration_minutes(login_ms, now)
        entry.duration_minutes = minutes
    entry.note = AUTO_LOGOUT_NOTE
    return minutes


def sweep_timeouts(
    heartbeats: MutableMapping[str, Timestamp],
    audit_logs: List[AuditLogEntry],
    now: int,
    *,
    tz: ZoneInfo = _UTC,
    style: Literal["locale", "iso"] = "locale",
) -> SweepResult:
    """Close timed-out sessions in place and prune their heartbeats."""
    result = SweepResult()
    stale: Dict[str, Timestamp] = {
        user: last_seen
        for user, last_seen in heartbeats.items()
        if is_expired(last_seen, now)
    }
    for user, last_seen in stale.items():
        idx = find_open_session(audit_logs, user)
        if idx is None:
            result.orphaned.append(user)
            log_event("sweep.orphan_heartbeat", "warning", username=user, last_seen=last_seen)
        else:
            entry = audit_logs[idx]
            minutes = close_session(entry, now, tz=tz, style=style)
            result.closed.append(
                ClosedSession(
                    username=user,
                    index=idx,
                    logout_time=entry.logout_time or "",
                    duration_minutes=minutes,
                )
            )
            log_event(
                "sweep.closed",
                username=user,
                index=idx,
                idle_ms=now - last_seen,
                duration_minutes=minutes,
            )
        del heartbeats[user]
        result.expired.append(user)
    return result


__all__ = [
    "AUTO_LOGOUT_NOTE",
    "ClosedSession",
    "SweepResult",
    "TIMEOUT_MS",
    "close_session",
    "find_open_session",
    "is_expired",
    "sweep_timeouts",
]
