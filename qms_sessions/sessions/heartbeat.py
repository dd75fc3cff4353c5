"""Heartbeat ingest: refresh the caller's last-seen time and sweep stale users."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional
from zoneinfo import ZoneInfo

from qms_sessions.errors import BadRequestError
from qms_sessions.interfaces import Clock, DocumentStore
from qms_sessions.server.logging_setup import log_event
from qms_sessions.sessions.sweep import SweepResult, sweep_timeouts
from qms_sessions.sessions.timefmt import now_ms
from qms_sessions.state.models import GlobalState

NO_STATE_MESSAGE = "No state found"


@dataclass
class HeartbeatResult:
    """Outcome of one heartbeat call."""

    username: str
    now: int
    found_state: bool = True
    version: Optional[int] = None
    expired: List[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        if not self.found_state:
            return {"status": "ok", "message": NO_STATE_MESSAGE}
        return {"status": "ok"}


def validate_username(raw: Any) -> str:
    if not isinstance(raw, str) or not raw:
        raise BadRequestError("Username is required")
    return raw


def record_heartbeat(
    store: DocumentStore,
    username: Any,
    *,
    clock: Clock = now_ms,
    tz: ZoneInfo = ZoneInfo("UTC"),
    style: Literal["locale", "iso"] = "locale",
) -> HeartbeatResult:
    """Run one read-modify-write heartbeat cycle against ``store``.

    The sweep covers every tracked user, so any caller may close somebody
    else's stale session. Storage errors propagate to the HTTP layer.
    """
    user = validate_username(username)

    stored = store.read()
    now = clock()
    if stored is None:
        log_event("heartbeat.no_state", username=user)
        return HeartbeatResult(username=user, now=now, found_state=False)

    state = GlobalState.from_document(stored.content)
    heartbeats = state.ensure_heartbeats()
    heartbeats[user] = now

    swept: SweepResult = sweep_timeouts(
        heartbeats, state.audit_logs or [], now, tz=tz, style=style
    )

    document = {**stored.content, **state.to_dict()}
    version = store.write(document, expected_version=stored.version)

    log_event(
        "heartbeat.recorded",
        "debug",
        username=user,
        tracked=len(heartbeats),
        expired=len(swept.expired),
        version=version,
    )
    return HeartbeatResult(username=user, now=now, version=version, expired=swept.expired)


__all__ = ["HeartbeatResult", "NO_STATE_MESSAGE", "record_heartbeat", "validate_username"]
