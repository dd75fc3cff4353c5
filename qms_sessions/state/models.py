"""Typed views over the persisted workspace document.

Only the keys the session subsystem owns are modelled. Everything else in
the document (products, shipments, users, UI preferences...) is carried
through untouched as pydantic "extra" data.

Audit-log entries are written by the browser and other tools, so they are
not re-validated field by field. ``AuditLogEntry`` reads and writes straight
through to the stored dict: key order and every field the sweep does not
set come back out exactly as they went in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, MutableMapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    ValidationError,
    field_validator,
)

from qms_sessions.errors import DocumentError

Timestamp = Union[StrictInt, StrictFloat]


class AuditLogEntry:
    """One login session. Open while ``logoutTime`` is missing or empty."""

    __slots__ = ("raw",)

    def __init__(self, raw: MutableMapping[str, Any]) -> None:
        self.raw = raw

    @property
    def username(self) -> Any:
        return self.raw.get("username")

    @property
    def login_time(self) -> Any:
        return self.raw.get("loginTime")

    @property
    def logout_time(self) -> Any:
        return self.raw.get("logoutTime")

    @logout_time.setter
    def logout_time(self, value: str) -> None:
        self.raw["logoutTime"] = value

    @property
    def duration_minutes(self) -> Any:
        return self.raw.get("durationMinutes")

    @duration_minutes.setter
    def duration_minutes(self, value: int) -> None:
        self.raw["durationMinutes"] = value

    @property
    def note(self) -> Any:
        return self.raw.get("note")

    @note.setter
    def note(self, value: str) -> None:
        self.raw["note"] = value

    @property
    def is_open(self) -> bool:
        return not self.logout_time

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.raw)

    def __repr__(self) -> str:
        return f"AuditLogEntry({self.raw!r})"


class GlobalState(BaseModel):
    """The session-relevant slice of the global workspace document."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, arbitrary_types_allowed=True)

    heartbeats: Optional[Dict[str, Timestamp]] = None
    audit_logs: Optional[List[AuditLogEntry]] = Field(None, alias="auditLogs")

    @field_validator("audit_logs", mode="before")
    @classmethod
    def _v_audit_logs(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, list):
            raise ValueError("auditLogs must be a list")
        entries = []
        for idx, item in enumerate(value):
            if isinstance(item, AuditLogEntry):
                entries.append(item)
            elif isinstance(item, dict):
                entries.append(AuditLogEntry(dict(item)))
            else:
                raise ValueError(f"auditLogs[{idx}] is not an object")
        return entries

    @classmethod
    def from_document(cls, content: Any) -> "GlobalState":
        if not isinstance(content, dict):
            raise DocumentError(
                "Stored workspace is not a JSON object",
                details=type(content).__name__,
            )
        try:
            return cls.model_validate(content)
        except ValidationError as exc:
            raise DocumentError(
                "Stored workspace has an invalid session section",
                details=str(exc.errors(include_url=False)[:3]),
            ) from exc

    def ensure_heartbeats(self) -> Dict[str, Timestamp]:
        """Return the heartbeat map, creating it if the document has none."""
        if self.heartbeats is None:
            self.heartbeats = {}
        return self.heartbeats

    def to_dict(self) -> Dict[str, Any]:
        """Re-emit only the keys the document was loaded with (or that were set)."""
        out: Dict[str, Any] = {}
        if "heartbeats" in self.model_fields_set:
            out["heartbeats"] = None if self.heartbeats is None else dict(self.heartbeats)
        if "audit_logs" in self.model_fields_set:
            out["auditLogs"] = (
                None if self.audit_logs is None else [e.to_dict() for e in self.audit_logs]
            )
        for key, value in (self.model_extra or {}).items():
            out.setdefault(key, value)
        return out


@dataclass(frozen=True)
class StoredDocument:
    """Raw document as read from a store, with its optimistic-lock version."""

    content: Dict[str, Any]
    version: int


__all__ = ["AuditLogEntry", "GlobalState", "StoredDocument", "Timestamp"]
