"""Load and save the whole workspace document.

Saves are a top-level shallow merge: keys in the payload replace the stored
keys of the same name, every other stored key (heartbeats and audit logs
included) is kept.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from qms_sessions.config import DEFAULT_MAX_PAYLOAD_BYTES
from qms_sessions.errors import BadRequestError, PayloadTooLargeError
from qms_sessions.interfaces import DocumentStore
from qms_sessions.server.logging_setup import log_event


def load_workspace(store: DocumentStore) -> Optional[Dict[str, Any]]:
    stored = store.read()
    return None if stored is None else stored.content


def save_workspace(
    store: DocumentStore,
    payload: Any,
    *,
    max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
) -> int:
    """Merge ``payload`` into the stored document and return the new version."""
    if not isinstance(payload, dict):
        raise BadRequestError("Payload must be a JSON object")
    size = len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))
    if size > max_bytes:
        raise PayloadTooLargeError("Payload too large.", details=f"{size} > {max_bytes} bytes")

    stored = store.read()
    if stored is None:
        version = store.write(dict(payload), expected_version=None)
    else:
        version = store.write({**stored.content, **payload}, expected_version=stored.version)
    log_event("workspace.saved", keys=len(payload), bytes=size, version=version)
    return version


__all__ = ["load_workspace", "save_workspace"]
