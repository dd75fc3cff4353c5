"""Core component interfaces used across the service."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from qms_sessions.state.models import StoredDocument


class DocumentStore(Protocol):
    """Persistence contract for the single global state document.

    ``read`` returns ``None`` when the document was never created.
    ``write`` replaces the whole document; when ``expected_version`` is given
    the write must fail with :class:`~qms_sessions.errors.StaleWriteError`
    unless the stored version still matches. ``None`` means "create"; a
    create that finds an existing document is also a conflict.
    """

    def read(self) -> Optional[StoredDocument]: ...

    def write(
        self, content: Dict[str, Any], expected_version: Optional[int] = None
    ) -> int: ...


class Clock(Protocol):
    """Wall clock returning epoch milliseconds."""

    def __call__(self) -> int: ...
