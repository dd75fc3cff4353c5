"""Backends for the global workspace document.

All three keep one JSON object plus an integer ``version`` that is bumped on
every write. Writes are conditional on the version the caller read, so two
overlapping read-modify-write cycles cannot silently overwrite each other;
the loser gets :class:`StaleWriteError`.

- :class:`SqlDocumentStore`: one row in ``workspace_storage`` (sqlite for
  local/D1-style deployments, Postgres via ``postgresql://`` URLs).
- :class:`JsonFileDocumentStore`: a JSON file on disk, single process.
- :class:`MemoryDocumentStore`: process-local, for tests and demos.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    inspect,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from qms_sessions.config import StoreSettings
from qms_sessions.errors import DocumentError, StaleWriteError, StorageError
from qms_sessions.interfaces import DocumentStore
from qms_sessions.state.models import StoredDocument

logger = logging.getLogger(__name__)


def _dumps(content: Dict[str, Any]) -> str:
    return json.dumps(content, ensure_ascii=False, separators=(",", ":"))


def _decode(raw: Any) -> Dict[str, Any]:
    """Decode a stored ``content`` value into a dict."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DocumentError("Stored workspace is not valid JSON", details=str(exc)) from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DocumentError(
            "Stored workspace is not a JSON object", details=type(raw).__name__
        )
    return raw


class SqlDocumentStore:
    """Workspace document kept in a single SQL row, keyed by document id."""

    def __init__(
        self,
        database_url: str = "sqlite:///workspace.db",
        table: str = "workspace_storage",
        document_id: str = "global_state",
    ) -> None:
        self.document_id = document_id
        self.engine = create_engine(database_url, echo=False, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.metadata = MetaData()
        self.table = Table(
            table,
            self.metadata,
            Column("id", String(64), primary_key=True),
            Column("content", Text),
            Column("updated_at", DateTime(timezone=True)),
            Column("version", Integer, nullable=False, server_default=text("0")),
        )
        self._ready = False
        self._ready_lock = threading.Lock()

    def create_tables(self) -> None:
        """Create the table if missing and add ``version`` to legacy tables."""
        try:
            self.metadata.create_all(bind=self.engine)
            cols = {c["name"] for c in inspect(self.engine).get_columns(self.table.name)}
            if "version" not in cols:
                with self.engine.begin() as conn:
                    conn.execute(
                        text(
                            f"ALTER TABLE {self.table.name} "
                            "ADD COLUMN version INTEGER NOT NULL DEFAULT 0"
                        )
                    )
                logger.info("Added version column to %s", self.table.name)
        except SQLAlchemyError as exc:
            raise StorageError("Could not prepare workspace table", details=str(exc)) from exc

    def _ensure_ready(self) -> None:
        if self._ready:
            return
        with self._ready_lock:
            if not self._ready:
                self.create_tables()
                self._ready = True

    def read(self) -> Optional[StoredDocument]:
        self._ensure_ready()
        t = self.table
        try:
            with self.SessionLocal() as session:
                row = session.execute(
                    select(t.c.content, t.c.version).where(t.c.id == self.document_id)
                ).first()
        except SQLAlchemyError as exc:
            raise StorageError("Workspace read failed", details=str(exc)) from exc
        if row is None:
            return None
        return StoredDocument(content=_decode(row.content), version=int(row.version or 0))

    def _current_version(self) -> Optional[int]:
        t = self.table
        with self.SessionLocal() as session:
            return session.execute(
                select(t.c.version).where(t.c.id == self.document_id)
            ).scalar_one_or_none()

    def write(self, content: Dict[str, Any], expected_version: Optional[int] = None) -> int:
        self._ensure_ready()
        t = self.table
        payload = _dumps(content)
        now = datetime.now(timezone.utc)
        session = self.SessionLocal()
        try:
            if expected_version is None:
                session.execute(
                    insert(t).values(
                        id=self.document_id, content=payload, updated_at=now, version=1
                    )
                )
                new_version = 1
            else:
                result = session.execute(
                    update(t)
                    .where(t.c.id == self.document_id, t.c.version == expected_version)
                    .values(content=payload, updated_at=now, version=expected_version + 1)
                )
                if result.rowcount != 1:
                    session.rollback()
                    raise StaleWriteError(expected_version, self._current_version())
                new_version = expected_version + 1
            session.commit()
            return new_version
        except IntegrityError as exc:
            session.rollback()
            raise StaleWriteError(expected_version, self._current_version()) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError("Workspace write failed", details=str(exc)) from exc
        finally:
            session.close()


class JsonFileDocumentStore:
    """Workspace document kept in a JSON file: ``{"version", "content"}``."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            raise DocumentError("Workspace file is not valid JSON", details=str(exc)) from exc
        except OSError as exc:
            raise StorageError("Workspace file read failed", details=str(exc)) from exc
        if not isinstance(data, dict) or "content" not in data:
            raise DocumentError("Workspace file has no content envelope", details=self.path)
        return data

    def read(self) -> Optional[StoredDocument]:
        with self._lock:
            data = self._load()
        if data is None:
            return None
        return StoredDocument(content=_decode(data["content"]), version=int(data.get("version", 0)))

    def write(self, content: Dict[str, Any], expected_version: Optional[int] = None) -> int:
        with self._lock:
            data = self._load()
            current = None if data is None else int(data.get("version", 0))
            if current != expected_version:
                raise StaleWriteError(expected_version, current)
            new_version = (current or 0) + 1
            envelope = {
                "version": new_version,
                "updated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
                "content": content,
            }
            directory = os.path.dirname(self.path) or "."
            try:
                os.makedirs(directory, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(envelope, f, ensure_ascii=False)
                os.replace(tmp, self.path)
            except OSError as exc:
                raise StorageError("Workspace file write failed", details=str(exc)) from exc
            return new_version


class MemoryDocumentStore:
    """Process-local store; contents are deep-copied in and out."""

    def __init__(self, content: Optional[Dict[str, Any]] = None) -> None:
        self._lock = threading.Lock()
        self._content: Optional[Dict[str, Any]] = copy.deepcopy(content)
        self._version = 0 if content is None else 1

    def read(self) -> Optional[StoredDocument]:
        with self._lock:
            if self._content is None:
                return None
            return StoredDocument(content=copy.deepcopy(self._content), version=self._version)

    def write(self, content: Dict[str, Any], expected_version: Optional[int] = None) -> int:
        with self._lock:
            current = None if self._content is None else self._version
            if current != expected_version:
                raise StaleWriteError(expected_version, current)
            self._content = copy.deepcopy(content)
            self._version += 1
            return self._version


def build_store(cfg: StoreSettings) -> DocumentStore:
    """Return the backend selected by ``cfg.url``."""
    url = cfg.url
    if url.startswith("memory://"):
        return MemoryDocumentStore()
    if url.startswith("file://"):
        return JsonFileDocumentStore(url[len("file://") :])
    if url.endswith(".json") and "://" not in url:
        return JsonFileDocumentStore(url)
    return SqlDocumentStore(url, table=cfg.table, document_id=cfg.document_id)


__all__ = [
    "JsonFileDocumentStore",
    "MemoryDocumentStore",
    "SqlDocumentStore",
    "build_store",
]
