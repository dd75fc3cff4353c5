"""Global pytest fixtures and environment configuration."""

from __future__ import annotations

import os
from typing import Iterator

import pytest

# Never touch a real database from tests that import modules eagerly
# resolving the configured store.
os.environ.setdefault("STORE__URL", "memory://")
os.environ.setdefault("LOG_FORMAT", "logfmt")

from qms_sessions.config import AppSettings, settings  # noqa: E402
from qms_sessions.server import app as app_module  # noqa: E402
from qms_sessions.state.store import MemoryDocumentStore  # noqa: E402


@pytest.fixture(autouse=True)
def _test_settings() -> Iterator[AppSettings]:
    cfg = AppSettings(_env_file=None, app_tz="UTC")  # type: ignore[call-arg]
    settings.reset(cfg)
    yield cfg
    settings.reset(None)


@pytest.fixture
def memory_store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def client(memory_store: MemoryDocumentStore):
    app_module.set_store(memory_store)
    try:
        yield app_module.app.test_client()
    finally:
        app_module.set_store(None)
