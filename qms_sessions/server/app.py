# HTTP edge for the session service: heartbeat and workspace endpoints plus
# liveness probes. Uses Waitress in production when available.

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from qms_sessions.config import settings
from qms_sessions.errors import BadRequestError, SessionServiceError
from qms_sessions.interfaces import DocumentStore
from qms_sessions.server.logging_setup import log_event
from qms_sessions.sessions.heartbeat import record_heartbeat
from qms_sessions.sessions.workspace import load_workspace, save_workspace
from qms_sessions.state.store import build_store

app = Flask(__name__)
log = logging.getLogger(__name__)

_store: DocumentStore | None = None
_store_lock = threading.Lock()
_start_ts = time.time()


def set_store(store: DocumentStore | None) -> None:
    """Bind the document store used by the handlers (``None`` to rebuild)."""
    global _store
    with _store_lock:
        _store = store


def get_store() -> DocumentStore:
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = build_store(settings.store)
    return _store


def _json_body() -> Any:
    if not request.data:
        return {}
    body = request.get_json(silent=True, force=True)
    if body is None:
        raise BadRequestError("Request body must be valid JSON")
    return body


@app.errorhandler(SessionServiceError)
def handle_service_error(exc: SessionServiceError) -> tuple[Response, int]:
    if exc.status_code >= 500:
        log_event(
            "store.error",
            "error",
            exc_info=True,
            method=request.method,
            path=request.path,
            error=exc.message,
            details=exc.details,
        )
    elif exc.status_code == 409:
        log_event("store.conflict", "warning", path=request.path, details=exc.details)
    return jsonify(exc.to_payload()), exc.status_code


@app.errorhandler(405)
def method_not_allowed(_exc: HTTPException) -> tuple[Response, int]:
    return jsonify({"error": "Method Not Allowed"}), 405


@app.errorhandler(Exception)
def handle_unexpected(exc: Exception) -> tuple[Response, int]:
    if isinstance(exc, HTTPException):
        return jsonify({"error": exc.name}), exc.code or 500
    log.exception("Unhandled error on %s %s: %s", request.method, request.path, exc)
    return jsonify({"error": "Internal Server Error"}), 500


@app.route("/api/heartbeat", methods=["POST"])
def heartbeat() -> tuple[Response, int]:
    """Refresh the caller's liveness and auto-logout anybody timed out."""
    body = _json_body()
    username = body.get("username") if isinstance(body, dict) else None
    try:
        result = record_heartbeat(
            get_store(),
            username,
            tz=settings.zone,
            style=settings.timestamp_style,
        )
    except BadRequestError:
        log_event("heartbeat.rejected", "info", remote=request.remote_addr)
        raise
    return jsonify(result.to_payload()), 200


@app.route("/api/workspace", methods=["GET"])
def workspace_get() -> tuple[Response, int]:
    """Return the stored workspace document, or ``null`` if none exists."""
    return jsonify(load_workspace(get_store())), 200


@app.route("/api/workspace", methods=["POST"])
def workspace_post() -> tuple[Response, int]:
    """Shallow-merge the posted object into the stored workspace."""
    save_workspace(get_store(), _json_body(), max_bytes=settings.max_payload_bytes)
    return jsonify({"success": True}), 200


@app.route("/live", methods=["GET"])
def live() -> tuple[dict[str, Any], int]:
    """Liveness probe: returns 200 as long as the process is up."""
    return {"status": "live", "uptime_sec": int(time.time() - _start_ts)}, 200


@app.route("/health", methods=["HEAD"])
def health_head() -> tuple[Response, int]:
    return Response(status=200), 200


def run(store: DocumentStore | None = None, host: str | None = None, port: int | None = None) -> None:
    """
    Serve the API in the current thread.

    Uses Waitress when installed, falling back to Flask's threaded server.

    Configuration order of precedence (highest first):
      1. ``host``/``port`` arguments passed to ``run``
      2. Environment variables ``SERVER_HOST`` / ``SERVER_PORT``
      3. Values from ``settings.server`` (defaults to 0.0.0.0:8000)
    """
    global _start_ts
    _start_ts = time.time()
    if store is not None:
        set_store(store)

    bind_host = host or os.environ.get("SERVER_HOST") or settings.server.host
    env_port = os.environ.get("SERVER_PORT")
    bind_port = int(port if port is not None else env_port or settings.server.port)

    try:
        from waitress import serve  # type: ignore[import-not-found,import-untyped]
    except ImportError:  # pragma: no cover - import guarded for optional dep
        serve = None

    log_event("server.start", host=bind_host, port=bind_port, waitress=serve is not None)
    if serve is not None:
        serve(app, host=bind_host, port=bind_port)
    else:
        app.run(
            host=bind_host,
            port=bind_port,
            debug=False,
            use_reloader=False,
            threaded=True,
        )
