"""Standalone entry point for the session service."""

from __future__ import annotations

import argparse

from qms_sessions.config import settings
from qms_sessions.server.app import run as run_server
from qms_sessions.server.logging_setup import setup_root_logger


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Session heartbeat service")
    parser.add_argument("--host", help="bind address (default from settings)")
    parser.add_argument("--port", type=int, help="bind port (default from settings)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Configure logging and start the HTTP server."""

    args = _parse_args(argv)
    setup_root_logger(settings.log_level, settings.log_format)
    run_server(host=args.host, port=args.port)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
