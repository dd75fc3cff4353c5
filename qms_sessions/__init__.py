"""Session heartbeat and auto-logout service for the QMS dashboard."""

__version__ = "0.3.0"
