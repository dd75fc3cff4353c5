"""Persistence for the shared workspace document."""
