"""Observability helpers for the tracker.

Request IDs + structlog contextvars, JSON logs, and an in-memory metrics
snapshot. Recording outcomes for the pixel endpoint are reported here since
the HTTP client never sees them.
"""
