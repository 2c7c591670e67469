"""Structured logging helpers (secret-safe)."""

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for worker and CLI entrypoints."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def build_log_context(
    *,
    job_id: object | None = None,
    connection_id: object | None = None,
    backend: str | None = None,
    attempt: int | None = None,
) -> dict[str, Any]:
    """Return a log context dict for job-scoped records. Never include secrets."""
    context: dict[str, Any] = {}
    if job_id:
        context["job_id"] = str(job_id)
    if connection_id:
        context["connection_id"] = str(connection_id)
    if backend:
        context["backend"] = backend
    if attempt is not None:
        context["attempt"] = attempt
    return context


def preview(value: str, limit: int = 30) -> str:
    """Shorten a value for debug logs."""
    if len(value) <= limit:
        return value
    return f"{value[:limit]}..."
