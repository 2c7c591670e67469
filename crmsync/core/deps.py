"""FastAPI dependencies for database access and admin authentication."""

from typing import Generator

from fastapi import Header, HTTPException, Request
from sqlalchemy.orm import Session

from crmsync.core.config import settings
from crmsync.crm.queue import JobQueue
from crmsync.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def verify_internal_secret(x_internal_secret: str = Header(...)) -> None:
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


def get_job_queue(request: Request) -> JobQueue | None:
    """In-process job queue, when the API runs the poller itself."""
    return getattr(request.app.state, "job_queue", None)
