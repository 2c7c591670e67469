"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database file per test (same models as production)
- Session factory for code that opens its own sessions (dispatcher, queue)
- Connection / mapping / submission / job factories
- HTTPX AsyncClient against the FastAPI app with the internal secret header
"""
import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["FERNET_KEY"] = Fernet.generate_key().decode()
os.environ["CRM_SCREENSHOT_DIR"] = tempfile.mkdtemp(prefix="crmsync-screens-")
os.environ["CRM_RUN_WORKER_IN_API"] = "False"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from crmsync.db.base import Base
from crmsync.db.enums import CrmBackendType, CrmJobStatus
from crmsync.db.models import CrmConnection, CrmFieldMapping, CrmWriteJob, FormSubmission
from crmsync.services.crm_connection_service import encrypt_config

INTERNAL_SECRET = "test-internal-secret"


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite so several sessions (and threads) see the same data."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'crmsync.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def make_connection(db: Session):
    def _make(
        backend_type: str = CrmBackendType.GENERIC_REST.value,
        target_url: str | None = "https://crm.example.com/api/leads",
        config: dict | None = None,
        is_active: bool = True,
        display_name: str = "Test CRM",
    ) -> CrmConnection:
        connection = CrmConnection(
            display_name=display_name,
            backend_type=backend_type,
            target_url=target_url,
            config=encrypt_config(config or {}),
            is_active=is_active,
        )
        db.add(connection)
        db.commit()
        return connection

    return _make


@pytest.fixture(scope="function")
def make_submission(db: Session):
    def _make(data: dict | None = None, form_id: uuid.UUID | None = None) -> FormSubmission:
        submission = FormSubmission(
            form_id=form_id or uuid.uuid4(),
            data=data if data is not None else {"Name": "Ada Lovelace", "Email": "ada@example.com"},
        )
        db.add(submission)
        db.commit()
        return submission

    return _make


@pytest.fixture(scope="function")
def make_mapping(db: Session):
    def _make(
        form_id: uuid.UUID,
        connection: CrmConnection,
        rules: list[dict] | None = None,
        is_active: bool = True,
    ) -> CrmFieldMapping:
        mapping = CrmFieldMapping(
            form_id=form_id,
            connection_id=connection.id,
            rules=rules
            if rules is not None
            else [
                {"source_field": "Name", "target_field": "LastName"},
                {"source_field": "Email", "target_field": "Email"},
            ],
            is_active=is_active,
        )
        db.add(mapping)
        db.commit()
        return mapping

    return _make


@pytest.fixture(scope="function")
def make_job(db: Session, make_connection, make_submission):
    """Create a job; missing submission/connection are created on the fly."""
    base_time = datetime(2026, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(
        submission: FormSubmission | None = None,
        connection: CrmConnection | None = None,
        status: CrmJobStatus = CrmJobStatus.PENDING,
        retry_count: int = 0,
        max_retries: int = 3,
        error_message: str | None = None,
    ) -> CrmWriteJob:
        counter["n"] += 1
        job = CrmWriteJob(
            submission_id=(submission or make_submission()).id,
            connection_id=(connection or make_connection()).id,
            status=status.value,
            retry_count=retry_count,
            max_retries=max_retries,
            error_message=error_message,
            created_at=base_time + timedelta(seconds=counter["n"]),
        )
        db.add(job)
        db.commit()
        return job

    return _make


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient for the admin API with the internal secret header."""
    from crmsync.core.deps import get_db
    from crmsync.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Internal-Secret": INTERNAL_SECRET},
    ) as c:
        yield c

    app.dependency_overrides.clear()
