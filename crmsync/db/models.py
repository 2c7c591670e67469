"""SQLAlchemy ORM models for CRM connections, mappings, submissions and write jobs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crmsync.db.base import Base
from crmsync.db.enums import DEFAULT_CRM_JOB_STATUS, DEFAULT_CRM_SYNC_STATUS

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class CrmConnection(Base):
    """
    A named external CRM target.

    `config` holds backend-specific settings (selectors, OAuth endpoint,
    HTTP method...). Secret values inside it are Fernet-encrypted.
    """

    __tablename__ = "crm_connections"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    backend_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    config: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), onupdate=_now_utc, nullable=False
    )

    mappings: Mapped[list[CrmFieldMapping]] = relationship(back_populates="connection")


class CrmFieldMapping(Base):
    """
    Ordered form-field -> CRM-field rules for one (form, connection) pair.

    Each rule is {"source_field", "target_field", "note"}; target_field is a
    CSS locator for browser automation and an API field name for REST targets.
    """

    __tablename__ = "crm_field_mappings"
    __table_args__ = (
        UniqueConstraint("form_id", "connection_id", name="uq_crm_mapping_form_connection"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    form_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    connection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("crm_connections.id", ondelete="CASCADE"), nullable=False
    )
    rules: Mapped[list] = mapped_column(JsonType, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), onupdate=_now_utc, nullable=False
    )

    connection: Mapped[CrmConnection] = relationship(back_populates="mappings")


class FormSubmission(Base):
    """
    A submitted form payload (field label -> scalar or list value).

    Produced upstream; this service only reads `data` and updates
    `crm_sync_status`.
    """

    __tablename__ = "form_submissions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    form_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    data: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    crm_sync_status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_CRM_SYNC_STATUS.value,
        server_default=text(f"'{DEFAULT_CRM_SYNC_STATUS.value}'"),
        nullable=False,
    )
    submitted_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )


class CrmWriteJob(Base):
    """
    One queued attempt to write a submission to one CRM connection.

    Rows are never deleted; they double as the audit trail of CRM writes.
    """

    __tablename__ = "crm_write_jobs"
    __table_args__ = (
        UniqueConstraint("submission_id", "connection_id", name="uq_crm_job_submission_connection"),
        Index(
            "idx_crm_jobs_pending",
            "status",
            "created_at",
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False
    )
    connection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("crm_connections.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_CRM_JOB_STATUS.value,
        server_default=text(f"'{DEFAULT_CRM_JOB_STATUS.value}'"),
        nullable=False,
    )
    retry_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    max_retries: Mapped[int] = mapped_column(
        Integer, default=3, server_default=text("3"), nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    screenshot_reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_record_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )

    submission: Mapped[FormSubmission] = relationship()
    connection: Mapped[CrmConnection] = relationship()
