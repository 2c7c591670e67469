"""CRM write job service - claiming, state transitions and admin operations.

All job state changes go through this module. Automatic transitions
(`mark_job_succeeded` / `mark_job_failed`) only apply to rows that are
currently `running`, so a terminal job is never moved again by the worker.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crmsync.core.config import settings
from crmsync.crm.writers.base import JobContext, WriteResult
from crmsync.db.enums import CrmJobStatus, CrmSyncStatus
from crmsync.db.models import CrmConnection, CrmFieldMapping, CrmWriteJob, FormSubmission
from crmsync.schemas.crm_job import ERROR_PREVIEW_LENGTH, CrmJobListItem, CrmJobStats
from crmsync.schemas.crm_mapping import MappingRule
from crmsync.services import crm_mapping_service
from crmsync.services.crm_connection_service import reveal_config

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class CrmJobServiceError(Exception):
    """Base exception for CRM job service errors."""

    pass


class CrmJobNotFoundError(CrmJobServiceError):
    """Job not found."""

    pass


class CrmJobStateError(CrmJobServiceError):
    """Job is not in a state that allows the requested operation."""

    pass


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Job creation
# =============================================================================


def create_jobs_for_submission(db: Session, submission_id: UUID) -> list[UUID]:
    """
    Create one pending job per active mapping (with an active connection)
    for the submission's form.

    Existing (submission, connection) jobs are not duplicated. The caller is
    expected to call `JobQueue.enqueue` for each returned id.
    """
    submission = db.get(FormSubmission, submission_id)
    if not submission:
        raise CrmJobServiceError(f"Submission {submission_id} not found")

    connection_ids = (
        db.execute(
            select(CrmFieldMapping.connection_id)
            .join(CrmConnection, CrmFieldMapping.connection_id == CrmConnection.id)
            .where(
                CrmFieldMapping.form_id == submission.form_id,
                CrmFieldMapping.is_active.is_(True),
                CrmConnection.is_active.is_(True),
            )
            .order_by(CrmFieldMapping.created_at)
        )
        .scalars()
        .all()
    )
    existing = set(
        db.execute(
            select(CrmWriteJob.connection_id).where(CrmWriteJob.submission_id == submission_id)
        )
        .scalars()
        .all()
    )

    jobs: list[CrmWriteJob] = []
    for connection_id in connection_ids:
        if connection_id in existing:
            continue
        job = CrmWriteJob(
            submission_id=submission_id,
            connection_id=connection_id,
            status=CrmJobStatus.PENDING.value,
            max_retries=settings.CRM_JOB_MAX_RETRIES,
        )
        db.add(job)
        jobs.append(job)

    if jobs:
        submission.crm_sync_status = CrmSyncStatus.QUEUED.value
    elif not existing:
        submission.crm_sync_status = CrmSyncStatus.NOT_CONFIGURED.value
    db.commit()

    job_ids = [job.id for job in jobs]
    if job_ids:
        logger.info("Created %s CRM write job(s) for submission %s", len(job_ids), submission_id)
    return job_ids


# =============================================================================
# Worker-side store queries
# =============================================================================


def claim_pending_jobs(db: Session, limit: int) -> list[UUID]:
    """
    Atomically claim up to `limit` of the oldest pending jobs.

    Rows locked by another claimant are skipped (FOR UPDATE SKIP LOCKED), and
    claimed rows are flipped to `running` in the same transaction, so two
    pollers never take the same job. Failures roll back and re-raise.
    """
    if limit <= 0:
        return []
    try:
        job_ids = list(
            db.execute(
                select(CrmWriteJob.id)
                .where(CrmWriteJob.status == CrmJobStatus.PENDING.value)
                .order_by(CrmWriteJob.created_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            .scalars()
            .all()
        )
        if job_ids:
            db.execute(
                update(CrmWriteJob)
                .where(CrmWriteJob.id.in_(job_ids))
                .values(status=CrmJobStatus.RUNNING.value, started_at=_now_utc())
                .execution_options(synchronize_session=False)
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return job_ids


def load_job_context(db: Session, job_id: UUID) -> JobContext | None:
    """Job, connection and submission data in one snapshot, or None if the job is gone."""
    row = db.execute(
        select(CrmWriteJob, CrmConnection, FormSubmission)
        .outerjoin(CrmConnection, CrmWriteJob.connection_id == CrmConnection.id)
        .outerjoin(FormSubmission, CrmWriteJob.submission_id == FormSubmission.id)
        .where(CrmWriteJob.id == job_id)
    ).first()
    if row is None:
        return None

    job, connection, submission = row
    return JobContext(
        job_id=job.id,
        submission_id=job.submission_id,
        connection_id=job.connection_id,
        form_id=submission.form_id if submission else None,
        backend_type=connection.backend_type if connection else "",
        target_url=connection.target_url if connection else None,
        config=reveal_config(connection.config) if connection else {},
        submission_data=dict(submission.data or {}) if submission else {},
        retry_count=job.retry_count,
        max_retries=job.max_retries,
        status=job.status,
    )


def load_active_mapping(db: Session, form_id: UUID | None, connection_id: UUID) -> list[MappingRule]:
    if form_id is None:
        return []
    return crm_mapping_service.get_active_rules(db, form_id, connection_id)


def _lock_running_job(db: Session, job_id: UUID) -> CrmWriteJob | None:
    job = db.get(CrmWriteJob, job_id, with_for_update=True, populate_existing=True)
    if job is None:
        logger.error("CRM job %s disappeared before its result was recorded", job_id)
        return None
    if job.status != CrmJobStatus.RUNNING.value:
        logger.warning(
            "CRM job %s is %s, not running; result ignored", job_id, job.status
        )
        db.rollback()
        return None
    return job


def _set_submission_sync_status(db: Session, submission_id: UUID, status: CrmSyncStatus) -> None:
    db.execute(
        update(FormSubmission)
        .where(FormSubmission.id == submission_id)
        .values(crm_sync_status=status.value)
        .execution_options(synchronize_session=False)
    )


def mark_job_succeeded(db: Session, job_id: UUID, result: WriteResult) -> CrmWriteJob | None:
    """running -> success; mark the submission synced."""
    job = _lock_running_job(db, job_id)
    if job is None:
        return None
    job.status = CrmJobStatus.SUCCESS.value
    job.completed_at = _now_utc()
    job.error_message = None
    job.screenshot_reference = result.screenshot_reference
    job.external_record_id = result.record_id
    _set_submission_sync_status(db, job.submission_id, CrmSyncStatus.SYNCED)
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(
    db: Session,
    job_id: UUID,
    error: str,
    screenshot_reference: str | None = None,
) -> CrmWriteJob | None:
    """
    Record a failed attempt.

    Every failure consumes one retry. Once retry_count reaches max_retries
    the job is `failed` and the submission is marked `error`; otherwise it
    goes back to `pending` for a later poll.
    """
    job = _lock_running_job(db, job_id)
    if job is None:
        return None

    job.retry_count += 1
    job.error_message = (error or "Unknown error")[:MAX_ERROR_LENGTH]
    if screenshot_reference:
        job.screenshot_reference = screenshot_reference
    job.started_at = None

    if job.retry_count >= job.max_retries:
        job.status = CrmJobStatus.FAILED.value
        job.completed_at = _now_utc()
        _set_submission_sync_status(db, job.submission_id, CrmSyncStatus.ERROR)
    else:
        job.status = CrmJobStatus.PENDING.value
        job.completed_at = None

    db.commit()
    db.refresh(job)
    return job


# =============================================================================
# Admin operations
# =============================================================================


def get_job(db: Session, job_id: UUID) -> CrmWriteJob | None:
    return db.get(CrmWriteJob, job_id)


def _require_job(db: Session, job_id: UUID) -> CrmWriteJob:
    job = get_job(db, job_id)
    if not job:
        raise CrmJobNotFoundError(f"Job {job_id} not found")
    return job


def cancel_job(db: Session, job_id: UUID) -> CrmWriteJob:
    """pending -> cancelled. Running or finished jobs cannot be cancelled."""
    result = db.execute(
        update(CrmWriteJob)
        .where(CrmWriteJob.id == job_id, CrmWriteJob.status == CrmJobStatus.PENDING.value)
        .values(status=CrmJobStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount == 0:
        job = _require_job(db, job_id)
        raise CrmJobStateError(f"Only pending jobs can be cancelled (job is {job.status})")
    job = _require_job(db, job_id)
    db.refresh(job)
    logger.info("Cancelled CRM job %s", job_id)
    return job


def retry_job(db: Session, job_id: UUID) -> CrmWriteJob:
    """
    failed/cancelled -> pending for one more attempt.

    retry_count is incremented and max_retries raised to at least the new
    count, so the retry budget invariant holds while the job is pending.
    """
    new_count = CrmWriteJob.retry_count + 1
    result = db.execute(
        update(CrmWriteJob)
        .where(
            CrmWriteJob.id == job_id,
            CrmWriteJob.status.in_([s.value for s in CrmJobStatus.retryable()]),
        )
        .values(
            status=CrmJobStatus.PENDING.value,
            retry_count=new_count,
            max_retries=case(
                (CrmWriteJob.max_retries < new_count, new_count),
                else_=CrmWriteJob.max_retries,
            ),
            error_message=None,
            started_at=None,
            completed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        job = _require_job(db, job_id)
        raise CrmJobStateError(f"Only failed or cancelled jobs can be retried (job is {job.status})")

    job = _require_job(db, job_id)
    _set_submission_sync_status(db, job.submission_id, CrmSyncStatus.QUEUED)
    db.commit()
    db.refresh(job)
    logger.info("Requeued CRM job %s (retry_count=%s)", job_id, job.retry_count)
    return job


def list_jobs(
    db: Session,
    status: CrmJobStatus | None = None,
    form_id: UUID | None = None,
    page: int = 1,
    limit: int = 30,
) -> tuple[list[CrmJobListItem], int]:
    """Newest-first job list with connection name and a truncated error."""
    page = max(page, 1)
    query = (
        select(CrmWriteJob, CrmConnection.display_name, CrmConnection.backend_type, FormSubmission.form_id)
        .outerjoin(CrmConnection, CrmWriteJob.connection_id == CrmConnection.id)
        .outerjoin(FormSubmission, CrmWriteJob.submission_id == FormSubmission.id)
    )
    count_query = select(func.count(CrmWriteJob.id)).outerjoin(
        FormSubmission, CrmWriteJob.submission_id == FormSubmission.id
    )
    if status:
        query = query.where(CrmWriteJob.status == status.value)
        count_query = count_query.where(CrmWriteJob.status == status.value)
    if form_id:
        query = query.where(FormSubmission.form_id == form_id)
        count_query = count_query.where(FormSubmission.form_id == form_id)

    total = db.execute(count_query).scalar_one()
    rows = db.execute(
        query.order_by(CrmWriteJob.created_at.desc()).limit(limit).offset((page - 1) * limit)
    ).all()

    items = [
        CrmJobListItem(
            id=job.id,
            submission_id=job.submission_id,
            connection_id=job.connection_id,
            connection_name=connection_name,
            backend_type=backend_type,
            form_id=job_form_id,
            status=job.status,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            error_preview=job.error_message[:ERROR_PREVIEW_LENGTH] if job.error_message else None,
            screenshot_reference=job.screenshot_reference,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )
        for job, connection_name, backend_type, job_form_id in rows
    ]
    return items, total


def get_status_counts(db: Session) -> CrmJobStats:
    rows = db.execute(
        select(CrmWriteJob.status, func.count(CrmWriteJob.id)).group_by(CrmWriteJob.status)
    ).all()
    counts = {status: count for status, count in rows}
    return CrmJobStats(**{s.value: counts.get(s.value, 0) for s in CrmJobStatus})
