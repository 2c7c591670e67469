"""Run one claimed CRM write job and record its outcome.

The job is already `running` when it reaches `process_job`. Every path ends
in exactly one transition recorded through the job service: success, back to
pending for another attempt, or failed once the retry budget is spent.
"""

from __future__ import annotations

import logging
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from crmsync.core.structured_logging import build_log_context
from crmsync.crm.registry import resolve_writer
from crmsync.crm.writers.base import BackendWriter, JobContext
from crmsync.db.enums import CrmJobStatus
from crmsync.db.session import SessionLocal
from crmsync.schemas.crm_mapping import MappingRule
from crmsync.services import crm_job_service

logger = logging.getLogger(__name__)

WriterResolver = Callable[[JobContext], BackendWriter]


def _load(
    session_factory: sessionmaker[Session], job_id: UUID
) -> tuple[JobContext | None, list[MappingRule]]:
    with session_factory() as db:
        job = crm_job_service.load_job_context(db, job_id)
        if job is None:
            return None, []
        try:
            rules = crm_job_service.load_active_mapping(db, job.form_id, job.connection_id)
        except Exception as exc:
            # A broken mapping is treated like a missing one
            logger.warning(
                "Could not load field mapping for job %s: %s", job_id, type(exc).__name__
            )
            db.rollback()
            rules = []
        return job, rules


def _record_failure(
    session_factory: sessionmaker[Session],
    job_id: UUID,
    exc: Exception,
    log_context: dict,
) -> CrmJobStatus | None:
    error_msg = str(exc) or type(exc).__name__
    logger.error("CRM job %s failed: %s", job_id, type(exc).__name__, extra=log_context)
    with session_factory() as db:
        updated = crm_job_service.mark_job_failed(
            db,
            job_id,
            error_msg,
            screenshot_reference=getattr(exc, "screenshot_reference", None),
        )
        if updated is None:
            return None
        status = CrmJobStatus(updated.status)
        retry_count = updated.retry_count
    if status == CrmJobStatus.FAILED:
        logger.warning(
            "CRM job %s failed permanently after %s attempt(s)",
            job_id,
            retry_count,
            extra=log_context,
        )
    return status


async def process_job(
    job_id: UUID,
    *,
    session_factory: sessionmaker[Session] = SessionLocal,
    resolver: WriterResolver = resolve_writer,
) -> CrmJobStatus | None:
    """
    Execute a claimed job with its connection's writer.

    Returns the job's resulting status, or None when nothing was recorded
    (job deleted or no longer running).
    """
    try:
        job, rules = _load(session_factory, job_id)
    except Exception as exc:
        # Undecryptable secrets and similar; still a failed attempt
        return _record_failure(session_factory, job_id, exc, build_log_context(job_id=job_id))
    if job is None:
        logger.error("CRM job %s not found; skipping", job_id)
        return None
    if job.status != CrmJobStatus.RUNNING.value:
        logger.warning("CRM job %s is %s, not running; skipping", job_id, job.status)
        return None

    attempt = job.retry_count + 1
    log_context = build_log_context(
        job_id=job.job_id,
        connection_id=job.connection_id,
        backend=job.backend_type,
        attempt=attempt,
    )
    logger.info(
        "Processing CRM job %s (attempt %s/%s)",
        job.job_id,
        attempt,
        job.max_retries,
        extra=log_context,
    )

    try:
        writer = resolver(job)
        result = await writer.write(job, rules)
    except Exception as exc:
        return _record_failure(session_factory, job.job_id, exc, log_context)

    with session_factory() as db:
        updated = crm_job_service.mark_job_succeeded(db, job.job_id, result)
        if updated is None:
            return None
    logger.info(
        "CRM job %s succeeded (%s field(s) written)",
        job.job_id,
        result.filled_count,
        extra=log_context,
    )
    return CrmJobStatus.SUCCESS
