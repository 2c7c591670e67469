"""CRM write jobs router - monitor, retry and cancel jobs (internal secret)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from crmsync.core.deps import get_db, get_job_queue, verify_internal_secret
from crmsync.crm.queue import JobQueue
from crmsync.db.enums import CrmJobStatus
from crmsync.schemas.crm_job import (
    CrmJobActionResponse,
    CrmJobListResponse,
    CrmJobRead,
    CrmJobStats,
)
from crmsync.services import crm_job_service

router = APIRouter(dependencies=[Depends(verify_internal_secret)])


@router.get("", response_model=CrmJobListResponse)
def list_jobs(
    status: CrmJobStatus | None = None,
    form_id: UUID | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(30, ge=1),
    db: Session = Depends(get_db),
):
    """List jobs, newest first."""
    limit = min(limit, 100)
    items, total = crm_job_service.list_jobs(
        db, status=status, form_id=form_id, page=page, limit=limit
    )
    return CrmJobListResponse(data=items, total=total, page=page, limit=limit)


@router.get("/stats", response_model=CrmJobStats)
def job_stats(db: Session = Depends(get_db)):
    """Job counts for every status (zero when none)."""
    return crm_job_service.get_status_counts(db)


@router.get("/{job_id}", response_model=CrmJobRead)
def get_job(job_id: UUID, db: Session = Depends(get_db)):
    job = crm_job_service.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/{job_id}/retry", response_model=CrmJobActionResponse)
def retry_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    queue: JobQueue | None = Depends(get_job_queue),
):
    """Send a failed or cancelled job back to the queue for one more attempt."""
    try:
        job = crm_job_service.retry_job(db, job_id)
    except crm_job_service.CrmJobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except crm_job_service.CrmJobStateError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if queue:
        queue.enqueue(job.id)
    return CrmJobActionResponse(message="Job requeued", job=CrmJobRead.model_validate(job))


@router.post("/{job_id}/cancel", response_model=CrmJobActionResponse)
def cancel_job(job_id: UUID, db: Session = Depends(get_db)):
    """Cancel a pending job."""
    try:
        job = crm_job_service.cancel_job(db, job_id)
    except crm_job_service.CrmJobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except crm_job_service.CrmJobStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CrmJobActionResponse(message="Job cancelled", job=CrmJobRead.model_validate(job))
