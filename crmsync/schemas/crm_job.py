"""Pydantic schemas for CRM write jobs."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, computed_field

from crmsync.db.enums import CrmJobStatus

ERROR_PREVIEW_LENGTH = 200


class CrmJobRead(BaseModel):
    """Job response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    submission_id: UUID
    connection_id: UUID
    status: str
    retry_count: int
    max_retries: int
    error_message: str | None
    screenshot_reference: str | None
    external_record_id: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime

    @computed_field
    @property
    def can_retry(self) -> bool:
        return self.status in {s.value for s in CrmJobStatus.retryable()}

    @computed_field
    @property
    def can_cancel(self) -> bool:
        return self.status == CrmJobStatus.PENDING.value


class CrmJobListItem(BaseModel):
    """Job list item with connection name and a truncated error."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    submission_id: UUID
    connection_id: UUID
    connection_name: str | None = None
    backend_type: str | None = None
    form_id: UUID | None = None
    status: str
    retry_count: int
    max_retries: int
    error_preview: str | None = None
    screenshot_reference: str | None
    created_at: datetime
    completed_at: datetime | None


class CrmJobListResponse(BaseModel):
    data: list[CrmJobListItem]
    total: int
    page: int
    limit: int


class CrmJobStats(BaseModel):
    pending: int = 0
    running: int = 0
    success: int = 0
    failed: int = 0
    cancelled: int = 0


class CrmJobActionResponse(BaseModel):
    message: str
    job: CrmJobRead
