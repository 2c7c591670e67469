"""Shared writer contract: one `write` coroutine per backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Protocol
from uuid import UUID

from crmsync.db.enums import CrmBackendType
from crmsync.schemas.crm_mapping import MappingRule
from crmsync.types import JsonObject


@dataclass(frozen=True)
class JobContext:
    """Everything a writer may read about the job it is executing."""

    job_id: UUID
    submission_id: UUID
    connection_id: UUID
    form_id: UUID | None
    backend_type: str
    target_url: str | None
    config: JsonObject = field(default_factory=dict)  # secrets already decrypted
    submission_data: JsonObject = field(default_factory=dict)
    retry_count: int = 0
    max_retries: int = 3
    status: str = "running"


@dataclass
class WriteResult:
    """Artifacts of a successful write."""

    screenshot_reference: str | None = None
    record_id: str | None = None
    response_status: int | None = None
    filled_count: int = 0


class BackendWriter(Protocol):
    backend_type: ClassVar[CrmBackendType]

    async def write(self, job: JobContext, rules: list[MappingRule]) -> WriteResult:
        """Perform the external write or raise CrmWriteError."""
        ...


def truncate_body(text: str, limit: int = 200) -> str:
    return text[:limit]
