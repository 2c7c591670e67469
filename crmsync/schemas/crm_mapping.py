"""Pydantic schemas for CRM field mappings."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MappingRule(BaseModel):
    """One form field -> CRM field/selector correspondence."""
    model_config = ConfigDict(extra="ignore")

    source_field: str
    target_field: str = ""
    note: str | None = None


class CrmFieldMappingUpsert(BaseModel):
    form_id: UUID
    connection_id: UUID
    rules: list[MappingRule] = Field(default_factory=list)
    is_active: bool = True


class CrmFieldMappingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    form_id: UUID
    connection_id: UUID
    rules: list[MappingRule]
    is_active: bool
    created_at: datetime
    updated_at: datetime
