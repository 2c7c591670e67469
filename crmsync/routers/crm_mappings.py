"""CRM field mappings router (internal secret)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from crmsync.core.deps import get_db, verify_internal_secret
from crmsync.schemas.crm_mapping import CrmFieldMappingRead, CrmFieldMappingUpsert
from crmsync.services import crm_connection_service, crm_mapping_service

router = APIRouter(dependencies=[Depends(verify_internal_secret)])


@router.get("", response_model=list[CrmFieldMappingRead])
def list_mappings(form_id: UUID, db: Session = Depends(get_db)):
    """All mappings (one per connection) for a form."""
    return crm_mapping_service.list_mappings_for_form(db, form_id)


@router.put("", response_model=CrmFieldMappingRead)
def upsert_mapping(data: CrmFieldMappingUpsert, db: Session = Depends(get_db)):
    try:
        return crm_mapping_service.upsert_mapping(db, data)
    except crm_connection_service.CrmConnectionNotFoundError:
        raise HTTPException(status_code=400, detail="Connection not found")


@router.delete("/{mapping_id}", status_code=204)
def delete_mapping(mapping_id: UUID, db: Session = Depends(get_db)):
    try:
        crm_mapping_service.delete_mapping(db, mapping_id)
    except crm_mapping_service.CrmMappingNotFoundError:
        raise HTTPException(status_code=404, detail="Mapping not found")
