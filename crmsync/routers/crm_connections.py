"""CRM connections router - manage write targets (internal secret)."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from crmsync.core.deps import get_db, verify_internal_secret
from crmsync.schemas.crm_connection import (
    ConnectionProbeResult,
    CrmConnectionCreate,
    CrmConnectionRead,
    CrmConnectionUpdate,
    SelectorInspectRequest,
    SelectorInspectResult,
)
from crmsync.services import crm_connection_service

router = APIRouter(dependencies=[Depends(verify_internal_secret)])


def _get_or_404(db: Session, connection_id: UUID):
    try:
        return crm_connection_service.get_connection(db, connection_id)
    except crm_connection_service.CrmConnectionNotFoundError:
        raise HTTPException(status_code=404, detail="Connection not found")


@router.get("", response_model=list[CrmConnectionRead])
def list_connections(include_inactive: bool = True, db: Session = Depends(get_db)):
    connections = crm_connection_service.list_connections(db, include_inactive=include_inactive)
    return [crm_connection_service.to_read(c) for c in connections]


@router.post("", response_model=CrmConnectionRead, status_code=201)
def create_connection(data: CrmConnectionCreate, db: Session = Depends(get_db)):
    connection = crm_connection_service.create_connection(db, data)
    return crm_connection_service.to_read(connection)


@router.post("/inspect-selector", response_model=SelectorInspectResult)
async def inspect_selector(data: SelectorInspectRequest):
    """Load a page and report what a CSS selector matches, with a highlighted screenshot."""
    return await crm_connection_service.inspect_selector(data.url, data.selector)


@router.get("/{connection_id}", response_model=CrmConnectionRead)
def get_connection(connection_id: UUID, db: Session = Depends(get_db)):
    return crm_connection_service.to_read(_get_or_404(db, connection_id))


@router.put("/{connection_id}", response_model=CrmConnectionRead)
def update_connection(
    connection_id: UUID, data: CrmConnectionUpdate, db: Session = Depends(get_db)
):
    """Update a connection. Masked secrets in `config` keep their stored value."""
    try:
        connection = crm_connection_service.update_connection(db, connection_id, data)
    except crm_connection_service.CrmConnectionNotFoundError:
        raise HTTPException(status_code=404, detail="Connection not found")
    return crm_connection_service.to_read(connection)


@router.delete("/{connection_id}", response_model=CrmConnectionRead)
def deactivate_connection(connection_id: UUID, db: Session = Depends(get_db)):
    """Deactivate (soft delete); existing jobs keep their connection."""
    try:
        connection = crm_connection_service.deactivate_connection(db, connection_id)
    except crm_connection_service.CrmConnectionNotFoundError:
        raise HTTPException(status_code=404, detail="Connection not found")
    return crm_connection_service.to_read(connection)


@router.post("/{connection_id}/test", response_model=ConnectionProbeResult)
async def test_connection(connection_id: UUID, db: Session = Depends(get_db)):
    """Check that the connection's target is reachable without writing anything."""
    connection = _get_or_404(db, connection_id)
    return await crm_connection_service.probe_connection(connection)
