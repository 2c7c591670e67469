"""CRM field mapping service - one rule set per (form, connection)."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crmsync.db.models import CrmFieldMapping
from crmsync.schemas.crm_mapping import CrmFieldMappingUpsert, MappingRule
from crmsync.services.crm_connection_service import get_connection

logger = logging.getLogger(__name__)


class CrmMappingNotFoundError(Exception):
    """Field mapping not found."""

    pass


def parse_rules(raw_rules: list | None) -> list[MappingRule]:
    """Validate stored rules, skipping entries that are not objects."""
    rules: list[MappingRule] = []
    for raw in raw_rules or []:
        if isinstance(raw, dict) and raw.get("source_field"):
            rules.append(MappingRule.model_validate(raw))
    return rules


def list_mappings_for_form(db: Session, form_id: UUID) -> list[CrmFieldMapping]:
    return list(
        db.execute(
            select(CrmFieldMapping)
            .where(CrmFieldMapping.form_id == form_id)
            .order_by(CrmFieldMapping.created_at)
        )
        .scalars()
        .all()
    )


def get_active_rules(db: Session, form_id: UUID, connection_id: UUID) -> list[MappingRule]:
    """Rules of the active mapping for (form, connection); empty when none exists."""
    mapping = db.execute(
        select(CrmFieldMapping).where(
            CrmFieldMapping.form_id == form_id,
            CrmFieldMapping.connection_id == connection_id,
            CrmFieldMapping.is_active.is_(True),
        )
    ).scalar_one_or_none()
    return parse_rules(mapping.rules) if mapping else []


def upsert_mapping(db: Session, data: CrmFieldMappingUpsert) -> CrmFieldMapping:
    """Create or replace the mapping for (form, connection)."""
    get_connection(db, data.connection_id)
    rules = [rule.model_dump() for rule in data.rules]

    mapping = db.execute(
        select(CrmFieldMapping).where(
            CrmFieldMapping.form_id == data.form_id,
            CrmFieldMapping.connection_id == data.connection_id,
        )
    ).scalar_one_or_none()
    if mapping:
        mapping.rules = rules
        mapping.is_active = data.is_active
    else:
        mapping = CrmFieldMapping(
            form_id=data.form_id,
            connection_id=data.connection_id,
            rules=rules,
            is_active=data.is_active,
        )
        db.add(mapping)
    db.commit()
    db.refresh(mapping)
    logger.info(
        "Saved mapping %s (form=%s connection=%s, %s rule(s))",
        mapping.id,
        mapping.form_id,
        mapping.connection_id,
        len(rules),
    )
    return mapping


def delete_mapping(db: Session, mapping_id: UUID) -> None:
    mapping = db.get(CrmFieldMapping, mapping_id)
    if not mapping:
        raise CrmMappingNotFoundError(f"Mapping {mapping_id} not found")
    db.delete(mapping)
    db.commit()
