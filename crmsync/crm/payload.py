"""Resolve submission values through a field mapping."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from crmsync.schemas.crm_mapping import MappingRule
from crmsync.types import JsonObject, JsonValue

REST_LIST_SEPARATOR = "; "
BROWSER_LIST_SEPARATOR = ", "


@dataclass(frozen=True)
class ResolvedField:
    """A mapping rule paired with the submission value it resolved to."""

    label: str
    target: str
    value: JsonValue


def is_empty(value: JsonValue) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def resolve_fields(
    submission_data: JsonObject | None, rules: Iterable[MappingRule]
) -> list[ResolvedField]:
    """
    Return rules whose target is set and whose submission value is non-empty.

    Order follows the mapping; a rule without a target or a blank value is
    skipped rather than written as an empty string.
    """
    data = submission_data or {}
    resolved: list[ResolvedField] = []
    for rule in rules:
        target = (rule.target_field or "").strip()
        if not target:
            continue
        value = data.get(rule.source_field)
        if is_empty(value):
            continue
        resolved.append(ResolvedField(label=rule.source_field, target=target, value=value))
    return resolved


def build_record_body(fields: Iterable[ResolvedField]) -> JsonObject:
    """Flatten resolved fields into a JSON object; lists are joined with '; '."""
    body: JsonObject = {}
    for field in fields:
        value = field.value
        if isinstance(value, (list, tuple)):
            value = REST_LIST_SEPARATOR.join(str(item) for item in value)
        body[field.target] = value
    return body


def as_fill_text(value: JsonValue) -> str:
    """Text typed into a browser control; lists are joined with ', '."""
    if isinstance(value, (list, tuple)):
        return BROWSER_LIST_SEPARATOR.join(str(item) for item in value)
    return str(value)
