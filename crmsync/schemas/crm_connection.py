"""Pydantic schemas for CRM connections and their typed backend configs."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, field_validator

from crmsync.crm.errors import ConfigurationError
from crmsync.db.enums import CrmBackendType

Stripped = Annotated[str, StringConstraints(strip_whitespace=True)]
Required = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# =============================================================================
# Typed backend configs (validated when a job is dispatched)
# =============================================================================


class BrowserAutomationConfig(BaseModel):
    """Login and form selectors for the headless-browser writer."""

    model_config = ConfigDict(extra="ignore")

    login_url: Required
    login_username: str = ""
    login_password: str = ""
    login_selector: Stripped = ""
    password_selector: Stripped = ""
    login_submit_selector: Stripped = ""
    data_entry_url: Stripped = ""
    form_submit_selector: Stripped = ""  # Empty means fill only, never submit


class OAuthRestConfig(BaseModel):
    """Password-grant OAuth credentials plus the record type to create."""

    model_config = ConfigDict(extra="ignore")

    instance_url: Required
    client_id: Required
    client_secret: Required
    username: Required
    password: Required
    security_token: str = ""
    api_version: Required = "v58.0"
    object_type: Required = "Lead"

    @field_validator("instance_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class GenericRestConfig(BaseModel):
    """A single JSON request against an arbitrary endpoint."""

    model_config = ConfigDict(extra="ignore")

    url: Required
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    api_key: str = ""
    auth_header: Required = "Authorization"
    additional_headers: str | dict = ""  # JSON object; malformed input is ignored at send time

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "POST"
        return value


BackendConfig = Union[BrowserAutomationConfig, OAuthRestConfig, GenericRestConfig]

CONFIG_MODELS: dict[CrmBackendType, type[BaseModel]] = {
    CrmBackendType.BROWSER_AUTOMATION: BrowserAutomationConfig,
    CrmBackendType.OAUTH_REST: OAuthRestConfig,
    CrmBackendType.GENERIC_REST: GenericRestConfig,
}


def _with_target_url(
    backend_type: CrmBackendType, target_url: str | None, config: dict
) -> dict:
    values = dict(config or {})
    if backend_type == CrmBackendType.BROWSER_AUTOMATION:
        values["login_url"] = target_url or ""
    elif backend_type == CrmBackendType.GENERIC_REST:
        values["url"] = target_url or ""
    elif backend_type == CrmBackendType.OAUTH_REST:
        values.setdefault("instance_url", target_url or "")
    return values


def parse_backend_config(
    backend_type: CrmBackendType, target_url: str | None, config: dict
) -> BackendConfig:
    """
    Validate a connection's raw config for its backend.

    Raises ConfigurationError naming the missing/invalid fields, so writers
    never start a partial write with incomplete settings.
    """
    model = CONFIG_MODELS[backend_type]
    try:
        return model.model_validate(_with_target_url(backend_type, target_url, config))
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ConfigurationError(
            f"{backend_type.value} connection is missing or has invalid settings: "
            f"{', '.join(fields)}"
        ) from exc


# =============================================================================
# API schemas
# =============================================================================


class CrmConnectionCreate(BaseModel):
    display_name: Required
    backend_type: CrmBackendType = CrmBackendType.BROWSER_AUTOMATION
    target_url: str | None = None
    config: dict = Field(default_factory=dict)
    is_active: bool = True


class CrmConnectionUpdate(BaseModel):
    display_name: str | None = None
    backend_type: CrmBackendType | None = None
    target_url: str | None = None
    config: dict | None = None
    is_active: bool | None = None


class CrmConnectionRead(BaseModel):
    """Connection response schema. Secret config values are masked."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    display_name: str
    backend_type: str
    target_url: str | None
    config: dict
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ConnectionProbeResult(BaseModel):
    ok: bool
    detail: str | None = None
    page_title: str | None = None


class SelectorInspectRequest(BaseModel):
    url: str = Field(..., min_length=1)
    selector: str = Field(..., min_length=1)


class SelectorElementInfo(BaseModel):
    tag_name: str
    type: str = ""
    name: str = ""
    id: str = ""
    placeholder: str = ""
    text: str = ""


class SelectorInspectResult(BaseModel):
    """Matches for a CSS selector on a live page, with a highlighted screenshot."""

    count: int = 0
    first_element: SelectorElementInfo | None = None
    final_url: str | None = None
    screenshot: str | None = None  # base64 JPEG
    error: str | None = None
