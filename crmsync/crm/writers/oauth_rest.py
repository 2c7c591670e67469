"""OAuth REST writer.

Uses the OAuth 2.0 username-password flow to obtain a bearer token, then
creates one record of the configured object type (Salesforce-style
`/services/data/<version>/sobjects/<type>/` endpoint).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from crmsync.core.config import settings
from crmsync.core.structured_logging import build_log_context
from crmsync.crm.errors import AuthenticationError, NoFieldsToWriteError, RemoteWriteError
from crmsync.crm.payload import build_record_body, resolve_fields
from crmsync.crm.writers.base import JobContext, WriteResult, truncate_body
from crmsync.db.enums import CrmBackendType
from crmsync.schemas.crm_connection import OAuthRestConfig
from crmsync.schemas.crm_mapping import MappingRule

logger = logging.getLogger(__name__)

TOKEN_PATH = "/services/oauth2/token"


@dataclass(frozen=True)
class AccessToken:
    access_token: str
    instance_url: str


def _error_description(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {truncate_body(response.text)}"
    if isinstance(data, dict):
        return str(
            data.get("error_description")
            or data.get("error")
            or f"HTTP {response.status_code}"
        )
    return f"HTTP {response.status_code}: {truncate_body(str(data))}"


def _create_error_detail(response: httpx.Response) -> str:
    """Render `[{errorCode, message}, ...]` bodies as 'code: message; ...'."""
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {truncate_body(response.text)}"
    if isinstance(data, list) and data:
        parts = []
        for item in data:
            if isinstance(item, dict):
                parts.append(f"{item.get('errorCode', 'ERROR')}: {item.get('message', '')}")
            else:
                parts.append(str(item))
        return "; ".join(parts)
    return f"HTTP {response.status_code}: {truncate_body(str(data))}"


class OAuthRestWriter:
    backend_type = CrmBackendType.OAUTH_REST

    def __init__(self, config: OAuthRestConfig, *, timeout: float | None = None):
        self.config = config
        self.timeout = timeout or settings.CRM_HTTP_TIMEOUT_SECONDS

    @property
    def token_url(self) -> str:
        return f"{self.config.instance_url}{TOKEN_PATH}"

    async def authenticate(self, client: httpx.AsyncClient) -> AccessToken:
        """Exchange connection credentials for a bearer token."""
        form = {
            "grant_type": "password",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "username": self.config.username,
            # Password and security token are sent concatenated
            "password": f"{self.config.password}{self.config.security_token}",
        }
        try:
            response = await client.post(self.token_url, data=form)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"OAuth authentication failed: {exc}") from exc

        if not response.is_success:
            raise AuthenticationError(
                f"OAuth authentication failed: {_error_description(response)}"
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise AuthenticationError("OAuth authentication failed: no access_token in response")
        instance_url = (data.get("instance_url") or self.config.instance_url).rstrip("/")
        return AccessToken(access_token=access_token, instance_url=instance_url)

    def record_url(self, instance_url: str) -> str:
        return (
            f"{instance_url}/services/data/{self.config.api_version}"
            f"/sobjects/{self.config.object_type}/"
        )

    async def write(self, job: JobContext, rules: list[MappingRule]) -> WriteResult:
        fields = resolve_fields(job.submission_data, rules)
        if not fields:
            raise NoFieldsToWriteError(self.config.object_type)
        record = build_record_body(fields)

        log_context = build_log_context(job_id=job.job_id, backend=self.backend_type.value)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            token = await self.authenticate(client)
            logger.info(
                "Creating %s with %s field(s) on %s",
                self.config.object_type,
                len(record),
                token.instance_url,
                extra=log_context,
            )
            try:
                response = await client.post(
                    self.record_url(token.instance_url),
                    json=record,
                    headers={"Authorization": f"Bearer {token.access_token}"},
                )
            except httpx.HTTPError as exc:
                raise RemoteWriteError(f"Create {self.config.object_type} failed: {exc}") from exc

        if not response.is_success:
            raise RemoteWriteError(
                f"Create {self.config.object_type} failed: {_create_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        record_id = body.get("id") if isinstance(body, dict) else None
        logger.info("Created %s %s", self.config.object_type, record_id, extra=log_context)
        return WriteResult(
            record_id=str(record_id) if record_id else None,
            response_status=response.status_code,
            filled_count=len(record),
        )
