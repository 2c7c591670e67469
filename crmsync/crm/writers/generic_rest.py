"""Generic REST writer: one JSON request with configurable method and headers."""

from __future__ import annotations

import json
import logging

import httpx

from crmsync.core.config import settings
from crmsync.core.structured_logging import build_log_context
from crmsync.crm.errors import NoFieldsToWriteError, RemoteWriteError
from crmsync.crm.payload import build_record_body, resolve_fields
from crmsync.crm.writers.base import JobContext, WriteResult, truncate_body
from crmsync.db.enums import CrmBackendType
from crmsync.schemas.crm_connection import GenericRestConfig
from crmsync.schemas.crm_mapping import MappingRule

logger = logging.getLogger(__name__)


def build_headers(config: GenericRestConfig) -> dict[str, str]:
    """Content type, optional auth header, then any additional headers."""
    headers = {"Content-Type": "application/json"}
    if config.api_key:
        headers[config.auth_header] = config.api_key

    extra = config.additional_headers
    if isinstance(extra, str) and extra.strip():
        try:
            extra = json.loads(extra)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed additional_headers (not valid JSON)")
            extra = None
    if isinstance(extra, dict):
        headers.update({str(k): str(v) for k, v in extra.items()})
    elif extra:
        logger.warning("Ignoring additional_headers: expected a JSON object")
    return headers


def _describe_response(response: httpx.Response) -> str:
    try:
        detail = json.dumps(response.json(), ensure_ascii=False)
    except ValueError:
        detail = response.text
    return truncate_body(detail)


class GenericRestWriter:
    backend_type = CrmBackendType.GENERIC_REST

    def __init__(self, config: GenericRestConfig, *, timeout: float | None = None):
        self.config = config
        self.timeout = timeout or settings.CRM_HTTP_TIMEOUT_SECONDS

    async def write(self, job: JobContext, rules: list[MappingRule]) -> WriteResult:
        fields = resolve_fields(job.submission_data, rules)
        if not fields:
            raise NoFieldsToWriteError("the API endpoint")

        payload = build_record_body(fields)
        headers = build_headers(self.config)
        logger.info(
            "Generic API %s %s with %s field(s)",
            self.config.method,
            self.config.url,
            len(payload),
            extra=build_log_context(job_id=job.job_id, backend=self.backend_type.value),
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    self.config.method, self.config.url, json=payload, headers=headers
                )
        except httpx.HTTPError as exc:
            raise RemoteWriteError(f"API request failed (HTTP N/A): {exc}") from exc

        if not response.is_success:
            raise RemoteWriteError(
                f"API request failed (HTTP {response.status_code}): {_describe_response(response)}",
                status_code=response.status_code,
            )

        logger.info("Generic API responded %s for job %s", response.status_code, job.job_id)
        return WriteResult(response_status=response.status_code, filled_count=len(payload))
