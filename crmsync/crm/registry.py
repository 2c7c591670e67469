"""Backend writer registry."""

from __future__ import annotations

from typing import Callable, Mapping

from crmsync.crm.errors import UnsupportedBackendError
from crmsync.crm.writers.base import BackendWriter, JobContext
from crmsync.crm.writers.browser import BrowserAutomationWriter
from crmsync.crm.writers.generic_rest import GenericRestWriter
from crmsync.crm.writers.oauth_rest import OAuthRestWriter
from crmsync.db.enums import CrmBackendType
from crmsync.schemas.crm_connection import BackendConfig, parse_backend_config

WriterFactory = Callable[[BackendConfig], BackendWriter]

WRITERS: Mapping[CrmBackendType, WriterFactory] = {
    CrmBackendType.BROWSER_AUTOMATION: BrowserAutomationWriter,
    CrmBackendType.OAUTH_REST: OAuthRestWriter,
    CrmBackendType.GENERIC_REST: GenericRestWriter,
}


def parse_backend_type(value: str | None) -> CrmBackendType:
    try:
        return CrmBackendType(value)
    except ValueError:
        raise UnsupportedBackendError(f"Unsupported CRM backend type: {value!r}")


def resolve_writer(job: JobContext) -> BackendWriter:
    """Pick and configure the writer for a job's connection."""
    backend_type = parse_backend_type(job.backend_type)
    factory = WRITERS.get(backend_type)
    if not factory:
        raise UnsupportedBackendError(f"No writer registered for {backend_type.value}")
    config = parse_backend_config(backend_type, job.target_url, job.config)
    return factory(config)
