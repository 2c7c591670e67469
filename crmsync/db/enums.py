"""Enum definitions for CRM write jobs and connections."""

from enum import Enum


class CrmJobStatus(str, Enum):
    """
    Lifecycle of a CRM write job.

    pending -> running -> success | pending (requeued) | failed
    pending -> cancelled (manual only)
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def retryable(cls) -> frozenset["CrmJobStatus"]:
        """States a user may manually send back to the queue."""
        return frozenset({cls.FAILED, cls.CANCELLED})


class CrmBackendType(str, Enum):
    """Kinds of external CRM targets a connection can point at."""

    BROWSER_AUTOMATION = "browser_automation"  # Headless browser login/fill/submit
    OAUTH_REST = "oauth_rest"  # Password-grant token + create-record call
    GENERIC_REST = "generic_rest"  # One configurable JSON request


class CrmSyncStatus(str, Enum):
    """External sync state of a form submission."""

    NOT_CONFIGURED = "not_configured"
    QUEUED = "queued"
    SYNCED = "synced"
    ERROR = "error"


DEFAULT_CRM_JOB_STATUS: CrmJobStatus = CrmJobStatus.PENDING
DEFAULT_CRM_SYNC_STATUS: CrmSyncStatus = CrmSyncStatus.NOT_CONFIGURED
