"""Screenshot storage for browser-automation jobs.

Files are addressed by job id and stage; the job row only stores the
reference (URL path), never image bytes.
"""

from __future__ import annotations

from pathlib import Path

from crmsync.core.config import settings


class ScreenshotStore:
    """Local directory of job screenshots exposed under a URL prefix."""

    def __init__(self, root: str | Path | None = None, url_prefix: str | None = None):
        self.root = Path(root or settings.CRM_SCREENSHOT_DIR)
        self.url_prefix = (url_prefix or settings.CRM_SCREENSHOT_URL_PREFIX).rstrip("/")

    @staticmethod
    def filename(job_id: object, stage: str) -> str:
        return f"crm_{job_id}_{stage}.png"

    def path_for(self, job_id: object, stage: str) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root / self.filename(job_id, stage)

    def reference_for(self, job_id: object, stage: str) -> str:
        return f"{self.url_prefix}/{self.filename(job_id, stage)}"
