"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from crmsync.core.config import settings
from crmsync.core.structured_logging import configure_logging
from crmsync.crm.queue import JobQueue
from crmsync.routers import crm_connections, crm_jobs, crm_mappings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    queue = None
    if settings.CRM_RUN_WORKER_IN_API:
        configure_logging(settings.LOG_LEVEL)
        queue = JobQueue()
        await queue.start()
    app.state.job_queue = queue
    try:
        yield
    finally:
        if queue:
            await queue.stop()


app = FastAPI(
    title="CRM Sync API",
    description="Asynchronous CRM write jobs for form submissions",
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# ============================================================================
# Routers (all protected by INTERNAL_SECRET)
# ============================================================================

app.include_router(crm_jobs.router, prefix="/crm/jobs", tags=["crm-jobs"])
app.include_router(crm_connections.router, prefix="/crm/connections", tags=["crm-connections"])
app.include_router(crm_mappings.router, prefix="/crm/mappings", tags=["crm-mappings"])


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
