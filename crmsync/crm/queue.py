"""In-process poller that claims pending CRM jobs with bounded concurrency.

The database is the queue. Each poll claims at most `max_concurrent` minus
the number of in-flight jobs, so this process never runs more than
`max_concurrent` writes at once. `enqueue` only wakes the poller early.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from crmsync.core.config import settings
from crmsync.crm.dispatcher import process_job
from crmsync.db.session import SessionLocal
from crmsync.services import crm_job_service

logger = logging.getLogger(__name__)

Dispatch = Callable[[UUID], Awaitable[Any]]


class JobQueue:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] = SessionLocal,
        dispatch: Dispatch | None = None,
        poll_interval: float | None = None,
        max_concurrent: int | None = None,
        shutdown_grace: float | None = None,
    ):
        self.session_factory = session_factory
        self.dispatch = dispatch or partial(process_job, session_factory=session_factory)
        self.poll_interval = poll_interval or settings.CRM_POLL_INTERVAL_SECONDS
        self.max_concurrent = max_concurrent or settings.CRM_MAX_CONCURRENT
        self.shutdown_grace = (
            shutdown_grace if shutdown_grace is not None else settings.CRM_SHUTDOWN_GRACE_SECONDS
        )

        self._active: set[UUID] = set()
        self._tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_task: asyncio.Task | None = None
        self._wake: asyncio.Event | None = None
        self._stopping = False

    @property
    def active_job_ids(self) -> frozenset[UUID]:
        return frozenset(self._active)

    @property
    def free_slots(self) -> int:
        return max(self.max_concurrent - len(self._active), 0)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        """Start polling; the first poll happens immediately. Calling twice is a no-op."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._stopping = False
        self._loop_task = asyncio.create_task(self._run(), name="crm-job-poller")
        logger.info(
            "CRM job queue started (interval=%ss, max_concurrent=%s)",
            self.poll_interval,
            self.max_concurrent,
        )

    async def stop(self) -> None:
        """
        Stop polling and wait up to the grace period for in-flight jobs.

        Jobs still running after the grace period are cancelled; their rows
        stay `running`. Calling stop more than once is a no-op.
        """
        if self._loop_task is None:
            return
        self._stopping = True
        loop_task, self._loop_task = self._loop_task, None
        loop_task.cancel()
        try:
            await loop_task
        except asyncio.CancelledError:
            pass

        if self._tasks:
            logger.info("Waiting for %s in-flight CRM job(s)", len(self._tasks))
            _, pending = await asyncio.wait(set(self._tasks), timeout=self.shutdown_grace)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning(
                    "Cancelled %s CRM job(s) still running after %ss",
                    len(pending),
                    self.shutdown_grace,
                )
        logger.info("CRM job queue stopped")

    def enqueue(self, job_id: UUID) -> None:
        """Wake the poller for a newly created or requeued job. Safe from any thread."""
        logger.info("CRM job %s enqueued", job_id)
        if self._loop is None or self._wake is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._wake.set)

    async def _run(self) -> None:
        while not self._stopping:
            try:
                await self.poll()
            except Exception:
                logger.exception("Error in CRM job poller")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    async def poll(self) -> list[UUID]:
        """Claim up to the free slot count and start a task per claimed job."""
        slots = self.free_slots
        if slots <= 0:
            return []

        try:
            with self.session_factory() as db:
                job_ids = crm_job_service.claim_pending_jobs(db, slots)
        except SQLAlchemyError as exc:
            logger.error("Failed to claim CRM jobs: %s", type(exc).__name__)
            return []

        if job_ids:
            logger.info("Claimed %s CRM job(s)", len(job_ids))
        for job_id in job_ids:
            self._active.add(job_id)
            task = asyncio.create_task(self._run_job(job_id), name=f"crm-job-{job_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return job_ids

    async def _run_job(self, job_id: UUID) -> None:
        try:
            await self.dispatch(job_id)
        except Exception:
            logger.exception("Unhandled error while processing CRM job %s", job_id)
        finally:
            self._active.discard(job_id)

    async def drain(self) -> None:
        """Wait for every in-flight job task to finish."""
        while self._tasks:
            await asyncio.gather(*set(self._tasks), return_exceptions=True)
