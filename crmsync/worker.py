"""
Background worker for CRM write jobs.

Usage:
    python -m crmsync.worker

The worker polls for pending CRM write jobs and runs at most
CRM_MAX_CONCURRENT of them at a time. For production, run this as a
separate process (e.g., systemd service, Docker container).
"""

import asyncio
import logging
import signal

from crmsync.core.config import settings
from crmsync.core.structured_logging import configure_logging
from crmsync.crm.queue import JobQueue

logger = logging.getLogger(__name__)


async def worker_loop(queue: JobQueue | None = None) -> None:
    """Run the job queue until SIGINT/SIGTERM, then shut down gracefully."""
    queue = queue or JobQueue()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    logger.info(
        "Worker starting (poll interval: %ss, max concurrent: %s)",
        queue.poll_interval,
        queue.max_concurrent,
    )
    await queue.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Worker shutting down")
        await queue.stop()


def main() -> None:
    """Entry point for the worker."""
    configure_logging(settings.LOG_LEVEL)
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed")
        raise


if __name__ == "__main__":
    main()
