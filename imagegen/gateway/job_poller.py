"""Async Job Poller — create-then-poll support for deferred backends.

Some backends answer a generation call with a job handle instead of a
result. The adapter submits the job, wraps the handle in an AsyncJob and
hands it to the poller, which checks status once per interval until the
job succeeds, fails or runs out of attempts.

The poller runs inside the adapter's call (its own suspension), not inside
the gateway tick, and only ever holds the one job it is tracking.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from imagegen.gateway.errors import JobFailedError, JobTimeoutError
from imagegen.gateway.types import AsyncJob, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_ATTEMPTS = 60

# Vendor status strings → JobStatus
_VENDOR_STATUS: dict[str, JobStatus] = {
    "pending": JobStatus.PENDING,
    "starting": JobStatus.PENDING,
    "queued": JobStatus.PENDING,
    "running": JobStatus.RUNNING,
    "processing": JobStatus.RUNNING,
    "in_progress": JobStatus.RUNNING,
    "succeeded": JobStatus.SUCCEEDED,
    "success": JobStatus.SUCCEEDED,
    "completed": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "error": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
}


def map_vendor_status(raw: str) -> JobStatus:
    """Translate a vendor status string. Unknown strings count as still running."""
    status = _VENDOR_STATUS.get((raw or "").strip().lower())
    if status is None:
        logger.debug("Unknown job status %r, treating as running", raw)
        return JobStatus.RUNNING
    return status


@dataclass
class JobUpdate:
    """One status observation returned by a fetch_status callback."""

    status: JobStatus
    payload: dict[str, Any] = field(default_factory=dict)
    error: str = ""


class AsyncJobPoller:
    """Poll one job until it reaches a terminal state.

    Usage:
        poller = AsyncJobPoller(fetch_status, interval=1.0, max_attempts=60)
        payload = await poller.poll(AsyncJob(job_id="abc", backend=Backend.REPLICATE))

    Worst case the poll ends after max_attempts * interval seconds with
    JobTimeoutError.
    """

    def __init__(
        self,
        fetch_status: Callable[[AsyncJob], Awaitable[JobUpdate]],
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.fetch_status = fetch_status
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def poll(self, job: AsyncJob) -> dict[str, Any]:
        """Return the succeeded payload, or raise JobFailedError / JobTimeoutError."""
        while job.attempts < self.max_attempts:
            update = await self.fetch_status(job)
            job.attempts += 1
            if update.status.rank < job.status.rank:
                # Stale report from the vendor; the job never moves backward
                logger.debug("Job %s reported %s after %s, ignoring", job.job_id, update.status.value, job.status.value)
            else:
                job.advance(update.status)

            if job.status == JobStatus.SUCCEEDED:
                logger.debug("Job %s succeeded after %d polls", job.job_id, job.attempts)
                return update.payload

            if job.status == JobStatus.FAILED:
                logger.warning("Job %s on %s failed: %s", job.job_id, job.backend.value, update.error)
                raise JobFailedError(job.job_id, update.error)

            if job.attempts < self.max_attempts:
                await self._sleep(self.interval)

        logger.warning(
            "Job %s on %s timed out after %d polls",
            job.job_id,
            job.backend.value,
            job.attempts,
        )
        raise JobTimeoutError(job.job_id, job.attempts, self.interval)
