"""
Job polling

Drives one submitted job to a terminal state by repeatedly checking its
status through the provider adapter. Checks for a job are strictly
sequential; cancelling stops local polling and keeps the last status seen.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from genorch.core.config import settings
from genorch.core.exceptions import ProviderError, TransportError
from genorch.models.generation import (
    ErrorKind, GenerationJob, JobError, JobResult, JobStatus, StatusResult
)
from .base_provider import BaseGenerationProvider
from .normalizer import DEFAULT_FAILURE_MESSAGE, classify_failure

logger = logging.getLogger(__name__)

JobCallback = Callable[[GenerationJob], None]

MISSING_ARTIFACT_MESSAGE = "Provider reported completion without a video URL"


class PollState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def apply_status(job: GenerationJob, result: StatusResult) -> bool:
    """Fold one normalized status into the job

    Returns False when the update was ignored because the job is already
    terminal. Progress never moves backwards and a processing job never
    falls back to queued.
    """
    if job.is_terminal:
        logger.debug(f"Ignoring status for terminal job {job.id}: {result.status.value}")
        return False

    if result.progress < job.progress:
        logger.warning(f"Job {job.id} progress went from {job.progress} to {result.progress}, keeping {job.progress}")
    else:
        job.progress = result.progress

    now = time.time()
    job.updated_at = now

    if result.status == JobStatus.ERROR:
        message = result.error_message or DEFAULT_FAILURE_MESSAGE
        kind = ErrorKind.CONTENT_POLICY if not result.is_compliant else classify_failure(message)
        _fail(job, message, kind, result.raw)

    elif result.status == JobStatus.COMPLETED:
        if not result.is_compliant:
            _fail(job, result.violation_reason or "Content policy violation", ErrorKind.CONTENT_POLICY, result.raw)
        elif not result.video_url:
            _fail(job, MISSING_ARTIFACT_MESSAGE, ErrorKind.PROVIDER_FAILURE, result.raw)
        else:
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.completed_at = now
            job.result = JobResult(
                artifact_url=result.video_url,
                watermarked_url=result.video_url_watermarked,
                duration=result.duration,
                quality=result.quality,
                is_compliant=True
            )

    elif not (job.status == JobStatus.PROCESSING and result.status == JobStatus.QUEUED):
        job.status = result.status

    return True


def fail_job(job: GenerationJob, error: Exception):
    """Terminate a job because its status could not be checked"""
    if isinstance(error, TransportError):
        kind = ErrorKind.TRANSPORT
    elif isinstance(error, ProviderError):
        kind = ErrorKind.PROVIDER_REJECTED
    else:
        kind = ErrorKind.PROVIDER_FAILURE
    _fail(job, str(error) or DEFAULT_FAILURE_MESSAGE, kind, getattr(error, "body", None))


def _fail(job: GenerationJob, message: str, kind: ErrorKind, raw=None):
    now = time.time()
    job.status = JobStatus.ERROR
    job.error = JobError(message=message, kind=kind, raw=raw)
    job.updated_at = now
    job.completed_at = now


class JobPoller:
    """Poll loop for a single job"""

    def __init__(
        self,
        provider: BaseGenerationProvider,
        job: GenerationJob,
        api_key: str,
        interval: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        max_interval: Optional[float] = None,
        on_progress: Optional[JobCallback] = None
    ):
        self.provider = provider
        self.job = job
        self.api_key = api_key
        self.interval = settings.POLL_INTERVAL if interval is None else interval
        self.backoff_factor = backoff_factor or settings.POLL_BACKOFF_FACTOR
        self.max_interval = max_interval or settings.POLL_MAX_INTERVAL
        self.on_progress = on_progress

        self.state = PollState.SUBMITTED
        self.checks = 0
        self._cancel_event = asyncio.Event()
        self._lock = asyncio.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self):
        """Stop polling; the job keeps its last-known status"""
        if self.job.is_terminal:
            return
        self._cancel_event.set()
        logger.info(f"Polling cancelled for job {self.job.id} at {self.job.status.value} {self.job.progress}%")

    async def check_once(self) -> GenerationJob:
        """One status check, never concurrent with another for the same job"""
        async with self._lock:
            if self.job.is_terminal or self.cancelled:
                return self.job

            self.checks += 1
            try:
                result = await self.provider.check_status(self.job.id, self.api_key)
            except Exception as e:
                logger.error(f"Status check failed for job {self.job.id} on {self.provider.name.value}: {e}")
                if not self.cancelled:
                    fail_job(self.job, e)
                    self._notify()
                return self.job

            # a cancel that landed mid-request keeps the last-known status
            if self.cancelled:
                return self.job

            if apply_status(self.job, result):
                self._notify()

            return self.job

    async def run(self) -> GenerationJob:
        """Poll until the job is terminal or polling is cancelled"""
        self.state = PollState.POLLING
        interval = self.interval

        while not self.job.is_terminal:
            await self._wait(interval)
            if self.cancelled:
                self.state = PollState.CANCELLED
                return self.job

            await self.check_once()
            interval = min(interval * self.backoff_factor, self.max_interval)

        if self.job.status == JobStatus.COMPLETED:
            self.state = PollState.COMPLETED
            logger.info(f"Job {self.job.id} completed after {self.checks} checks: {self.job.result.artifact_url}")
        else:
            self.state = PollState.FAILED
            logger.info(f"Job {self.job.id} failed ({self.job.error.kind.value}): {self.job.error.message}")

        return self.job

    async def _wait(self, interval: float):
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=max(interval, 0))
        except asyncio.TimeoutError:
            pass

    def _notify(self):
        if not self.on_progress:
            return
        try:
            self.on_progress(self.job)
        except Exception:
            logger.exception(f"Progress callback failed for job {self.job.id}")
