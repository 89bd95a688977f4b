"""In-memory job manager with bounded concurrency and TTL expiry.

``enqueue`` records a ``queued`` job and schedules it on the running event
loop. An ``asyncio.Semaphore`` admits at most ``concurrency`` jobs at a
time; later jobs wait in arrival order. Terminal jobs older than the TTL
are promoted to ``expired`` by a periodic sweep and, lazily, on read.

Usage::

    manager = JobManager(executor, concurrency=3, ttl_sec=3600)
    manager.start()
    job_id = manager.enqueue(request)
    record = manager.get_by_id(job_id)
    await manager.shutdown()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from opconsole.models.job import (
    ExecutionFailure,
    ExecutionResult,
    ExecutionSuccess,
    JobRecord,
    JobRequest,
    JobStatus,
    can_transition,
)
from opconsole.models.steps import utcnow

logger = logging.getLogger(__name__)

Executor = Callable[[JobRequest], Awaitable[ExecutionResult]]


@runtime_checkable
class JobQueue(Protocol):
    """What the HTTP boundary needs from a job manager."""

    def enqueue(self, request: JobRequest) -> str:
        """Schedule *request* and return its id."""
        ...

    def get_by_id(self, job_id: str) -> JobRecord | None:
        """Return a copy of the job record, or ``None``."""
        ...


class JobManager:
    """Schedule jobs on the event loop and track their records.

    Args:
        executor: Coroutine function running one job and returning its outcome.
        concurrency: Maximum number of jobs running at once.
        ttl_sec: Age in seconds after which a terminal job becomes ``expired``.
        sweep_interval_sec: Period of the background expiry sweep.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        executor: Executor,
        *,
        concurrency: int = 3,
        ttl_sec: float = 3_600,
        sweep_interval_sec: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._executor = executor
        self.concurrency = concurrency
        self.ttl = timedelta(seconds=ttl_sec)
        self.sweep_interval_sec = sweep_interval_sec
        self._clock = clock
        self._slots = asyncio.Semaphore(concurrency)
        self._records: dict[str, JobRecord] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._sweeper: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, request: JobRequest) -> str:
        """Record *request* as ``queued`` and schedule it.

        Never raises: if the job cannot be scheduled it is recorded as
        ``failed`` with the reason.
        """
        record = JobRecord(id=request.id, kind=request.kind, created_at=request.created_at)
        self._records[request.id] = record

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            logger.error("Could not schedule job %s: %s", request.id, exc)
            self._complete(request.id, ExecutionFailure(reason=f"Could not schedule job: {exc}"))
            return request.id

        task = loop.create_task(self._run(request), name=f"job-{request.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Job queued (job_id=%s, kind=%s)", request.id, request.kind.value)
        return request.id

    def get_by_id(self, job_id: str) -> JobRecord | None:
        """Return a deep copy of the record for *job_id*, expiring it first if due."""
        record = self._records.get(job_id)
        if record is None:
            return None
        self._expire_if_due(record)
        return self._records[job_id].model_copy(deep=True)

    def sweep(self) -> int:
        """Expire every terminal job older than the TTL; return how many changed."""
        return sum(1 for record in list(self._records.values()) if self._expire_if_due(record))

    def counts(self) -> dict[str, int]:
        """Return the number of jobs in each status."""
        tally = Counter(record.status.value for record in self._records.values())
        return {status.value: tally.get(status.value, 0) for status in JobStatus}

    def start(self) -> None:
        """Start the periodic expiry sweep. Requires a running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop(), name="job-sweeper")

    async def shutdown(self) -> None:
        """Stop the sweep. In-flight jobs keep running."""
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper

    async def drain(self) -> None:
        """Wait for every scheduled job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run(self, request: JobRequest) -> None:
        async with self._slots:
            self._transition(request.id, JobStatus.RUNNING, started_at=self._clock())
            logger.info("Job started (job_id=%s, kind=%s)", request.id, request.kind.value)
            try:
                outcome = await self._executor(request)
            except Exception as exc:
                logger.exception("Job %s raised an unexpected error", request.id)
                outcome = ExecutionFailure(reason=str(exc) or exc.__class__.__name__)
            self._complete(request.id, outcome)

    def _complete(self, job_id: str, outcome: ExecutionResult) -> None:
        finished_at = self._clock()
        if isinstance(outcome, ExecutionSuccess):
            self._transition(
                job_id,
                JobStatus.SUCCEEDED,
                finished_at=finished_at,
                artifact_refs=list(outcome.artifact_refs),
                step_history=[step.model_copy() for step in outcome.steps],
                result=dict(outcome.result) if outcome.result is not None else None,
            )
            logger.info("Job succeeded (job_id=%s)", job_id)
            return

        self._transition(
            job_id,
            JobStatus.FAILED,
            finished_at=finished_at,
            error=outcome.reason,
            artifact_refs=list(outcome.partial_artifacts),
            step_history=[step.model_copy() for step in outcome.partial_steps],
            result=None,
        )
        logger.warning("Job failed (job_id=%s): %s", job_id, outcome.reason)

    def _transition(self, job_id: str, status: JobStatus, **changes: object) -> None:
        record = self._records[job_id]
        if not can_transition(record.status, status):
            logger.error("Ignoring invalid job transition %s -> %s (job_id=%s)", record.status.value, status.value, job_id)
            return
        self._records[job_id] = record.model_copy(update={"status": status, **changes})

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def _expire_if_due(self, record: JobRecord) -> bool:
        if record.status not in (JobStatus.SUCCEEDED, JobStatus.FAILED):
            return False
        reference = record.finished_at or record.started_at or record.created_at
        if self._clock() - reference <= self.ttl:
            return False
        self._transition(record.id, JobStatus.EXPIRED)
        logger.debug("Job expired (job_id=%s)", record.id)
        return True

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_sec)
            expired = self.sweep()
            if expired:
                logger.info("Expired %d job(s)", expired)
