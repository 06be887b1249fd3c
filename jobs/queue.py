"""
In-process job queue.

An asyncio.Queue drained by a fixed pool of workers. Each attempt runs
under a timeout. Failures whose error is retryable are re-enqueued after
an exponential backoff (5 s, 10 s, 20 s by default); everything else
fails the job immediately.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from chainworker.config import JobsConfig
from chainworker.exceptions import ChainWorkerError, ErrorSeverity
from chainworker.services.submission_pipeline import InferenceJob, JobOutcome

JobHandler = Callable[[InferenceJob], Awaitable[JobOutcome]]


@dataclass(frozen=True)
class JobResult:
    """Final state of a job after its last attempt."""
    job_id: str
    model_id: str
    topic_id: int
    attempts: int
    outcome: JobOutcome | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class JobQueue:
    """
    Bounded worker pool with retry policy.

    Usage:
        queue = JobQueue(pipeline.run, config.jobs)
        await queue.start()
        await queue.enqueue(job)
        await queue.join()
        await queue.stop()
    """

    def __init__(
        self,
        handler: JobHandler,
        config: JobsConfig | None = None,
        history_size: int = 1000,
    ):
        """
        Initialize the queue.

        Args:
            handler: Coroutine processing one job attempt
            config: Concurrency, attempts, backoff and timeout
            history_size: Number of final results kept in ``results``
        """
        self.handler = handler
        self.config = config or JobsConfig()
        self.results: deque[JobResult] = deque(maxlen=history_size)
        self.stats = {"completed": 0, "skipped": 0, "failed": 0, "retried": 0}

        self._queue: asyncio.Queue[InferenceJob] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._timers: set[asyncio.Task] = set()
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker pool."""
        if self._running:
            logger.warning("Job queue already running")
            return

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"job-worker-{index}")
            for index in range(self.config.concurrency)
        ]
        logger.info(f"Job queue started with {self.config.concurrency} workers")

    async def stop(self) -> None:
        """Cancel workers and pending retries. Queued jobs are dropped."""
        if not self._running:
            return

        self._running = False
        for task in [*self._workers, *self._timers]:
            task.cancel()
        await asyncio.gather(*self._workers, *self._timers, return_exceptions=True)
        self._workers.clear()
        self._timers.clear()

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        self._in_flight = 0
        self._idle.set()

        logger.info(f"Job queue stopped ({dropped} queued jobs dropped)")

    async def enqueue(self, job: InferenceJob) -> None:
        self._in_flight += 1
        self._idle.clear()
        await self._queue.put(job)
        logger.debug("Enqueued job", job_id=job.job_id, model_id=job.model_id)

    async def enqueue_many(self, jobs: list[InferenceJob]) -> None:
        for job in jobs:
            await self.enqueue(job)

    async def join(self) -> None:
        """Wait until every enqueued job reached a final result."""
        await self._idle.wait()

    def pending(self) -> int:
        return self._in_flight

    # =========================================================================
    # Workers
    # =========================================================================

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run_attempt(job)
            finally:
                self._queue.task_done()

    async def _run_attempt(self, job: InferenceJob) -> None:
        try:
            outcome = await asyncio.wait_for(self.handler(job), timeout=self.config.job_timeout_seconds)
        except asyncio.TimeoutError as e:
            self._after_failure(job, e, retryable=True)
            return
        except ChainWorkerError as e:
            if e.severity is ErrorSeverity.DEFERRAL:
                self._finish(job, JobOutcome.skipped(str(e) or type(e).__name__), None)
                return
            self._after_failure(job, e, retryable=e.retryable)
            return
        except Exception as e:
            self._after_failure(job, e, retryable=False)
            return

        self._finish(job, outcome, None)

    def _after_failure(self, job: InferenceJob, error: BaseException, retryable: bool) -> None:
        if retryable and job.attempt < self.config.attempts:
            delay = self.config.backoff_seconds * (2 ** (job.attempt - 1))
            job.attempt += 1
            self.stats["retried"] += 1
            logger.warning(
                f"Job attempt failed, retrying in {delay:.0f}s",
                job_id=job.job_id,
                next_attempt=job.attempt,
                error=str(error) or type(error).__name__,
            )
            timer = asyncio.create_task(self._requeue_after(job, delay))
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)
            return

        self._finish(job, None, error)

    async def _requeue_after(self, job: InferenceJob, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._queue.put(job)

    def _finish(self, job: InferenceJob, outcome: JobOutcome | None, error: BaseException | None) -> None:
        result = JobResult(
            job_id=job.job_id,
            model_id=job.model_id,
            topic_id=job.topic_id,
            attempts=job.attempt,
            outcome=outcome,
            error=error,
        )
        self.results.append(result)

        if error is not None:
            self.stats["failed"] += 1
            logger.error(
                "Job failed",
                job_id=job.job_id,
                model_id=job.model_id,
                attempts=job.attempt,
                error=str(error) or type(error).__name__,
            )
        elif outcome is not None and outcome.is_skip:
            self.stats["skipped"] += 1
            logger.info("Job skipped", job_id=job.job_id, reason=outcome.reason)
        else:
            self.stats["completed"] += 1
            logger.info(
                "Job completed",
                job_id=job.job_id,
                tx_hash=outcome.tx_hash if outcome else None,
            )

        self._in_flight -= 1
        if self._in_flight <= 0:
            self._in_flight = 0
            self._idle.set()


__all__ = ["JobHandler", "JobResult", "JobQueue"]
