"""
Schedulers.

InferenceScheduler keeps one recurring loop per topic that has active
models. Loops are synchronised with the database every
``sync_interval_seconds``; each loop fires once per topic epoch and
enqueues one InferenceJob per active model.

PerformanceScheduler samples every active model's EMA score every
``performance_interval_seconds``.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import asyncio

from loguru import logger

from chainworker.blockchain.chain_port import ChainPort
from chainworker.config import JobsConfig
from chainworker.services.performance_service import PerformanceService
from chainworker.services.submission_pipeline import InferenceJob
from chainworker.storage.records import ModelRepository

from .queue import JobQueue

MIN_TOPIC_INTERVAL_SECONDS = 60


def topic_interval_seconds(epoch_length: int, average_block_time_seconds: float) -> int:
    """
    Loop cadence for a topic: one epoch, rounded to whole minutes, at least one minute.

    Example:
        epoch_length=120, average_block_time_seconds=5 -> 600
    """
    minutes = round(epoch_length * average_block_time_seconds / 60)
    return max(MIN_TOPIC_INTERVAL_SECONDS, minutes * 60)


class InferenceScheduler:
    """Keeps per-topic inference loops in sync with active models."""

    def __init__(
        self,
        chain: ChainPort,
        repository: ModelRepository,
        queue: JobQueue,
        config: JobsConfig | None = None,
        average_block_time_seconds: float = 5.0,
    ):
        self.chain = chain
        self.repository = repository
        self.queue = queue
        self.config = config or JobsConfig()
        self.average_block_time_seconds = average_block_time_seconds

        self.topic_tasks: dict[int, asyncio.Task] = {}
        self.topic_intervals: dict[int, int] = {}
        self._sync_task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            logger.warning("Inference scheduler already running")
            return

        logger.info("Starting inference scheduler")
        self._running = True
        self._sync_task = asyncio.create_task(self._sync_loop())

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        tasks = list(self.topic_tasks.values())
        if self._sync_task:
            tasks.append(self._sync_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self.topic_tasks.clear()
        self.topic_intervals.clear()
        self._sync_task = None
        logger.info("Inference scheduler stopped")

    async def _sync_loop(self) -> None:
        while self._running:
            await self.synchronize()
            await asyncio.sleep(self.config.sync_interval_seconds)

    async def synchronize(self) -> None:
        """Start loops for new active topics and cancel loops for inactive ones."""
        logger.info("Synchronizing inference loops with active topics")
        try:
            active_topic_ids = set(await self.repository.list_active_topic_ids())
        except Exception as e:
            logger.error(f"Failed to synchronize scheduler loops: {e}")
            return

        for topic_id in list(self.topic_tasks):
            if topic_id not in active_topic_ids:
                logger.info(f"Topic {topic_id} has no active models, unscheduling")
                self.topic_tasks.pop(topic_id).cancel()
                self.topic_intervals.pop(topic_id, None)

        for topic_id in sorted(active_topic_ids - set(self.topic_tasks)):
            await self._schedule_topic(topic_id)

        logger.info(f"Synchronization complete: {len(self.topic_tasks)} topic loop(s)")

    async def _schedule_topic(self, topic_id: int) -> None:
        topic = await self.chain.get_topic_details(topic_id)
        if topic is None or not topic.is_active:
            logger.warning(f"Cannot schedule inactive or unknown topic {topic_id}")
            return

        interval = topic_interval_seconds(topic.epoch_length, self.average_block_time_seconds)
        logger.info(
            f"Scheduling topic {topic_id} every {interval}s",
            epoch_length=topic.epoch_length,
        )
        self.topic_intervals[topic_id] = interval
        self.topic_tasks[topic_id] = asyncio.create_task(
            self._topic_loop(topic_id, interval),
            name=f"topic-loop-{topic_id}",
        )

    async def _topic_loop(self, topic_id: int, interval: int) -> None:
        while self._running:
            await self.enqueue_topic_jobs(topic_id)
            await asyncio.sleep(interval)

    async def enqueue_topic_jobs(self, topic_id: int) -> int:
        """Enqueue one job per active model of the topic. Returns the count."""
        try:
            models = await self.repository.list_active_models(topic_id)
        except Exception as e:
            logger.error(f"Failed to load active models for topic {topic_id}: {e}")
            return 0

        if not models:
            logger.warning(f"No active models for topic {topic_id}")
            return 0

        await self.queue.enqueue_many([
            InferenceJob(model_id=model.id, webhook_url=model.webhook_url, topic_id=model.topic_id)
            for model in models
        ])
        logger.info(f"Enqueued {len(models)} inference job(s) for topic {topic_id}")
        return len(models)


class PerformanceScheduler:
    """Periodic performance sweep over all active models."""

    def __init__(
        self,
        service: PerformanceService,
        repository: ModelRepository,
        config: JobsConfig | None = None,
    ):
        self.service = service
        self.repository = repository
        self.config = config or JobsConfig()
        self._task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            logger.warning("Performance scheduler already running")
            return

        logger.info(f"Starting performance scheduler (every {self.config.performance_interval_seconds:.0f}s)")
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Performance scheduler stopped")

    async def _loop(self) -> None:
        while self._running:
            await self.run_once()
            await asyncio.sleep(self.config.performance_interval_seconds)

    async def run_once(self) -> int:
        try:
            models = await self.repository.list_active_models()
        except Exception as e:
            logger.error(f"Failed to load active models for performance sweep: {e}")
            return 0
        return await self.service.collect_all(models)


__all__ = [
    "MIN_TOPIC_INTERVAL_SECONDS",
    "topic_interval_seconds",
    "InferenceScheduler",
    "PerformanceScheduler",
]
