"""
Performance collection.

Samples each model's on-chain EMA score into the performance history.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from loguru import logger

from chainworker.blockchain.chain_port import ChainPort
from chainworker.storage.records import Model, ModelRepository, PerformanceMetric


class PerformanceService:
    """Collects and serves model performance metrics."""

    def __init__(self, chain: ChainPort, repository: ModelRepository):
        self.chain = chain
        self.repository = repository

    async def collect(self, model: Model, timestamp: datetime | None = None) -> bool:
        """
        Fetch the model's EMA score and store it.

        Errors are logged, never raised: one model must not stop a sweep.

        Returns:
            True if a new sample was stored
        """
        log = logger.bind(model_id=model.id, topic_id=model.topic_id)
        try:
            context = await self.repository.get_submission_context(model.id)
            if context is None:
                log.warning("Model wallet not found, skipping performance collection")
                return False

            raw_score = await self.chain.get_worker_ema_score(model.topic_id, context.wallet_address)
            if raw_score is None:
                log.warning("Could not retrieve EMA score, skipping storage")
                return False

            metric = PerformanceMetric(
                model_id=model.id,
                timestamp=timestamp or datetime.now(timezone.utc),
                ema_score=Decimal(raw_score),
            )
            stored = await self.repository.record_performance_metric(metric)
            log.info("Stored performance metric", ema_score=raw_score, stored=stored)
            return stored

        except (InvalidOperation, ValueError) as e:
            log.error(f"Unparseable EMA score: {e}")
            return False
        except Exception as e:
            log.error(f"Performance collection failed: {e}")
            return False

    async def collect_all(self, models: list[Model]) -> int:
        """Collect sequentially for every model. Returns the number stored."""
        stored = 0
        for model in models:
            if await self.collect(model):
                stored += 1
        logger.info(f"Performance sweep complete: {stored}/{len(models)} samples stored")
        return stored

    async def history(self, model_id: str, user_id: str, limit: int = 100) -> list[PerformanceMetric] | None:
        """Performance history, only for the model's owner (None otherwise)."""
        metrics = await self.repository.get_performance_history(model_id, user_id, limit)
        if metrics is None:
            logger.warning("Performance history denied", model_id=model_id, user_id=user_id)
        return metrics


__all__ = ["PerformanceService"]
