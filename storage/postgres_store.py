"""
PostgreSQL persistence for chainworker.

asyncpg-backed implementation of ModelRepository. ``initialize()`` creates
the pool and bootstraps the tables with CREATE TABLE IF NOT EXISTS.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import asyncpg
from loguru import logger

from chainworker.config import DatabaseConfig

from .records import (
    Model,
    PerformanceMetric,
    SubmissionContext,
    SubmissionRecord,
    Wallet,
)

if TYPE_CHECKING:
    from chainworker.services.provisioning_saga import ModelRegistrationRequest


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS wallets (
        id UUID PRIMARY KEY,
        address VARCHAR(255) UNIQUE NOT NULL,
        secret_ref VARCHAR(255) UNIQUE NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS models (
        id UUID PRIMARY KEY,
        user_id TEXT NOT NULL,
        wallet_id UUID NOT NULL REFERENCES wallets(id) ON DELETE RESTRICT,
        webhook_url VARCHAR(2048) NOT NULL,
        topic_id BIGINT NOT NULL,
        is_inferer BOOLEAN NOT NULL DEFAULT true,
        is_forecaster BOOLEAN NOT NULL DEFAULT false,
        max_gas_price VARCHAR(100),
        is_active BOOLEAN NOT NULL DEFAULT true,
        registration_fee_uallo BIGINT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_models_user_id ON models(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_models_topic_id ON models(topic_id)",
    """
    CREATE TABLE IF NOT EXISTS performance_metrics (
        model_id UUID NOT NULL REFERENCES models(id) ON DELETE CASCADE,
        "timestamp" TIMESTAMPTZ NOT NULL,
        ema_score DECIMAL(30, 18),
        PRIMARY KEY (model_id, "timestamp")
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_performance_metrics_timestamp
    ON performance_metrics("timestamp" DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS submissions (
        id BIGSERIAL PRIMARY KEY,
        model_id TEXT NOT NULL,
        topic_id BIGINT NOT NULL,
        nonce_height BIGINT,
        tx_hash TEXT,
        status TEXT NOT NULL,
        raw_log TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS submissions_model_idx ON submissions (model_id)",
    "CREATE INDEX IF NOT EXISTS submissions_created_at_idx ON submissions (created_at DESC)",
]


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _model_from_row(row: Any) -> Model:
    return Model(
        id=str(row["id"]),
        user_id=row["user_id"],
        wallet_id=str(row["wallet_id"]),
        webhook_url=row["webhook_url"],
        topic_id=int(row["topic_id"]),
        is_inferer=row["is_inferer"],
        is_forecaster=row["is_forecaster"],
        max_gas_price=row["max_gas_price"],
        is_active=row["is_active"],
        registration_fee=row["registration_fee_uallo"],
        created_at=row["created_at"],
    )


class PostgresStore:
    """
    PostgreSQL-backed model repository.

    Usage:
        store = PostgresStore(config.database)
        await store.initialize()
        models = await store.list_active_models(topic_id=1)
        await store.close()
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.pool: asyncpg.Pool | None = None

    async def initialize(self, bootstrap: bool = True) -> None:
        """Create database pool and tables"""
        self.pool = await asyncpg.create_pool(
            self.config.url,
            min_size=self.config.min_pool_size,
            max_size=self.config.max_pool_size,
            command_timeout=self.config.command_timeout,
        )

        if bootstrap:
            await self.bootstrap()

        logger.info("PostgreSQL store initialized")

    async def bootstrap(self) -> None:
        """Create tables and indexes that do not exist yet."""
        async with self._pool().acquire() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)

    def _pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError("PostgresStore not initialized. Call initialize() first.")
        return self.pool

    # =========================================================================
    # Models and wallets
    # =========================================================================

    async def persist_model(
        self,
        wallet: Wallet,
        request: ModelRegistrationRequest,
        registration_fee: int | None,
    ) -> Model:
        """
        Insert the wallet and model rows atomically.

        Args:
            wallet: Provisioned wallet
            request: Validated registration request
            registration_fee: Fee paid at registration

        Returns:
            The stored model
        """
        model_id = str(uuid.uuid4())

        async with self._pool().acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO wallets (id, address, secret_ref)
                    VALUES ($1, $2, $3)
                    """,
                    uuid.UUID(wallet.id),
                    wallet.address,
                    wallet.secret_ref,
                )
                row = await conn.fetchrow(
                    """
                    INSERT INTO models (
                        id, user_id, wallet_id, webhook_url, topic_id,
                        is_inferer, is_forecaster, max_gas_price, registration_fee_uallo
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    RETURNING *
                    """,
                    uuid.UUID(model_id),
                    request.user_id,
                    uuid.UUID(wallet.id),
                    str(request.webhook_url),
                    request.topic_id,
                    request.is_inferer,
                    request.is_forecaster,
                    request.max_gas_price,
                    registration_fee,
                )

        logger.info("Persisted model", model_id=model_id, wallet_address=wallet.address)
        return _model_from_row(row)

    async def delete_wallet(self, wallet_id: str) -> None:
        async with self._pool().acquire() as conn:
            await conn.execute("DELETE FROM wallets WHERE id = $1", uuid.UUID(wallet_id))

    async def get_submission_context(self, model_id: str) -> SubmissionContext | None:
        key = _parse_uuid(model_id)
        if key is None:
            return None

        async with self._pool().acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT m.id, m.topic_id, m.webhook_url, m.max_gas_price,
                       w.address, w.secret_ref
                FROM models m
                JOIN wallets w ON w.id = m.wallet_id
                WHERE m.id = $1
                """,
                key,
            )

        if row is None:
            return None

        return SubmissionContext(
            model_id=str(row["id"]),
            topic_id=int(row["topic_id"]),
            webhook_url=row["webhook_url"],
            wallet_address=row["address"],
            secret_ref=row["secret_ref"],
            max_gas_price=row["max_gas_price"],
        )

    async def list_active_models(self, topic_id: int | None = None) -> list[Model]:
        async with self._pool().acquire() as conn:
            if topic_id is None:
                rows = await conn.fetch("SELECT * FROM models WHERE is_active = true ORDER BY created_at")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM models WHERE is_active = true AND topic_id = $1 ORDER BY created_at",
                    topic_id,
                )
        return [_model_from_row(row) for row in rows]

    async def list_active_topic_ids(self) -> list[int]:
        async with self._pool().acquire() as conn:
            rows = await conn.fetch(
                "SELECT DISTINCT topic_id FROM models WHERE is_active = true ORDER BY topic_id"
            )
        return [int(row["topic_id"]) for row in rows]

    async def set_model_active(self, model_id: str, active: bool) -> bool:
        key = _parse_uuid(model_id)
        if key is None:
            return False

        async with self._pool().acquire() as conn:
            result = await conn.execute(
                "UPDATE models SET is_active = $2, updated_at = NOW() WHERE id = $1",
                key,
                active,
            )
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return result.split()[-1] != "0"

    # =========================================================================
    # Performance metrics
    # =========================================================================

    async def record_performance_metric(self, metric: PerformanceMetric) -> bool:
        async with self._pool().acquire() as conn:
            result = await conn.execute(
                """
                INSERT INTO performance_metrics (model_id, "timestamp", ema_score)
                VALUES ($1, $2, $3)
                ON CONFLICT (model_id, "timestamp") DO NOTHING
                """,
                uuid.UUID(metric.model_id),
                metric.timestamp,
                metric.ema_score,
            )
        return result.split()[-1] != "0"

    async def get_performance_history(
        self,
        model_id: str,
        user_id: str,
        limit: int = 100,
    ) -> list[PerformanceMetric] | None:
        key = _parse_uuid(model_id)
        if key is None:
            return None

        async with self._pool().acquire() as conn:
            owner = await conn.fetchval(
                "SELECT user_id FROM models WHERE id = $1",
                key,
            )
            if owner is None or owner != user_id:
                return None

            rows = await conn.fetch(
                """
                SELECT model_id, "timestamp", ema_score
                FROM performance_metrics
                WHERE model_id = $1
                ORDER BY "timestamp" DESC
                LIMIT $2
                """,
                key,
                limit,
            )

        return [
            PerformanceMetric(
                model_id=str(row["model_id"]),
                timestamp=row["timestamp"],
                ema_score=row["ema_score"],
            )
            for row in rows
        ]

    # =========================================================================
    # Submissions
    # =========================================================================

    async def record_submission(self, record: SubmissionRecord) -> None:
        async with self._pool().acquire() as conn:
            record.id = await conn.fetchval(
                """
                INSERT INTO submissions (model_id, topic_id, nonce_height, tx_hash, status, raw_log, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING id
                """,
                record.model_id,
                record.topic_id,
                record.nonce_height,
                record.tx_hash,
                record.status.value,
                record.raw_log,
                record.created_at,
            )

    async def close(self) -> None:
        """Close database pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None


__all__ = ["PostgresStore", "SCHEMA"]
