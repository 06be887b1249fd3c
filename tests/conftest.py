"""
Pytest configuration and shared fixtures for chainworker tests.

This module provides reusable test fixtures for:
- In-memory chain and repository fakes
- Secret stores seeded with a treasury mnemonic
- Configurations tuned for fast tests

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import pytest
from substrateinterface import Keypair

from chainworker.blockchain.chain_port import TopicDetails, TxResult, WorkerPayload
from chainworker.config import ChainConfig, ChainWorkerConfig, FundingConfig, JobsConfig, SubmissionConfig
from chainworker.monitoring.metrics import SubmissionMetrics
from chainworker.secret_store import InMemorySecretStore
from chainworker.storage.records import (
    Model,
    PerformanceMetric,
    SubmissionContext,
    SubmissionRecord,
    Wallet,
)

TREASURY_KEY = "treasury_mnemonic"


# ============================================================================
# Chain Fake
# ============================================================================

@dataclass
class ChainCall:
    name: str
    args: tuple[Any, ...]


class FakeChain:
    """
    ChainPort fake with configurable state.

    Writes are recorded in ``writes``; reads in ``calls``.
    """

    def __init__(self):
        self.topics: dict[int, TopicDetails] = {}
        self.height: int | None = 105
        self.open_nonce: int | None = 105
        self.inferers: dict[int, set[str]] = {}
        self.ema_scores: dict[tuple[int, str], str | None] = {}

        self.submit_result: TxResult | None = TxResult("0xsubmit", block_number=106, raw_log="[]")
        self.submit_error: BaseException | None = None
        self.transfer_result: TxResult | None = TxResult("0xtransfer", block_number=10)
        self.transfer_error: BaseException | None = None
        self.register_result: TxResult | None = TxResult("0xregister", block_number=11)
        self.register_error: BaseException | None = None

        self.calls: list[ChainCall] = []
        self.writes: list[ChainCall] = []

    def add_topic(
        self,
        topic_id: int = 1,
        is_active: bool = True,
        epoch_length: int = 120,
        epoch_last_ended: int = 100,
        worker_submission_window: int = 10,
    ) -> TopicDetails:
        topic = TopicDetails(
            topic_id=topic_id,
            is_active=is_active,
            epoch_length=epoch_length,
            epoch_last_ended=epoch_last_ended,
            worker_submission_window=worker_submission_window,
        )
        self.topics[topic_id] = topic
        return topic

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls + self.writes if call.name == name)

    async def get_topic_details(self, topic_id: int) -> TopicDetails | None:
        self.calls.append(ChainCall("get_topic_details", (topic_id,)))
        return self.topics.get(topic_id)

    async def get_current_block_height(self) -> int | None:
        self.calls.append(ChainCall("get_current_block_height", ()))
        return self.height

    async def get_active_inferers(self, topic_id: int) -> set[str]:
        self.calls.append(ChainCall("get_active_inferers", (topic_id,)))
        return set(self.inferers.get(topic_id, set()))

    async def get_active_forecasters(self, topic_id: int) -> set[str]:
        return set()

    async def get_active_reputers(self, topic_id: int) -> set[str]:
        return set()

    async def derive_latest_open_worker_nonce(self, topic_id: int) -> int | None:
        self.calls.append(ChainCall("derive_latest_open_worker_nonce", (topic_id,)))
        return self.open_nonce

    async def get_worker_ema_score(self, topic_id: int, address: str) -> str | None:
        self.calls.append(ChainCall("get_worker_ema_score", (topic_id, address)))
        return self.ema_scores.get((topic_id, address))

    async def submit_worker_payload(
        self,
        mnemonic: str,
        topic_id: int,
        payload: WorkerPayload,
        gas_price: str,
        nonce: int,
    ) -> TxResult | None:
        self.writes.append(ChainCall("submit_worker_payload", (mnemonic, topic_id, payload, gas_price, nonce)))
        if self.submit_error is not None:
            raise self.submit_error
        return self.submit_result

    async def transfer_funds(self, from_mnemonic: str, to_address: str, amount: int) -> TxResult | None:
        self.writes.append(ChainCall("transfer_funds", (from_mnemonic, to_address, amount)))
        if self.transfer_error is not None:
            raise self.transfer_error
        return self.transfer_result

    async def register_worker_on_chain(self, mnemonic: str, topic_id: int) -> TxResult | None:
        self.writes.append(ChainCall("register_worker_on_chain", (mnemonic, topic_id)))
        if self.register_error is not None:
            raise self.register_error
        return self.register_result


# ============================================================================
# Repository Fake
# ============================================================================

@dataclass
class FakeRepository:
    """In-memory ModelRepository."""
    wallets: dict[str, Wallet] = field(default_factory=dict)
    models: dict[str, Model] = field(default_factory=dict)
    metrics: dict[tuple[str, datetime], PerformanceMetric] = field(default_factory=dict)
    submissions: list[SubmissionRecord] = field(default_factory=list)
    persist_error: BaseException | None = None
    record_error: BaseException | None = None
    deleted_wallets: list[str] = field(default_factory=list)

    def add_model(
        self,
        wallet: Wallet,
        topic_id: int = 1,
        user_id: str = "user-1",
        webhook_url: str = "http://model.test/predict",
        max_gas_price: str | None = None,
        is_active: bool = True,
    ) -> Model:
        model = Model(
            id=str(uuid.uuid4()),
            user_id=user_id,
            wallet_id=wallet.id,
            webhook_url=webhook_url,
            topic_id=topic_id,
            max_gas_price=max_gas_price,
            is_active=is_active,
            created_at=datetime.now(timezone.utc),
        )
        self.wallets[wallet.id] = wallet
        self.models[model.id] = model
        return model

    async def persist_model(self, wallet, request, registration_fee) -> Model:
        if self.persist_error is not None:
            raise self.persist_error
        model = self.add_model(
            wallet,
            topic_id=request.topic_id,
            user_id=request.user_id,
            webhook_url=request.webhook_url,
            max_gas_price=request.max_gas_price,
        )
        model.is_inferer = request.is_inferer
        model.is_forecaster = request.is_forecaster
        model.registration_fee = registration_fee
        return model

    async def delete_wallet(self, wallet_id: str) -> None:
        self.deleted_wallets.append(wallet_id)
        self.wallets.pop(wallet_id, None)

    async def get_submission_context(self, model_id: str) -> SubmissionContext | None:
        model = self.models.get(model_id)
        if model is None:
            return None
        wallet = self.wallets.get(model.wallet_id)
        if wallet is None:
            return None
        return SubmissionContext(
            model_id=model.id,
            topic_id=model.topic_id,
            webhook_url=model.webhook_url,
            wallet_address=wallet.address,
            secret_ref=wallet.secret_ref,
            max_gas_price=model.max_gas_price,
        )

    async def list_active_models(self, topic_id: int | None = None) -> list[Model]:
        return [
            model for model in self.models.values()
            if model.is_active and (topic_id is None or model.topic_id == topic_id)
        ]

    async def list_active_topic_ids(self) -> list[int]:
        return sorted({model.topic_id for model in self.models.values() if model.is_active})

    async def record_performance_metric(self, metric: PerformanceMetric) -> bool:
        key = (metric.model_id, metric.timestamp)
        if key in self.metrics:
            return False
        self.metrics[key] = metric
        return True

    async def get_performance_history(self, model_id: str, user_id: str, limit: int = 100):
        model = self.models.get(model_id)
        if model is None or model.user_id != user_id:
            return None
        history = [m for m in self.metrics.values() if m.model_id == model_id]
        return sorted(history, key=lambda m: m.timestamp, reverse=True)[:limit]

    async def record_submission(self, record: SubmissionRecord) -> None:
        if self.record_error is not None:
            raise self.record_error
        self.submissions.append(record)

    async def set_model_active(self, model_id: str, active: bool) -> bool:
        model = self.models.get(model_id)
        if model is None:
            return False
        model.is_active = active
        return True


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def treasury_mnemonic():
    """Mnemonic of the funding treasury."""
    return Keypair.generate_mnemonic()


@pytest.fixture
def chain():
    """Chain fake with one active topic (window 101..110, height 105)."""
    fake = FakeChain()
    fake.add_topic()
    return fake


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def secrets(treasury_mnemonic):
    """In-memory secret store holding the treasury mnemonic."""
    return InMemorySecretStore({TREASURY_KEY: treasury_mnemonic})


@pytest.fixture
def metrics():
    return SubmissionMetrics()


@pytest.fixture
def model_wallet(secrets):
    """A wallet whose mnemonic is present in ``secrets``."""
    mnemonic = Keypair.generate_mnemonic()
    keypair = Keypair.create_from_mnemonic(mnemonic, ss58_format=42)
    wallet = Wallet(id=str(uuid.uuid4()), address=keypair.ss58_address, secret_ref="wallet_mnemonic_test")
    secrets._secrets[wallet.secret_ref] = mnemonic
    return wallet


@pytest.fixture
def chain_config():
    """Chain configuration without backoff delays."""
    return ChainConfig(
        rpc_urls=["ws://node-a:9944", "ws://node-b:9944"],
        max_retries=3,
        initial_retry_delay=0.0,
        nonce_scan_limit=200,
    )


@pytest.fixture
def submission_config():
    return SubmissionConfig()


@pytest.fixture
def jobs_config():
    """Job settings for fast tests."""
    return JobsConfig(
        concurrency=2,
        attempts=3,
        backoff_seconds=0.0,
        job_timeout_seconds=1.0,
        sync_interval_seconds=3600.0,
        performance_interval_seconds=3600.0,
    )


@pytest.fixture
def funding_config():
    return FundingConfig(registration_fee=1000, initial_funding=50000)


@pytest.fixture
def chainworker_config(chain_config, jobs_config, funding_config):
    """Complete configuration for testing."""
    return ChainWorkerConfig(
        environment="test",
        chain=chain_config,
        funding=funding_config,
        jobs=jobs_config,
    )
