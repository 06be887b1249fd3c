"""
Persistence records and the repository contract.

Mnemonics never appear here: a wallet row only holds ``secret_ref``, the
key of the mnemonic in the secret store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from chainworker.services.provisioning_saga import ModelRegistrationRequest


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Wallet:
    """A model wallet. Owned by at most one model."""
    id: str
    address: str
    secret_ref: str


@dataclass
class Model:
    """
    A registered worker model.

    Attributes:
        id: Model identifier (UUID string)
        user_id: Owner
        wallet_id: The model's dedicated wallet
        webhook_url: Endpoint called for predictions
        topic_id: Topic the model submits to
        is_inferer: Model produces inferences
        is_forecaster: Model produces forecasts
        max_gas_price: Optional gas price, e.g. "10uallo"
        is_active: Whether jobs are scheduled for the model
        registration_fee: Fee paid at registration, smallest denomination
    """
    id: str
    user_id: str
    wallet_id: str
    webhook_url: str
    topic_id: int
    is_inferer: bool = True
    is_forecaster: bool = False
    max_gas_price: str | None = None
    is_active: bool = True
    registration_fee: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class SubmissionContext:
    """Everything the submission pipeline needs to sign for a model."""
    model_id: str
    topic_id: int
    webhook_url: str
    wallet_address: str
    secret_ref: str
    max_gas_price: str | None = None


@dataclass(frozen=True)
class PerformanceMetric:
    """EMA score sample. Idempotent on (model_id, timestamp)."""
    model_id: str
    timestamp: datetime
    ema_score: Decimal | None


class SubmissionStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class SubmissionRecord:
    """One chain submission attempt."""
    model_id: str
    topic_id: int
    status: SubmissionStatus
    nonce_height: int | None = None
    tx_hash: str | None = None
    raw_log: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: int | None = None


# =============================================================================
# Repository Contract
# =============================================================================


@runtime_checkable
class ModelRepository(Protocol):
    """Relational persistence used by the services."""

    async def persist_model(
        self,
        wallet: Wallet,
        request: ModelRegistrationRequest,
        registration_fee: int | None,
    ) -> Model:
        """Insert the wallet row and the model row in one transaction."""
        ...

    async def delete_wallet(self, wallet_id: str) -> None:
        """Delete a wallet row. Missing rows are not an error."""
        ...

    async def get_submission_context(self, model_id: str) -> SubmissionContext | None:
        ...

    async def list_active_models(self, topic_id: int | None = None) -> list[Model]:
        ...

    async def list_active_topic_ids(self) -> list[int]:
        ...

    async def record_performance_metric(self, metric: PerformanceMetric) -> bool:
        """Returns False when a sample already exists for (model_id, timestamp)."""
        ...

    async def get_performance_history(
        self,
        model_id: str,
        user_id: str,
        limit: int = 100,
    ) -> list[PerformanceMetric] | None:
        """None when the model does not exist or belongs to another user."""
        ...

    async def record_submission(self, record: SubmissionRecord) -> None:
        ...

    async def set_model_active(self, model_id: str, active: bool) -> bool:
        """Returns False when no such model exists."""
        ...


__all__ = [
    "Wallet",
    "Model",
    "SubmissionContext",
    "PerformanceMetric",
    "SubmissionStatus",
    "SubmissionRecord",
    "ModelRepository",
]
