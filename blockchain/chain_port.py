"""
Chain Port.

Every chain read and write the services need goes through this interface.
Reads return None (or an empty set) when the chain cannot answer; writes
return None when the transaction could not be confirmed after retries.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


# Returned as the tx hash when a worker registration finds the worker
# already registered on the topic.
ALREADY_REGISTERED = "already-registered"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class TopicDetails:
    """
    Chain-owned topic state. Read fresh on every use, never cached.

    Attributes:
        topic_id: Topic identifier
        is_active: Whether the topic accepts submissions
        epoch_length: Epoch length in blocks
        epoch_last_ended: Height at which the previous epoch ended
        worker_submission_window: Number of blocks workers may submit in
        creator: Topic creator address
        metadata: Free-form topic description
    """
    topic_id: int
    is_active: bool
    epoch_length: int
    epoch_last_ended: int
    worker_submission_window: int
    creator: str = ""
    metadata: str = ""

    @property
    def window_start(self) -> int:
        return self.epoch_last_ended + 1

    @property
    def window_end(self) -> int:
        return self.epoch_last_ended + self.worker_submission_window


@dataclass(frozen=True)
class TxResult:
    """Outcome of a confirmed chain write."""
    tx_hash: str
    block_number: int | None = None
    raw_log: str | None = None

    @property
    def already_registered(self) -> bool:
        return self.tx_hash == ALREADY_REGISTERED


@dataclass(frozen=True)
class ForecastElement:
    """A forecast of another worker's inference."""
    worker_address: str
    forecasted_value: str


@dataclass
class WorkerPayload:
    """
    Validated model output, ready to be bundled for the chain.

    Attributes:
        inference_value: Raw inference value from the model (numeric string)
        forecasts: Forecasts of other workers' inferences
        extra_data: Opaque bytes attached to the inference
        proof: Opaque proof string attached to the inference
        forecast_extra_data: Opaque bytes attached to the forecast
    """
    inference_value: str | None = None
    forecasts: list[ForecastElement] = field(default_factory=list)
    extra_data: bytes = b""
    proof: str = ""
    forecast_extra_data: bytes = b""

    @property
    def has_inference(self) -> bool:
        return self.inference_value is not None

    @property
    def has_forecasts(self) -> bool:
        return len(self.forecasts) > 0


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class ChainPort(Protocol):
    """Chain reads and signed writes used by the provisioning and submission services."""

    async def get_topic_details(self, topic_id: int) -> TopicDetails | None:
        ...

    async def get_current_block_height(self) -> int | None:
        ...

    async def get_active_inferers(self, topic_id: int) -> set[str]:
        ...

    async def get_active_forecasters(self, topic_id: int) -> set[str]:
        ...

    async def get_active_reputers(self, topic_id: int) -> set[str]:
        ...

    async def derive_latest_open_worker_nonce(self, topic_id: int) -> int | None:
        ...

    async def get_worker_ema_score(self, topic_id: int, address: str) -> str | None:
        ...

    async def submit_worker_payload(
        self,
        mnemonic: str,
        topic_id: int,
        payload: WorkerPayload,
        gas_price: str,
        nonce: int,
    ) -> TxResult | None:
        ...

    async def transfer_funds(
        self,
        from_mnemonic: str,
        to_address: str,
        amount: int,
    ) -> TxResult | None:
        ...

    async def register_worker_on_chain(self, mnemonic: str, topic_id: int) -> TxResult | None:
        ...


__all__ = [
    "ALREADY_REGISTERED",
    "TopicDetails",
    "TxResult",
    "ForecastElement",
    "WorkerPayload",
    "ChainPort",
]
