"""
Model Provisioning Saga.

Onboards a model in a fixed sequence of steps:

1. Validate the topic on chain
2. Create the model wallet (mnemonic goes to the secret store)
3. Fund the wallet from the treasury
4. Register the worker on chain
5. Persist wallet and model rows in one transaction

Steps 2-3 register compensations that run in reverse order when funding
fails. A confirmed treasury transfer is the point of no return: after it,
compensations are discarded and failures are reported as
PostFundingFailure for operator follow-up.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol, runtime_checkable
from urllib.parse import urlparse

from loguru import logger
from pydantic import BaseModel, Field, field_validator, model_validator

from chainworker.blockchain.chain_port import ChainPort
from chainworker.config import AMOUNT_PATTERN, FundingConfig
from chainworker.exceptions import (
    FundedButUnregistered,
    FundedButUnsaved,
    FundingFailed,
    InvalidGasPrice,
    PostFundingFailure,
    TopicUnavailable,
    TreasuryUnavailable,
    WalletCreationError,
    WalletCreationFailed,
)
from chainworker.secret_store import SecretStore
from chainworker.storage.records import ModelRepository, Wallet

from .wallet_provisioner import WalletProvisioner

if TYPE_CHECKING:
    from loguru import Logger


# =============================================================================
# Request / Result
# =============================================================================


class ModelRegistrationRequest(BaseModel):
    """Validated input for registering a model."""

    user_id: str = Field(
        min_length=1,
        description="Owner of the model",
    )

    webhook_url: str = Field(
        max_length=2048,
        description="HTTP(S) endpoint called for predictions",
    )

    topic_id: int = Field(
        ge=1,
        description="Topic the model submits to",
    )

    is_inferer: bool = Field(default=True, description="Model produces inferences")
    is_forecaster: bool = Field(default=False, description="Model produces forecasts")

    max_gas_price: str | None = Field(
        default=None,
        description="Gas price used for submissions, e.g. '10uallo'",
    )

    @field_validator("webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("webhook_url must be an http(s) URL")
        return v

    @field_validator("max_gas_price")
    @classmethod
    def validate_gas_price(cls, v: str | None) -> str | None:
        if v is not None and not AMOUNT_PATTERN.match(v):
            raise ValueError(f"max_gas_price must look like '10uallo', got {v!r}")
        return v

    @model_validator(mode="after")
    def require_capability(self) -> ModelRegistrationRequest:
        if not (self.is_inferer or self.is_forecaster):
            raise ValueError("A model must be an inferer, a forecaster, or both")
        return self


@dataclass
class RegistrationResult:
    """Outcome of a successful registration."""
    model_id: str
    wallet_address: str
    registration_tx_hash: str | None
    costs_incurred: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class OrphanedWalletReconciler(Protocol):
    """
    Receives funded wallets that could not be fully registered.

    Implementations may sweep funds back to the treasury or retry the
    failed step. None ships with chainworker.
    """

    async def report(self, failure: PostFundingFailure) -> None:
        ...


Compensation = tuple[str, Callable[[], Awaitable[None]]]


# =============================================================================
# Saga
# =============================================================================


class ProvisioningSaga:
    """
    Orchestrates model registration.

    Usage:
        saga = ProvisioningSaga(chain, secrets, WalletProvisioner(secrets), store, config.funding)
        result = await saga.register(ModelRegistrationRequest(...))
    """

    def __init__(
        self,
        chain: ChainPort,
        secrets: SecretStore,
        wallets: WalletProvisioner,
        repository: ModelRepository,
        funding: FundingConfig | None = None,
        treasury_secret_key: str = "treasury_mnemonic",
        denom: str = "uallo",
        reconciler: OrphanedWalletReconciler | None = None,
    ):
        self.chain = chain
        self.secrets = secrets
        self.wallets = wallets
        self.repository = repository
        self.funding = funding or FundingConfig()
        self.treasury_secret_key = treasury_secret_key
        self.denom = denom
        self.reconciler = reconciler

    async def register(self, request: ModelRegistrationRequest) -> RegistrationResult:
        """
        Run the saga for one model.

        Args:
            request: Validated registration request

        Returns:
            RegistrationResult

        Raises:
            InvalidGasPrice: max_gas_price is not in the chain denomination (no side effects)
            TopicUnavailable: topic missing or inactive (no side effects)
            WalletCreationFailed: wallet could not be created (nothing to undo)
            TreasuryUnavailable: treasury mnemonic missing or unreadable (wallet rolled back)
            FundingFailed: transfer failed (wallet rolled back)
            FundedButUnregistered: on-chain registration failed after funding
            FundedButUnsaved: persistence failed after funding
        """
        log = logger.bind(user_id=request.user_id, topic_id=request.topic_id)
        log.info("Starting model registration")

        if request.max_gas_price is not None:
            denom = AMOUNT_PATTERN.match(request.max_gas_price).group(2)
            if denom != self.denom:
                log.warning("Registration rejected: gas price denomination mismatch", gas_price=request.max_gas_price)
                raise InvalidGasPrice(
                    f"max_gas_price {request.max_gas_price!r} must be in {self.denom!r}, not {denom!r}"
                )

        # Step 1: topic
        topic = await self.chain.get_topic_details(request.topic_id)
        if topic is None or not topic.is_active:
            log.warning("Registration rejected: topic not found or inactive")
            raise TopicUnavailable(f"Topic {request.topic_id} not found or inactive")

        # Step 2: wallet
        try:
            wallet = await self.wallets.create()
        except WalletCreationError as e:
            log.error(f"Registration failed: wallet creation failed: {e}")
            raise WalletCreationFailed(str(e)) from e

        compensations: list[Compensation] = [
            ("destroy wallet secret", lambda: self.wallets.destroy(wallet)),
            ("delete wallet row", lambda: self.repository.delete_wallet(wallet.id)),
        ]
        log = log.bind(wallet_id=wallet.id, wallet_address=wallet.address)

        # Step 3: funding
        await self._fund_wallet(wallet, compensations, log)

        # Point of no return
        compensations.clear()
        log.info("Wallet funded", amount=self.funding.total, denom=self.denom)

        # Step 4: on-chain registration
        registration_tx_hash = await self._register_on_chain(wallet, request.topic_id, log)

        # Step 5: persistence
        try:
            model = await self.repository.persist_model(wallet, request, self.funding.registration_fee)
        except Exception as e:
            failure = FundedButUnsaved(
                f"Model persistence failed after funding: {e}",
                wallet_address=wallet.address,
                wallet_id=wallet.id,
            )
            log.critical(
                "CRITICAL: model persistence failed AFTER wallet was funded. "
                "Manual intervention required.",
                error=str(e),
            )
            await self._report_orphan(failure)
            raise failure from e

        log.success("Model registered", model_id=model.id)
        return RegistrationResult(
            model_id=model.id,
            wallet_address=wallet.address,
            registration_tx_hash=registration_tx_hash,
            costs_incurred={
                "registration_fee": f"{self.funding.registration_fee}{self.denom}",
                "initial_funding": f"{self.funding.initial_funding}{self.denom}",
                "total": f"{self.funding.total}{self.denom}",
            },
        )

    async def _fund_wallet(self, wallet: Wallet, compensations: list[Compensation], log: Logger) -> None:
        try:
            treasury_mnemonic = await self.secrets.get(self.treasury_secret_key)
        except Exception as e:
            log.critical("CRITICAL: treasury mnemonic could not be read from the secret store", error=str(e))
            await self._compensate(compensations, log)
            raise TreasuryUnavailable("Treasury mnemonic could not be read") from e

        if not treasury_mnemonic:
            log.critical("CRITICAL: treasury mnemonic is not available in the secret store")
            await self._compensate(compensations, log)
            raise TreasuryUnavailable("Treasury mnemonic missing")

        try:
            result = await self.chain.transfer_funds(treasury_mnemonic, wallet.address, self.funding.total)
            error = None if result is not None else "transfer returned no result"
        except Exception as e:
            result, error = None, str(e)

        if result is None:
            log.error(f"Registration failed: funding transfer failed ({error}). Rolling back wallet.")
            await self._compensate(compensations, log)
            raise FundingFailed(f"Funding transfer to {wallet.address} failed: {error}")

    async def _register_on_chain(self, wallet: Wallet, topic_id: int, log: Logger) -> str | None:
        try:
            mnemonic = await self.secrets.get(wallet.secret_ref)
            if not mnemonic:
                raise RuntimeError("mnemonic not found for new wallet")
            result = await self.chain.register_worker_on_chain(mnemonic, topic_id)
            if result is None:
                raise RuntimeError("on-chain registration returned no result")
        except Exception as e:
            failure = FundedButUnregistered(
                f"On-chain registration failed after funding: {e}",
                wallet_address=wallet.address,
                wallet_id=wallet.id,
            )
            log.critical(
                "CRITICAL: on-chain registration failed AFTER wallet was funded. "
                "Wallet and secret kept for recovery.",
                error=str(e),
            )
            await self._report_orphan(failure)
            raise failure from e

        if result.already_registered:
            log.info("Worker was already registered on chain")
            return None

        log.info("On-chain registration complete", tx_hash=result.tx_hash)
        return result.tx_hash

    async def _compensate(self, compensations: list[Compensation], log: Logger) -> None:
        """Run compensations in reverse order. Failures never propagate."""
        for name, action in reversed(compensations):
            try:
                await action()
                log.info(f"Compensation succeeded: {name}")
            except Exception as e:
                log.critical(
                    f"CRITICAL: compensation '{name}' failed. Manual intervention required.",
                    error=str(e),
                )
        compensations.clear()

    async def _report_orphan(self, failure: PostFundingFailure) -> None:
        if self.reconciler is None:
            return
        try:
            await self.reconciler.report(failure)
        except Exception as e:
            logger.critical(f"CRITICAL: orphaned wallet reconciler failed: {e}")


__all__ = [
    "ModelRegistrationRequest",
    "RegistrationResult",
    "OrphanedWalletReconciler",
    "ProvisioningSaga",
]
