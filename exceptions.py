"""
Error taxonomy for chainworker.

Every error carries a severity that tells the caller how to react:

- DEFERRAL: not an error at all, the work is simply postponed
- RECOVERABLE: transient; the job transport may retry
- FATAL_JOB: the job fails, shared state is untouched
- FATAL_SYSTEM: operator intervention required, logged at CRITICAL

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

from enum import Enum


class ErrorSeverity(Enum):
    """How an error should be handled by the job transport and operators."""
    DEFERRAL = "deferral"
    RECOVERABLE = "recoverable"
    FATAL_JOB = "fatal_job"
    FATAL_SYSTEM = "fatal_system"


class ChainWorkerError(Exception):
    """Base class for all chainworker errors."""

    severity: ErrorSeverity = ErrorSeverity.FATAL_JOB
    public_message: str = "An internal error occurred."

    @property
    def retryable(self) -> bool:
        return self.severity is ErrorSeverity.RECOVERABLE


# =============================================================================
# Chain
# =============================================================================


class SkipSubmission(ChainWorkerError):
    """Model output should not be submitted this round."""
    severity = ErrorSeverity.DEFERRAL


class InvalidModelOutput(ChainWorkerError):
    """Model output cannot be encoded for the chain."""


class InvalidGasPrice(ChainWorkerError):
    """Gas price is malformed or not in the chain denomination."""
    public_message = "The gas price must be an amount in the chain denomination."


# =============================================================================
# Wallets and provisioning
# =============================================================================


class WalletCreationError(ChainWorkerError):
    """Raised by the wallet provisioner when a wallet cannot be created."""


class ProvisioningError(ChainWorkerError):
    """Base class for model registration failures."""
    public_message = "Model registration failed. Please try again later."


class TopicUnavailable(ProvisioningError):
    public_message = "Topic not found or is not active."


class WalletCreationFailed(ProvisioningError):
    public_message = "Could not create a wallet for the model."


class TreasuryUnavailable(ProvisioningError):
    """The treasury mnemonic is missing from, or unreadable in, the secret store."""
    severity = ErrorSeverity.FATAL_SYSTEM


class FundingFailed(ProvisioningError):
    public_message = "Failed to fund the new model wallet. Please try again later."


class PostFundingFailure(ProvisioningError):
    """
    A step failed after the treasury transfer was confirmed.

    The transfer cannot be reversed, so these are never compensated.
    """
    severity = ErrorSeverity.FATAL_SYSTEM
    public_message = "A critical error occurred while saving the model."

    def __init__(self, message: str, wallet_address: str, wallet_id: str):
        super().__init__(message)
        self.wallet_address = wallet_address
        self.wallet_id = wallet_id


class FundedButUnregistered(PostFundingFailure):
    """Wallet funded, but on-chain worker registration failed."""


class FundedButUnsaved(PostFundingFailure):
    """Wallet funded, but the model row could not be persisted."""


# =============================================================================
# Webhook
# =============================================================================


class WebhookError(ChainWorkerError):
    """Base class for model webhook failures."""


class WebhookUnavailable(WebhookError):
    """The webhook timed out, refused the connection or returned non-2xx."""
    severity = ErrorSeverity.RECOVERABLE


class IncompletePayload(WebhookError):
    """Payload has neither an inference value nor any forecasts."""


class InvalidPayloadField(WebhookError):
    """An optional payload field has the wrong type or encoding."""

    def __init__(self, field_name: str, reason: str):
        super().__init__(f"Invalid payload field '{field_name}': {reason}")
        self.field_name = field_name


# =============================================================================
# Submission pipeline
# =============================================================================


class ModelNotFound(ChainWorkerError):
    """No model (or wallet) row for the job's model id."""


class MnemonicMissing(ChainWorkerError):
    """The model wallet's mnemonic is absent: data corruption, not transient."""


class SubmissionFailed(ChainWorkerError):
    """The chain rejected the payload after the connector's own retries."""
    severity = ErrorSeverity.RECOVERABLE


__all__ = [
    "ErrorSeverity",
    "ChainWorkerError",
    "SkipSubmission",
    "InvalidModelOutput",
    "InvalidGasPrice",
    "WalletCreationError",
    "ProvisioningError",
    "TopicUnavailable",
    "WalletCreationFailed",
    "TreasuryUnavailable",
    "FundingFailed",
    "PostFundingFailure",
    "FundedButUnregistered",
    "FundedButUnsaved",
    "WebhookError",
    "WebhookUnavailable",
    "IncompletePayload",
    "InvalidPayloadField",
    "ModelNotFound",
    "MnemonicMissing",
    "SubmissionFailed",
]
