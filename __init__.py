"""
chainworker - Worker onboarding and inference submission

Provisions funded wallets for ML worker models and submits their
predictions to a proof-of-stake inference network inside each topic's
submission window.
"""

# Configuration
from chainworker.config import (
    ChainWorkerConfig,
    ChainConfig,
    SecretsConfig,
    DatabaseConfig,
    FundingConfig,
    SubmissionConfig,
    JobsConfig,
    LoggingConfig,
    load_config,
)

# Errors
from chainworker.exceptions import (
    ErrorSeverity,
    ChainWorkerError,
    ProvisioningError,
)

# Chain
from chainworker.blockchain import (
    ChainPort,
    EmissionsConnector,
    SubstrateClient,
    TopicDetails,
    TxResult,
    WorkerPayload,
)

# Services
from chainworker.services import (
    ModelRegistrationRequest,
    ProvisioningSaga,
    RegistrationResult,
    SubmissionGate,
    SubmissionPipeline,
    InferenceJob,
    JobOutcome,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "ChainWorkerConfig",
    "ChainConfig",
    "SecretsConfig",
    "DatabaseConfig",
    "FundingConfig",
    "SubmissionConfig",
    "JobsConfig",
    "LoggingConfig",
    "load_config",
    # Errors
    "ErrorSeverity",
    "ChainWorkerError",
    "ProvisioningError",
    # Chain
    "ChainPort",
    "EmissionsConnector",
    "SubstrateClient",
    "TopicDetails",
    "TxResult",
    "WorkerPayload",
    # Services
    "ModelRegistrationRequest",
    "ProvisioningSaga",
    "RegistrationResult",
    "SubmissionGate",
    "SubmissionPipeline",
    "InferenceJob",
    "JobOutcome",
]
