"""
chainworker services.

Components:
- WalletProvisioner: creates model wallets
- ProvisioningSaga: onboards a model with compensating rollback
- SubmissionGate: window/nonce gate over fresh chain state
- WebhookSolicitor: fetches and validates model predictions
- SubmissionPipeline: processes inference jobs
- PerformanceService: samples on-chain EMA scores
"""

from .wallet_provisioner import WalletProvisioner
from .provisioning_saga import (
    ModelRegistrationRequest,
    OrphanedWalletReconciler,
    ProvisioningSaga,
    RegistrationResult,
)
from .submission_gate import (
    GateDecision,
    GateOutcome,
    SubmissionGate,
    WindowBounds,
    decide_window,
)
from .webhook_solicitor import WebhookSolicitor, parse_worker_payload
from .submission_pipeline import (
    InferenceJob,
    JobOutcome,
    JobStatus,
    SubmissionPipeline,
)
from .performance_service import PerformanceService

__all__ = [
    "WalletProvisioner",
    "ModelRegistrationRequest",
    "OrphanedWalletReconciler",
    "ProvisioningSaga",
    "RegistrationResult",
    "GateDecision",
    "GateOutcome",
    "SubmissionGate",
    "WindowBounds",
    "decide_window",
    "WebhookSolicitor",
    "parse_worker_payload",
    "InferenceJob",
    "JobOutcome",
    "JobStatus",
    "SubmissionPipeline",
    "PerformanceService",
]
