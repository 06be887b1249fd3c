"""
Inference Submission Pipeline.

Processes one InferenceJob:

1. Read the topic's active inferers
2. Solicit the model webhook (failures propagate)
3. Look up the model wallet and gas price
4. Fetch the wallet mnemonic
5. Evaluate the window/nonce gate (a skip ends the job successfully)
6. Submit the signed payload for the gate's nonce

Every payload that reaches the chain is recorded as a SubmissionRecord.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from chainworker.blockchain.chain_port import ChainPort, TxResult
from chainworker.exceptions import (
    ChainWorkerError,
    ErrorSeverity,
    MnemonicMissing,
    ModelNotFound,
    SkipSubmission,
    SubmissionFailed,
)
from chainworker.monitoring.metrics import SubmissionMetrics
from chainworker.secret_store import SecretStore
from chainworker.storage.records import ModelRepository, SubmissionRecord, SubmissionStatus

from .submission_gate import SubmissionGate
from .webhook_solicitor import WebhookSolicitor

DEFAULT_GAS_PRICE = "10uallo"
SKIP_INVALID_OUTPUT = "invalid model output"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class InferenceJob:
    """One scheduled submission for one model."""
    model_id: str
    webhook_url: str
    topic_id: int
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempt: int = 1


class JobStatus(Enum):
    SUBMITTED = "submitted"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class JobOutcome:
    """Successful end of a job: either a submission or a deliberate skip."""
    status: JobStatus
    tx_hash: str | None = None
    nonce_height: int | None = None
    reason: str | None = None

    @classmethod
    def submitted(cls, result: TxResult, nonce_height: int) -> JobOutcome:
        return cls(JobStatus.SUBMITTED, tx_hash=result.tx_hash, nonce_height=nonce_height)

    @classmethod
    def skipped(cls, reason: str) -> JobOutcome:
        return cls(JobStatus.SKIPPED, reason=reason)

    @property
    def is_skip(self) -> bool:
        return self.status is JobStatus.SKIPPED


# =============================================================================
# Pipeline
# =============================================================================


class SubmissionPipeline:
    """
    Runs inference jobs end to end.

    Usage:
        pipeline = SubmissionPipeline(chain, secrets, store, WebhookSolicitor())
        outcome = await pipeline.run(InferenceJob(model_id, webhook_url, topic_id))
    """

    def __init__(
        self,
        chain: ChainPort,
        secrets: SecretStore,
        repository: ModelRepository,
        solicitor: WebhookSolicitor,
        gate: SubmissionGate | None = None,
        metrics: SubmissionMetrics | None = None,
        default_gas_price: str = DEFAULT_GAS_PRICE,
    ):
        self.chain = chain
        self.secrets = secrets
        self.repository = repository
        self.solicitor = solicitor
        self.gate = gate or SubmissionGate(chain)
        self.metrics = metrics or SubmissionMetrics()
        self.default_gas_price = default_gas_price

    async def run(self, job: InferenceJob) -> JobOutcome:
        """
        Process a job, recording metrics for its outcome.

        Raises:
            ChainWorkerError: the job failed; ``retryable`` tells the
                transport whether another attempt may succeed
        """
        started = time.monotonic()
        with logger.contextualize(job_id=job.job_id, model_id=job.model_id, topic_id=job.topic_id):
            try:
                outcome = await self._process(job)
            except ChainWorkerError as e:
                self.metrics.record_failure(job.topic_id, type(e).__name__)
                if e.severity is ErrorSeverity.FATAL_SYSTEM:
                    logger.critical(f"Inference job failed: {e}")
                else:
                    logger.error(f"Inference job failed (attempt {job.attempt}): {e}")
                raise
            except Exception as e:
                self.metrics.record_failure(job.topic_id, type(e).__name__)
                logger.exception(f"Unexpected error in inference job: {e}")
                raise
            finally:
                self.metrics.observe_job_duration(time.monotonic() - started)

            if outcome.is_skip:
                self.metrics.record_skip(job.topic_id, outcome.reason or "unknown")
            else:
                self.metrics.record_success(job.topic_id)
            return outcome

    async def _process(self, job: InferenceJob) -> JobOutcome:
        logger.info("Starting inference job", attempt=job.attempt)

        # 1. Active inferers for the webhook request
        active_inferers = await self.chain.get_active_inferers(job.topic_id)

        # 2. Prediction from the model
        payload = await self.solicitor.solicit(job.webhook_url, active_inferers)

        # 3. Wallet and gas price
        context = await self.repository.get_submission_context(job.model_id)
        if context is None:
            raise ModelNotFound(f"Model {job.model_id} or its wallet not found")
        gas_price = context.max_gas_price or self.default_gas_price

        # 4. Signing key
        mnemonic = await self.secrets.get(context.secret_ref)
        if not mnemonic:
            raise MnemonicMissing(f"Mnemonic not found for secret ref {context.secret_ref}")

        # 5. Gate
        decision = await self.gate.evaluate(job.topic_id)
        if not decision.should_submit:
            logger.info("Skipping submission", reason=decision.reason)
            return JobOutcome.skipped(decision.reason or "unknown")

        nonce = decision.nonce_height

        # 6. Submit
        try:
            result = await self.chain.submit_worker_payload(
                mnemonic,
                job.topic_id,
                payload,
                gas_price,
                nonce,
            )
        except SkipSubmission as e:
            logger.warning(f"Skipping submission: {e}")
            return JobOutcome.skipped(SKIP_INVALID_OUTPUT)

        if result is None:
            await self._record(job, nonce, SubmissionStatus.FAILED, None, "submission failed after retries")
            raise SubmissionFailed(f"Worker payload for nonce {nonce} was not accepted after retries")

        await self._record(job, nonce, SubmissionStatus.SUCCESS, result.tx_hash, result.raw_log)
        logger.success("Worker payload submitted", tx_hash=result.tx_hash, nonce=nonce)
        return JobOutcome.submitted(result, nonce)

    async def _record(
        self,
        job: InferenceJob,
        nonce: int,
        status: SubmissionStatus,
        tx_hash: str | None,
        raw_log: str | None,
    ) -> None:
        record = SubmissionRecord(
            model_id=job.model_id,
            topic_id=job.topic_id,
            status=status,
            nonce_height=nonce,
            tx_hash=tx_hash,
            raw_log=raw_log,
        )
        try:
            await self.repository.record_submission(record)
        except Exception as e:
            logger.warning(f"Failed to record submission: {e}")


__all__ = [
    "DEFAULT_GAS_PRICE",
    "InferenceJob",
    "JobStatus",
    "JobOutcome",
    "SubmissionPipeline",
]
