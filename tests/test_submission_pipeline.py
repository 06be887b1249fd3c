"""
Tests for the inference submission pipeline.

Author: Chainworker Team
License: MIT
"""

import pytest
from unittest.mock import AsyncMock, Mock

from chainworker.blockchain.chain_port import WorkerPayload
from chainworker.exceptions import (
    IncompletePayload,
    InvalidModelOutput,
    MnemonicMissing,
    ModelNotFound,
    SkipSubmission,
    SubmissionFailed,
    WebhookUnavailable,
)
from chainworker.services.submission_gate import SKIP_OUTSIDE_WINDOW
from chainworker.services.submission_pipeline import (
    DEFAULT_GAS_PRICE,
    InferenceJob,
    JobStatus,
    SubmissionPipeline,
)
from chainworker.services.webhook_solicitor import WebhookSolicitor
from chainworker.storage.records import SubmissionStatus


@pytest.fixture
def solicitor():
    solicitor = Mock(spec=WebhookSolicitor)
    solicitor.solicit = AsyncMock(return_value=WorkerPayload(inference_value="1.5"))
    return solicitor


@pytest.fixture
def pipeline(chain, secrets, repository, solicitor, metrics):
    return SubmissionPipeline(
        chain=chain,
        secrets=secrets,
        repository=repository,
        solicitor=solicitor,
        metrics=metrics,
    )


@pytest.fixture
def model(repository, model_wallet):
    return repository.add_model(model_wallet, topic_id=1)


def _job(model):
    return InferenceJob(model_id=model.id, webhook_url=model.webhook_url, topic_id=model.topic_id)


class TestSubmissionPipeline:

    @pytest.mark.asyncio
    async def test_submits_for_gate_nonce(self, pipeline, chain, repository, secrets, model, model_wallet, metrics):
        chain.inferers[1] = {"allo1other"}
        chain.height = 107
        chain.open_nonce = 106

        outcome = await pipeline.run(_job(model))

        assert outcome.status is JobStatus.SUBMITTED
        assert outcome.tx_hash == "0xsubmit"
        assert outcome.nonce_height == 106

        submit = [w for w in chain.writes if w.name == "submit_worker_payload"]
        assert len(submit) == 1
        mnemonic, topic_id, payload, gas_price, nonce = submit[0].args
        assert mnemonic == await secrets.get(model_wallet.secret_ref)
        assert (topic_id, gas_price, nonce) == (1, DEFAULT_GAS_PRICE, 106)
        assert payload.inference_value == "1.5"

        assert len(repository.submissions) == 1
        record = repository.submissions[0]
        assert record.status is SubmissionStatus.SUCCESS
        assert record.nonce_height == 106
        assert record.tx_hash == "0xsubmit"
        assert metrics.get_value("chainworker_submission_success_total", {"topic_id": "1"}) == 1.0
        assert b"chainworker_submission_success_total" in metrics.export()

    @pytest.mark.asyncio
    async def test_webhook_receives_active_inferers(self, pipeline, chain, solicitor, model):
        chain.inferers[1] = {"allo1a", "allo1b"}

        await pipeline.run(_job(model))

        solicitor.solicit.assert_awaited_once_with(model.webhook_url, {"allo1a", "allo1b"})

    @pytest.mark.asyncio
    async def test_model_gas_price_overrides_default(self, pipeline, chain, repository, model_wallet):
        model = repository.add_model(model_wallet, max_gas_price="99uallo")

        await pipeline.run(_job(model))

        assert chain.writes[0].args[3] == "99uallo"

    @pytest.mark.asyncio
    async def test_outside_window_skips_without_writes(self, pipeline, chain, repository, model, metrics):
        chain.height = 300

        outcome = await pipeline.run(_job(model))

        assert outcome.is_skip
        assert outcome.reason == SKIP_OUTSIDE_WINDOW
        assert chain.writes == []
        assert repository.submissions == []
        assert metrics.get_value(
            "chainworker_submission_skipped_total",
            {"topic_id": "1", "reason": SKIP_OUTSIDE_WINDOW},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_same_job_twice_with_window_closed(self, pipeline, chain, model):
        chain.height = 300
        job = _job(model)

        first = await pipeline.run(job)
        second = await pipeline.run(job)

        assert first == second
        assert chain.writes == []

    @pytest.mark.asyncio
    async def test_invalid_payload_fails_before_chain_writes(self, pipeline, chain, solicitor, repository, model, metrics):
        solicitor.solicit.side_effect = IncompletePayload("empty")

        with pytest.raises(IncompletePayload) as exc_info:
            await pipeline.run(_job(model))

        assert not exc_info.value.retryable
        assert chain.writes == []
        assert repository.submissions == []
        assert metrics.get_value(
            "chainworker_submission_failure_total",
            {"topic_id": "1", "reason": "IncompletePayload"},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_webhook_unavailable_is_retryable(self, pipeline, solicitor, model):
        solicitor.solicit.side_effect = WebhookUnavailable("timeout")

        with pytest.raises(WebhookUnavailable) as exc_info:
            await pipeline.run(_job(model))

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_unknown_model(self, pipeline, chain):
        job = InferenceJob(model_id="missing", webhook_url="http://model.test", topic_id=1)

        with pytest.raises(ModelNotFound):
            await pipeline.run(job)

        assert chain.writes == []

    @pytest.mark.asyncio
    async def test_missing_mnemonic(self, pipeline, chain, secrets, model, model_wallet):
        await secrets.delete(model_wallet.secret_ref)

        with pytest.raises(MnemonicMissing) as exc_info:
            await pipeline.run(_job(model))

        assert not exc_info.value.retryable
        assert chain.writes == []

    @pytest.mark.asyncio
    async def test_rejected_submission_is_recorded(self, pipeline, chain, repository, model):
        chain.submit_result = None

        with pytest.raises(SubmissionFailed) as exc_info:
            await pipeline.run(_job(model))

        assert exc_info.value.retryable
        assert len(repository.submissions) == 1
        assert repository.submissions[0].status is SubmissionStatus.FAILED
        assert repository.submissions[0].tx_hash is None

    @pytest.mark.asyncio
    async def test_recording_failure_does_not_fail_job(self, pipeline, repository, model):
        repository.record_error = RuntimeError("db down")

        outcome = await pipeline.run(_job(model))

        assert outcome.status is JobStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_skip_policy_output_becomes_skip(self, pipeline, chain, repository, model):
        chain.submit_error = SkipSubmission("value is not finite")

        outcome = await pipeline.run(_job(model))

        assert outcome.is_skip
        assert outcome.reason == "invalid model output"
        assert repository.submissions == []

    @pytest.mark.asyncio
    async def test_invalid_model_output_fails_job(self, pipeline, chain, model):
        chain.submit_error = InvalidModelOutput("value is not finite")

        with pytest.raises(InvalidModelOutput):
            await pipeline.run(_job(model))

    @pytest.mark.asyncio
    async def test_job_duration_observed(self, pipeline, model, metrics):
        await pipeline.run(_job(model))

        assert metrics.get_value("chainworker_job_duration_seconds_count") == 1.0
