"""
Emissions Connector - Chain Port implementation over the Emissions pallet

Reads topic state, active worker sets, unfulfilled nonces and EMA scores,
and submits signed worker payloads, registrations and treasury transfers.

Reliability:
- Every call runs the blocking substrate client in a worker thread
- Failures are classified; node failures rotate to the next RPC node,
  sequence mismatches retry with the nonce the chain expects, and
  insufficient-funds errors stop retrying
- Bounded retries with exponential backoff (1 s, 2 s, 4 s by default)

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Awaitable, Callable

from loguru import logger
from substrateinterface import Keypair

from chainworker.config import AMOUNT_PATTERN, ChainConfig, SubmissionConfig
from chainworker.exceptions import InvalidGasPrice
from chainworker.monitoring.logging_config import log_chain_transaction
from chainworker.monitoring.metrics import SubmissionMetrics

from .bounded_decimal import format_bounded_exp40dec
from .chain_errors import ChainErrorAction, classify_chain_error
from .chain_port import ALREADY_REGISTERED, TopicDetails, TxResult, WorkerPayload
from .substrate_client import ExtrinsicReceipt, SubstrateClient

EMISSIONS = "Emissions"
BALANCES = "Balances"


class ExtrinsicFailed(RuntimeError):
    """The extrinsic was included but dispatch failed."""


def parse_amount(amount: str) -> tuple[int, str]:
    """
    Parse a coin string such as "10uallo".

    Returns:
        (amount, denom)

    Raises:
        ValueError: if the string is not <digits><letters>
    """
    match = AMOUNT_PATTERN.match(amount.strip())
    if not match:
        raise ValueError(f"Invalid amount string: {amount!r}")
    return int(match.group(1)), match.group(2)


def canonical_json(value: Any) -> bytes:
    """Deterministic JSON encoding used for signing."""
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


class EmissionsConnector:
    """
    Chain Port backed by a Substrate node running the Emissions pallet.

    Usage:
        client = SubstrateClient(config.chain)
        chain = EmissionsConnector(client, config.chain, config.submission)

        topic = await chain.get_topic_details(1)
        nonce = await chain.derive_latest_open_worker_nonce(1)
    """

    def __init__(
        self,
        client: SubstrateClient,
        chain_config: ChainConfig,
        submission_config: SubmissionConfig | None = None,
        metrics: SubmissionMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the connector.

        Args:
            client: Substrate RPC client
            chain_config: Retry, denomination and scan settings
            submission_config: Value encoding and dry-run settings
            metrics: Optional metrics sink for node failovers
            sleep: Backoff sleep (replaced in tests)
        """
        self.client = client
        self.chain_config = chain_config
        self.submission_config = submission_config or SubmissionConfig()
        self.metrics = metrics
        self._sleep = sleep

        logger.info(
            "Initialized EmissionsConnector",
            rpc_url=client.rpc_url,
            dry_run=self.submission_config.dry_run_transactions,
        )

    # =========================================================================
    # Retry core
    # =========================================================================

    async def _call_with_retry(
        self,
        operation: str,
        call: Callable[[int | None], Any],
    ) -> tuple[bool, Any]:
        """
        Run a blocking chain call with classification-driven retry.

        Args:
            operation: Name used in logs
            call: Blocking callable; receives the account nonce to use
                (None unless the chain reported a sequence mismatch)

        Returns:
            (ok, result). ok is False when every attempt failed.
        """
        delay = self.chain_config.initial_retry_delay
        max_retries = self.chain_config.max_retries
        nonce_override: int | None = None

        for attempt in range(1, max_retries + 1):
            try:
                return True, await self._run_blocking(operation, call, nonce_override)
            except Exception as e:
                processed = classify_chain_error(e)
                # error goes in extra: loguru formats the message when kwargs are given
                logger.warning(
                    f"Attempt {attempt} of {operation} failed",
                    error=str(e),
                    action=processed.action.value,
                )

                if processed.action is ChainErrorAction.FAIL:
                    logger.error(f"{operation} failed permanently: {e}")
                    return False, None

                if processed.action is ChainErrorAction.SWITCH_NODE:
                    await self._switch_node()
                elif processed.action is ChainErrorAction.RESET_SEQUENCE:
                    nonce_override = processed.expected_sequence

                if attempt == max_retries:
                    logger.error(f"{operation} failed after {max_retries} attempts")
                    return False, None

                await self._sleep(delay)
                delay *= 2

        return False, None

    async def _run_blocking(self, operation: str, call: Callable[[int | None], Any], nonce: int | None) -> Any:
        """Run a blocking client call in a worker thread, bounded by the RPC timeout."""
        timeout = self.chain_config.rpc_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(call, nonce), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"{operation} timed out after {timeout}s") from None

    async def _switch_node(self) -> None:
        # switch_node waits for the client lock, so it must not run on the event loop
        try:
            await asyncio.to_thread(self.client.switch_node)
        except TimeoutError as e:
            logger.warning(f"Could not switch RPC node: {e}")
            return
        if self.metrics:
            self.metrics.record_node_switch()

    async def _query(self, storage_function: str, params: list[Any]) -> tuple[bool, Any]:
        return await self._call_with_retry(
            f"{EMISSIONS}.{storage_function}",
            lambda _nonce: self.client.query_storage(EMISSIONS, storage_function, params),
        )

    async def _query_map_keys(self, storage_function: str, topic_id: int) -> set[str]:
        ok, entries = await self._call_with_retry(
            f"{EMISSIONS}.{storage_function}",
            lambda _nonce: self.client.query_map(EMISSIONS, storage_function, params=[topic_id]),
        )
        if not ok:
            return set()
        return {str(key) for key, _ in entries}

    async def _submit(
        self,
        mnemonic: str,
        call_module: str,
        call_function: str,
        call_params: dict[str, Any],
        tip: int = 0,
    ) -> TxResult | None:
        """Sign and submit an extrinsic with retries. Returns None on failure."""
        keypair = SubstrateClient.create_keypair(mnemonic, ss58_format=self.chain_config.ss58_format)
        operation = f"{call_module}.{call_function}"

        if self.submission_config.dry_run_transactions:
            tx_hash = f"dry-run-{uuid.uuid4().hex}"
            logger.info(
                f"DRY RUN: not broadcasting {operation}",
                signer=keypair.ss58_address,
                tx_hash=tx_hash,
            )
            return TxResult(tx_hash=tx_hash)

        def attempt(nonce: int | None) -> ExtrinsicReceipt:
            receipt = self.client.submit_extrinsic(
                keypair=keypair,
                call_module=call_module,
                call_function=call_function,
                call_params=call_params,
                tip=tip,
                nonce=nonce,
            )
            if not receipt.success:
                raise ExtrinsicFailed(receipt.error or f"{operation} dispatch failed")
            return receipt

        ok, receipt = await self._call_with_retry(operation, attempt)
        if not ok:
            log_chain_transaction(operation, success=False)
            return None

        log_chain_transaction(
            operation,
            success=True,
            tx_hash=receipt.extrinsic_hash,
            block_number=receipt.block_number,
        )
        return TxResult(
            tx_hash=receipt.extrinsic_hash,
            block_number=receipt.block_number,
            raw_log=json.dumps(receipt.events, default=str) if receipt.events else None,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_topic_details(self, topic_id: int) -> TopicDetails | None:
        """
        Read topic state and activity flag.

        Returns:
            TopicDetails, or None if the topic does not exist or the chain
            could not be read
        """
        ok, topic = await self._query("Topics", [topic_id])
        if not ok or not topic:
            logger.warning(f"Topic {topic_id} not found or unreadable")
            return None

        ok, active = await self._query("ActiveTopics", [topic_id])
        if not ok:
            return None

        try:
            return TopicDetails(
                topic_id=topic_id,
                is_active=bool(active),
                epoch_length=int(topic["epoch_length"]),
                epoch_last_ended=int(topic["epoch_last_ended"]),
                worker_submission_window=int(topic["worker_submission_window"]),
                creator=str(topic.get("creator", "")),
                metadata=str(topic.get("metadata", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed topic {topic_id} on chain: {e}")
            return None

    async def get_current_block_height(self) -> int | None:
        ok, height = await self._call_with_retry(
            "get_block_number",
            lambda _nonce: self.client.get_block_number(),
        )
        return int(height) if ok and height is not None else None

    async def get_active_inferers(self, topic_id: int) -> set[str]:
        return await self._query_map_keys("ActiveInferers", topic_id)

    async def get_active_forecasters(self, topic_id: int) -> set[str]:
        return await self._query_map_keys("ActiveForecasters", topic_id)

    async def get_active_reputers(self, topic_id: int) -> set[str]:
        return await self._query_map_keys("ActiveReputers", topic_id)

    async def get_unfulfilled_worker_nonces(self, topic_id: int) -> set[int] | None:
        """Block heights of the topic's open worker nonces, None if unreadable."""
        ok, raw = await self._query("UnfulfilledWorkerNonces", [topic_id])
        if not ok:
            return None
        return _parse_nonces(raw)

    async def derive_latest_open_worker_nonce(self, topic_id: int) -> int | None:
        """
        Find the most recent open worker nonce inside the current window.

        Scans heights descending from min(current, window_end) down to
        max(window_start, start - limit + 1), limit being the window size
        clamped to [1, nonce_scan_limit].
        """
        topic = await self.get_topic_details(topic_id)
        current = await self.get_current_block_height()
        if topic is None or current is None:
            logger.error("Missing topic info or current height", topic_id=topic_id)
            return None

        window_start, window_end = topic.window_start, topic.window_end
        if current < window_start or current > window_end:
            logger.info(
                "Outside worker submission window",
                current=current,
                window_start=window_start,
                window_end=window_end,
            )
            return None

        open_nonces = await self.get_unfulfilled_worker_nonces(topic_id)
        if not open_nonces:
            return None

        limit = max(1, min(self.chain_config.nonce_scan_limit, topic.worker_submission_window))
        start = min(current, window_end)
        scan_start = max(window_start, start - limit + 1)

        for height in range(start, scan_start - 1, -1):
            if height in open_nonces:
                logger.info("Found unfulfilled worker nonce in window", nonce=height, topic_id=topic_id)
                return height

        logger.info(
            "No unfulfilled nonce found in scan range",
            start=start,
            scan_start=scan_start,
            topic_id=topic_id,
        )
        return None

    async def get_worker_ema_score(self, topic_id: int, address: str) -> str | None:
        ok, raw = await self._query("InfererScoreEmas", [topic_id, address])
        if not ok or raw is None:
            return None
        if isinstance(raw, dict):
            raw = raw.get("score")
        return None if raw is None else str(raw)

    async def is_worker_registered(self, topic_id: int, address: str) -> bool:
        ok, raw = await self._query("WorkerRegistrations", [topic_id, address])
        return bool(ok and raw)

    # =========================================================================
    # Writes
    # =========================================================================

    def _gas_price_tip(self, gas_price: str) -> int:
        try:
            amount, denom = parse_amount(gas_price)
        except ValueError as e:
            raise InvalidGasPrice(str(e)) from e
        if denom != self.chain_config.denom:
            raise InvalidGasPrice(
                f"Gas price denomination {denom!r} does not match chain denomination "
                f"{self.chain_config.denom!r}"
            )
        return amount

    def build_worker_bundle(
        self,
        worker: str,
        topic_id: int,
        payload: WorkerPayload,
        nonce: int,
    ) -> dict[str, Any]:
        """
        Build the unsigned inference/forecast bundle.

        Values are converted to BoundedExp40Dec integer strings here, so
        unusable model output surfaces before any chain write.
        """
        precision = self.submission_config.bounded_exp40dec_precision
        policy = self.submission_config.invalid_model_output_policy

        inference = None
        if payload.has_inference:
            inference = {
                "topic_id": topic_id,
                "block_height": nonce,
                "inferer": worker,
                "value": format_bounded_exp40dec(payload.inference_value, precision, policy),
                "extra_data": f"0x{payload.extra_data.hex()}",
                "proof": payload.proof,
            }

        forecast = None
        if payload.has_forecasts:
            forecast = {
                "topic_id": topic_id,
                "block_height": nonce,
                "forecaster": worker,
                "forecast_elements": [
                    {
                        "inferer": element.worker_address,
                        "value": format_bounded_exp40dec(element.forecasted_value, precision, policy),
                    }
                    for element in payload.forecasts
                ],
                "extra_data": f"0x{payload.forecast_extra_data.hex()}",
            }

        return {"inference": inference, "forecast": forecast}

    async def submit_worker_payload(
        self,
        mnemonic: str,
        topic_id: int,
        payload: WorkerPayload,
        gas_price: str,
        nonce: int,
    ) -> TxResult | None:
        """
        Sign and submit a worker payload for the given nonce.

        Raises:
            InvalidModelOutput / SkipSubmission: model values cannot be encoded
            InvalidGasPrice: malformed gas price or wrong denomination
        """
        keypair = SubstrateClient.create_keypair(mnemonic, ss58_format=self.chain_config.ss58_format)
        worker = keypair.ss58_address
        tip = self._gas_price_tip(gas_price)

        bundle = self.build_worker_bundle(worker, topic_id, payload, nonce)
        signature = keypair.sign(canonical_json(bundle))

        call_params = {
            "worker": worker,
            "nonce": {"block_height": nonce},
            "topic_id": topic_id,
            "inference_forecasts_bundle": bundle,
            "inferences_forecasts_bundle_signature": f"0x{signature.hex()}",
            "pubkey": f"0x{keypair.public_key.hex()}",
        }

        logger.info(
            "Submitting worker payload",
            topic_id=topic_id,
            nonce=nonce,
            worker=worker,
            has_inference=payload.has_inference,
            forecasts=len(payload.forecasts),
        )
        return await self._submit(mnemonic, EMISSIONS, "insert_worker_payload", call_params, tip=tip)

    async def transfer_funds(self, from_mnemonic: str, to_address: str, amount: int) -> TxResult | None:
        logger.info(
            "Transferring funds",
            to_address=to_address,
            amount=amount,
            denom=self.chain_config.denom,
        )
        return await self._submit(
            from_mnemonic,
            BALANCES,
            "transfer_keep_alive",
            {"dest": to_address, "value": amount},
        )

    async def register_worker_on_chain(self, mnemonic: str, topic_id: int) -> TxResult | None:
        keypair = SubstrateClient.create_keypair(mnemonic, ss58_format=self.chain_config.ss58_format)
        address = keypair.ss58_address

        if await self.is_worker_registered(topic_id, address):
            logger.info("Worker already registered", topic_id=topic_id, worker=address)
            return TxResult(tx_hash=ALREADY_REGISTERED)

        return await self._submit(
            mnemonic,
            EMISSIONS,
            "register",
            {"topic_id": topic_id, "owner": address, "is_reputer": False},
        )


def _parse_nonces(raw: Any) -> set[int]:
    """Accept [h, ...], [{"block_height": h}, ...] or {"nonces": [...]}."""
    if raw is None:
        return set()
    if isinstance(raw, dict):
        raw = raw.get("nonces", [])

    heights: set[int] = set()
    for item in raw:
        if isinstance(item, dict):
            item = item.get("block_height")
        if item is None:
            continue
        heights.add(int(item))
    return heights


__all__ = [
    "EmissionsConnector",
    "ExtrinsicFailed",
    "parse_amount",
    "canonical_json",
]
