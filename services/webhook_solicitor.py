"""
Webhook Solicitor.

Asks a model's webhook for its prediction and validates the response
structure before anything is signed.

Request body:
    {"activeWorkers": ["<address>", ...]}

Response body:
    {
        "inferenceValue": "1.23",
        "forecasts": [{"workerAddress": "...", "forecastedValue": "1.20"}],
        "extraData": "<base64>",
        "proof": "...",
        "forecastExtraData": "<base64>"
    }

At least one of ``inferenceValue`` and a non-empty ``forecasts`` list must
be present.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from typing import Any

import aiohttp
from loguru import logger

from chainworker.blockchain.chain_port import ForecastElement, WorkerPayload
from chainworker.exceptions import IncompletePayload, InvalidPayloadField, WebhookUnavailable

DEFAULT_TIMEOUT_SECONDS = 10.0


def _numeric_string(value: Any, field_name: str) -> str:
    # bool is an int subclass and never a valid model output
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InvalidPayloadField(field_name, "must be a number or numeric string")
    return str(value)


def _decode_base64(value: Any, field_name: str) -> bytes:
    if value is None:
        return b""
    if not isinstance(value, str):
        raise InvalidPayloadField(field_name, "must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPayloadField(field_name, f"is not valid base64: {e}") from e


def parse_worker_payload(body: Any) -> WorkerPayload:
    """
    Validate a webhook response body.

    Raises:
        IncompletePayload: neither an inference value nor any forecasts
        InvalidPayloadField: a field has the wrong type or encoding
    """
    if not isinstance(body, dict):
        raise InvalidPayloadField("body", "must be a JSON object")

    inference_value = body.get("inferenceValue")
    # blank strings count as no value
    if isinstance(inference_value, str) and not inference_value.strip():
        inference_value = None
    raw_forecasts = body.get("forecasts")

    if raw_forecasts is not None and not isinstance(raw_forecasts, list):
        raise InvalidPayloadField("forecasts", "must be a list")

    if inference_value is None and not raw_forecasts:
        raise IncompletePayload("Webhook response has neither inferenceValue nor forecasts")

    forecasts = []
    for index, entry in enumerate(raw_forecasts or []):
        name = f"forecasts[{index}]"
        if not isinstance(entry, dict):
            raise InvalidPayloadField(name, "must be an object")
        worker_address = entry.get("workerAddress")
        if not isinstance(worker_address, str) or not worker_address:
            raise InvalidPayloadField(f"{name}.workerAddress", "must be a non-empty string")
        if entry.get("forecastedValue") is None:
            raise InvalidPayloadField(f"{name}.forecastedValue", "is required")
        forecasts.append(
            ForecastElement(
                worker_address=worker_address,
                forecasted_value=_numeric_string(entry["forecastedValue"], f"{name}.forecastedValue"),
            )
        )

    proof = body.get("proof", "")
    if proof is None:
        proof = ""
    if not isinstance(proof, str):
        raise InvalidPayloadField("proof", "must be a string")

    return WorkerPayload(
        inference_value=None if inference_value is None else _numeric_string(inference_value, "inferenceValue"),
        forecasts=forecasts,
        extra_data=_decode_base64(body.get("extraData"), "extraData"),
        proof=proof,
        forecast_extra_data=_decode_base64(body.get("forecastExtraData"), "forecastExtraData"),
    )


class WebhookSolicitor:
    """
    Fetches predictions from model webhooks.

    Usage:
        solicitor = WebhookSolicitor(timeout_seconds=10)
        payload = await solicitor.solicit(model.webhook_url, active_inferers)
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ):
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session

    async def solicit(self, url: str, active_worker_addresses: set[str] | list[str]) -> WorkerPayload:
        """
        POST the active worker set to the webhook and validate the reply.

        Raises:
            WebhookUnavailable: timeout, connection error, non-2xx or non-JSON body
            IncompletePayload / InvalidPayloadField: structurally invalid reply
        """
        request_body = {"activeWorkers": sorted(active_worker_addresses)}

        if self._session is not None:
            body = await self._post(self._session, url, request_body)
        else:
            async with aiohttp.ClientSession() as session:
                body = await self._post(session, url, request_body)

        payload = parse_worker_payload(body)
        logger.info(
            "Received prediction from webhook",
            url=url,
            has_inference=payload.has_inference,
            forecasts=len(payload.forecasts),
        )
        return payload

    async def _post(self, session: aiohttp.ClientSession, url: str, request_body: dict) -> Any:
        try:
            async with session.post(url, json=request_body, timeout=self.timeout) as resp:
                if resp.status < 200 or resp.status >= 300:
                    text = await resp.text()
                    raise WebhookUnavailable(f"Webhook returned HTTP {resp.status}: {text[:200]}")
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise WebhookUnavailable(f"Webhook returned a non-JSON body: {e}") from e
        except asyncio.TimeoutError as e:
            raise WebhookUnavailable(f"Webhook timed out after {self.timeout.total}s") from e
        except aiohttp.ClientError as e:
            raise WebhookUnavailable(f"Webhook request failed: {e}") from e


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "WebhookSolicitor",
    "parse_worker_payload",
]
