"""
Tests for webhook payload validation and the webhook HTTP client.

HTTP tests run against a local aiohttp TestServer.

Author: Chainworker Team
License: MIT
"""

import asyncio
import base64

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from chainworker.exceptions import (
    ErrorSeverity,
    IncompletePayload,
    InvalidPayloadField,
    WebhookUnavailable,
)
from chainworker.services.webhook_solicitor import WebhookSolicitor, parse_worker_payload


# =============================================================================
# Payload validation
# =============================================================================

class TestParseWorkerPayload:

    def test_inference_only(self):
        payload = parse_worker_payload({"inferenceValue": "1.23"})

        assert payload.inference_value == "1.23"
        assert payload.forecasts == []
        assert payload.extra_data == b""
        assert payload.proof == ""

    def test_numeric_inference_value(self):
        assert parse_worker_payload({"inferenceValue": 42}).inference_value == "42"

    def test_forecasts_only(self):
        payload = parse_worker_payload({
            "forecasts": [
                {"workerAddress": "allo1a", "forecastedValue": "0.5"},
                {"workerAddress": "allo1b", "forecastedValue": 0.7},
            ],
        })

        assert not payload.has_inference
        assert [f.worker_address for f in payload.forecasts] == ["allo1a", "allo1b"]
        assert payload.forecasts[1].forecasted_value == "0.7"

    def test_base64_fields_are_decoded(self):
        payload = parse_worker_payload({
            "inferenceValue": "1",
            "extraData": base64.b64encode(b"extra").decode(),
            "forecastExtraData": base64.b64encode(b"fx").decode(),
            "proof": "proof-string",
        })

        assert payload.extra_data == b"extra"
        assert payload.forecast_extra_data == b"fx"
        assert payload.proof == "proof-string"

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"forecasts": []},
            {"inferenceValue": None, "proof": "x"},
            {"inferenceValue": ""},
            {"inferenceValue": "   ", "forecasts": []},
        ],
    )
    def test_incomplete_payload(self, body):
        with pytest.raises(IncompletePayload):
            parse_worker_payload(body)

    def test_blank_inference_with_forecasts(self):
        payload = parse_worker_payload({
            "inferenceValue": "",
            "forecasts": [{"workerAddress": "allo1a", "forecastedValue": "2"}],
        })

        assert payload.inference_value is None
        assert payload.has_forecasts

    def test_invalid_base64(self):
        with pytest.raises(InvalidPayloadField) as exc_info:
            parse_worker_payload({"inferenceValue": "1", "extraData": "***not base64***"})

        assert exc_info.value.field_name == "extraData"

    @pytest.mark.parametrize(
        "body, field_name",
        [
            ({"inferenceValue": True}, "inferenceValue"),
            ({"inferenceValue": {"v": 1}}, "inferenceValue"),
            ({"forecasts": "nope"}, "forecasts"),
            ({"forecasts": [{"forecastedValue": "1"}]}, "forecasts[0].workerAddress"),
            ({"forecasts": [{"workerAddress": "allo1a"}]}, "forecasts[0].forecastedValue"),
            ({"inferenceValue": "1", "proof": 7}, "proof"),
        ],
    )
    def test_invalid_fields(self, body, field_name):
        with pytest.raises(InvalidPayloadField) as exc_info:
            parse_worker_payload(body)

        assert exc_info.value.field_name == field_name

    def test_non_object_body(self):
        with pytest.raises(InvalidPayloadField):
            parse_worker_payload(["1.0"])


# =============================================================================
# HTTP client
# =============================================================================

@pytest_asyncio.fixture
async def serve():
    """Start a TestServer for a POST /predict handler and return its URL."""
    servers = []

    async def _serve(handler):
        app = web.Application()
        app.router.add_post("/predict", handler)
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return str(server.make_url("/predict"))

    yield _serve

    for server in servers:
        await server.close()


class TestWebhookSolicitor:

    @pytest.mark.asyncio
    async def test_posts_active_workers_and_parses_reply(self, serve):
        received = {}

        async def handler(request):
            received.update(await request.json())
            return web.json_response({"inferenceValue": "3.14"})

        url = await serve(handler)
        payload = await WebhookSolicitor(timeout_seconds=5).solicit(url, {"allo1b", "allo1a"})

        assert received == {"activeWorkers": ["allo1a", "allo1b"]}
        assert payload.inference_value == "3.14"

    @pytest.mark.asyncio
    async def test_non_2xx_is_unavailable(self, serve):
        async def handler(request):
            return web.Response(status=500, text="boom")

        url = await serve(handler)

        with pytest.raises(WebhookUnavailable, match="HTTP 500") as exc_info:
            await WebhookSolicitor().solicit(url, set())

        assert exc_info.value.severity is ErrorSeverity.RECOVERABLE

    @pytest.mark.asyncio
    async def test_non_json_body_is_unavailable(self, serve):
        async def handler(request):
            return web.Response(text="not json")

        url = await serve(handler)

        with pytest.raises(WebhookUnavailable, match="non-JSON"):
            await WebhookSolicitor().solicit(url, set())

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, serve):
        async def handler(request):
            await asyncio.sleep(2)
            return web.json_response({"inferenceValue": "1"})

        url = await serve(handler)

        with pytest.raises(WebhookUnavailable, match="timed out"):
            await WebhookSolicitor(timeout_seconds=0.1).solicit(url, set())

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        with pytest.raises(WebhookUnavailable):
            await WebhookSolicitor(timeout_seconds=2).solicit("http://127.0.0.1:1/predict", set())

    @pytest.mark.asyncio
    async def test_incomplete_reply_is_not_retryable(self, serve):
        async def handler(request):
            return web.json_response({"proof": "only a proof"})

        url = await serve(handler)

        with pytest.raises(IncompletePayload) as exc_info:
            await WebhookSolicitor().solicit(url, set())

        assert not exc_info.value.retryable
