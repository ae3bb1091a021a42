"""Wati template sends against an in-process httpx transport."""
from __future__ import annotations

import json

import httpx
import pytest

from notifier.services.notification.channels.whatsapp import WhatsAppChannel

PARAMS = [{"name": "name", "value": "Jane"}, {"name": "orderId", "value": "ORD-001"}]


def _channel(handler, **kwargs) -> tuple[WhatsAppChannel, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    channel = WhatsAppChannel(
        api_key=kwargs.pop("api_key", "secret"),
        base_url="https://wati.test",
        transport=httpx.MockTransport(record),
        **kwargs,
    )
    return channel, requests


@pytest.mark.asyncio
async def test_successful_template_send():
    channel, requests = _channel(lambda request: httpx.Response(200, json={"result": True, "id": "wamid-1"}))

    result = await channel.send_template("0712 345 678", "payment_reminder", PARAMS)

    assert result.success is True
    assert result.message_id == "wamid-1"
    [request] = requests
    assert request.url.path == "/api/v1/sendTemplateMessage"
    assert request.url.params["whatsappNumber"] == "254712345678"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["template_name"] == "payment_reminder"
    assert body["parameters"] == PARAMS


@pytest.mark.asyncio
async def test_malformed_phone_never_reaches_provider():
    channel, requests = _channel(lambda request: httpx.Response(200, json={"result": True}))

    result = await channel.send_template("12345", "payment_reminder", PARAMS)

    assert result.success is False
    assert "Invalid whatsapp destination" in result.error
    assert requests == []


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_call():
    channel, requests = _channel(lambda request: httpx.Response(200, json={}), api_key="")

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is False
    assert "not configured" in result.error
    assert requests == []


@pytest.mark.asyncio
async def test_provider_rejection_in_body():
    channel, _ = _channel(lambda request: httpx.Response(200, json={"result": False, "info": "Invalid template"}))

    result = await channel.send_template("0712345678", "nope", PARAMS)

    assert result.success is False
    assert result.error == "Invalid template"


@pytest.mark.asyncio
async def test_http_error_status():
    channel, _ = _channel(lambda request: httpx.Response(500, json={"message": "upstream down"}))

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is False
    assert result.error == "HTTP 500: upstream down"


@pytest.mark.asyncio
async def test_timeout_becomes_failed_result():
    def boom(request):
        raise httpx.ReadTimeout("slow", request=request)

    channel, _ = _channel(boom, timeout=2)

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is False
    assert result.error == "timeout after 2s"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [None, [], "ok"])
async def test_non_object_body_is_a_failed_result(body):
    channel, requests = _channel(lambda request: httpx.Response(200, json=body))

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is False
    assert result.error == "Malformed provider response"
    assert len(requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("parameters", [[{"value": "Jane"}], [{"name": "name"}], ["Jane"], 42])
async def test_malformed_parameters_fail_without_call(parameters):
    channel, requests = _channel(lambda request: httpx.Response(200, json={"result": True}))

    result = await channel.send_template("0712345678", "payment_reminder", parameters)

    assert result.success is False
    assert result.error.startswith("Malformed template parameters")
    assert requests == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried_until_success():
    responses = iter([httpx.Response(503, json={"message": "busy"}), httpx.Response(200, json={"result": True})])
    channel, requests = _channel(lambda request: next(responses), retry_base_seconds=0)

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is True
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_connection_error_is_retried():
    calls = []

    def flaky(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"result": True, "id": "wamid-2"})

    channel, _ = _channel(flaky, retry_base_seconds=0)

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is True
    assert result.message_id == "wamid-2"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_attempts_are_capped():
    channel, requests = _channel(lambda request: httpx.Response(502), max_attempts=3, retry_base_seconds=0)

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is False
    assert result.error == "HTTP 502"
    assert len(requests) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401])
async def test_client_errors_are_not_retried(status):
    channel, requests = _channel(lambda request: httpx.Response(status, json={"message": "rejected"}))

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is False
    assert result.error == f"HTTP {status}: rejected"
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_retries_stay_inside_the_timeout_budget():
    channel, requests = _channel(
        lambda request: httpx.Response(503), timeout=0.05, max_attempts=3, retry_base_seconds=1
    )

    result = await channel.send_template("0712345678", "payment_reminder", PARAMS)

    assert result.success is False
    assert result.error == "timeout after 0.05s"
    assert len(requests) == 1
