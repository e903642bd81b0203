import asyncio

import httpx
import pytest

from merchant_pipeline.services.webhook_notifier import WebhookNotifier, flatten_payload

from tests.conftest import request_json


def test_flatten_payload_keeps_only_scalars():
    flat = flatten_payload({
        "status": "merchant_application_draft",
        "months": ["Jan", "Feb"],
        "principals": [{"name": "Ana"}],
        "meta": {"source": "batch"},
        "count": 3,
    })

    assert flat["status"] == "merchant_application_draft"
    assert flat["months"] == "Jan, Feb"
    assert flat["principals"] == '{"name": "Ana"}'
    assert flat["meta"] == '{"source": "batch"}'
    assert flat["count"] == 3


@pytest.mark.asyncio
async def test_notify_posts_in_the_background():
    received = []

    async def handler(request):
        await asyncio.sleep(0)
        received.append(request_json(request))
        return httpx.Response(200, json={"ok": True})

    notifier = WebhookNotifier("https://hooks.test/catch", transport=httpx.MockTransport(handler))

    task = notifier.notify("merchant_application_draft", {"status": "merchant_application_draft", "tags": ["a", "b"]})

    assert task is not None
    assert received == []
    await notifier.drain()
    assert received == [{"status": "merchant_application_draft", "tags": "a, b"}]
    assert task.result() is True
    assert notifier.pending == 0


@pytest.mark.asyncio
async def test_failed_delivery_is_only_logged(caplog):
    def handler(request):
        return httpx.Response(503, text="unavailable")

    notifier = WebhookNotifier("https://hooks.test/catch", transport=httpx.MockTransport(handler))

    task = notifier.notify("merchant_application_submitted", {"Application Id": "app-1"})
    await notifier.drain()

    assert task.result() is False
    assert any("rejected: 503" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_transport_error_does_not_escape():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    notifier = WebhookNotifier("https://hooks.test/catch", transport=httpx.MockTransport(handler))

    task = notifier.notify("merchant_application_submitted", {})
    await notifier.drain()

    assert task.result() is False


@pytest.mark.asyncio
async def test_notify_without_endpoint_drops_event():
    notifier = WebhookNotifier(None)

    assert notifier.notify("merchant_application_draft", {"status": "x"}) is None
    assert notifier.pending == 0
