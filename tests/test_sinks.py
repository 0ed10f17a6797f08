from __future__ import annotations

import json

import httpx
import pytest

from poster_sync.models.events import (
    OrderEvent,
    PushMessage,
    WaiterChangeData,
    WaiterChangeEvent,
)
from poster_sync.notify.sinks import LoggingNotificationSink, WebhookNotificationSink, sink_from_settings


def _sink(handler) -> WebhookNotificationSink:
    return WebhookNotificationSink(
        "https://hooks.test/poster",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


async def test_webhook_sink_posts_each_kind() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    sink = _sink(handler)
    await sink.send_push(5, PushMessage(title="Pedido listo", body="ok", data={"transaction_id": "1"}))
    await sink.publish_lifecycle(
        WaiterChangeEvent(
            customer_id=5,
            transaction_id=1,
            data=WaiterChangeData(current_waiter_id=4, previous_waiter_id=3),
        )
    )
    await sink.update_pass(5)
    await sink.aclose()

    assert [b["kind"] for b in bodies] == ["push", "lifecycle", "update_pass"]
    assert bodies[0]["message"]["title"] == "Pedido listo"
    assert bodies[1]["event"]["type"] == "waiter_change"
    assert bodies[1]["event"]["data"] == {"current_waiter_id": 4, "previous_waiter_id": 3}
    assert bodies[2]["customer_id"] == 5


async def test_webhook_sink_retries_server_errors() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503 if calls == 1 else 200)

    sink = _sink(handler)
    await sink.update_pass(5)
    await sink.aclose()

    assert calls == 2


async def test_webhook_sink_raises_on_client_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400)

    sink = _sink(handler)
    with pytest.raises(httpx.HTTPStatusError):
        await sink.update_pass(5)
    await sink.aclose()


def test_sink_from_settings_defaults_to_logging(settings) -> None:
    assert isinstance(sink_from_settings(settings), LoggingNotificationSink)
    configured = settings.model_copy(update={"notify_webhook_url": "https://hooks.test/poster"})
    assert isinstance(sink_from_settings(configured), WebhookNotificationSink)


async def test_webhook_sink_posts_order_events() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    sink = _sink(handler)
    await sink.publish_order_event(
        OrderEvent(
            type="order:closed",
            customer_id=5,
            transaction_id=9,
            service_mode="takeaway",
            income_amount=15000,
            currency="MXN",
            order_count=3,
        )
    )
    await sink.aclose()

    assert bodies == [
        {
            "kind": "order_event",
            "event": {
                "type": "order:closed",
                "customer_id": 5,
                "transaction_id": 9,
                "service_mode": "takeaway",
                "payed_sum": 0,
                "income_amount": 15000,
                "currency": "MXN",
                "order_count": 3,
            },
        }
    ]
