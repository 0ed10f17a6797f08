from __future__ import annotations

from typing import Any, Protocol

import httpx
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from poster_sync.config import Settings
from poster_sync.models.events import (
    CustomerLifecycleEvent,
    OrderEvent,
    PushMessage,
    lifecycle_event_adapter,
)


class NotificationSink(Protocol):
    async def send_push(self, customer_id: int, message: PushMessage) -> None: ...

    async def publish_lifecycle(self, event: CustomerLifecycleEvent) -> None: ...

    async def publish_order_event(self, event: OrderEvent) -> None: ...

    async def update_pass(self, customer_id: int) -> None: ...

    async def aclose(self) -> None: ...


class LoggingNotificationSink:
    """Sink used when no webhook is configured: everything goes to the log."""

    async def send_push(self, customer_id: int, message: PushMessage) -> None:
        logger.info("push -> customer {}: {} | {}", customer_id, message.title, message.body)

    async def publish_lifecycle(self, event: CustomerLifecycleEvent) -> None:
        logger.info(
            "lifecycle {} customer={} tx={}", event.type, event.customer_id, event.transaction_id
        )

    async def publish_order_event(self, event: OrderEvent) -> None:
        logger.info("{} customer={} tx={}", event.type, event.customer_id, event.transaction_id)

    async def update_pass(self, customer_id: int) -> None:
        logger.debug("wallet pass refresh requested for customer {}", customer_id)

    async def aclose(self) -> None:
        return None


class WebhookNotificationSink:
    """Forwards everything a sync run emits to one HTTP endpoint.

    Each call is a JSON ``POST`` with a ``kind`` field. Transport errors and
    5xx responses are retried a few times; the last failure propagates to the
    caller, which logs it.
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> None:
        response = await self._client.post(self.url, json=payload)
        if response.status_code >= 500:
            raise httpx.TransportError(f"webhook returned {response.status_code}")
        response.raise_for_status()

    async def send_push(self, customer_id: int, message: PushMessage) -> None:
        await self._post(
            {"kind": "push", "customer_id": customer_id, "message": message.model_dump()}
        )

    async def publish_lifecycle(self, event: CustomerLifecycleEvent) -> None:
        payload = lifecycle_event_adapter.dump_python(event, mode="json")
        await self._post({"kind": "lifecycle", "event": payload})

    async def publish_order_event(self, event: OrderEvent) -> None:
        await self._post({"kind": "order_event", "event": event.model_dump(mode="json")})

    async def update_pass(self, customer_id: int) -> None:
        await self._post({"kind": "update_pass", "customer_id": customer_id})


def sink_from_settings(settings: Settings) -> NotificationSink:
    if settings.notify_webhook_url:
        token = settings.notify_webhook_token
        return WebhookNotificationSink(
            settings.notify_webhook_url,
            token=token.get_secret_value() if token is not None else None,
        )
    return LoggingNotificationSink()
