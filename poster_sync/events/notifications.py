from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import IntEnum

from loguru import logger

from poster_sync.models.events import PushMessage, TransactionChange
from poster_sync.notify.sinks import NotificationSink
from poster_sync.utils.time import ensure_utc, parse_iso

MAX_NOTIFICATION_AGE = timedelta(minutes=10)


class ProcessingStatus(IntEnum):
    OPEN = 10
    PREPARING = 20
    READY = 30
    EN_ROUTE = 40
    DELIVERED = 50
    CLOSED = 60
    CANCELLED = 70


class ServiceMode(IntEnum):
    DINE_IN = 1
    TAKEAWAY = 2
    DELIVERY = 3


_TEMPLATES: dict[ProcessingStatus, tuple[str, str]] = {
    ProcessingStatus.PREPARING: (
        "Pedido aceptado",
        "🧑🏽‍🍳 Ahora estamos trabajando en tu pedido, te avisaremos cuando esté listo",
    ),
    ProcessingStatus.READY: ("Pedido listo", "✅ Tu pedido ya está listo, te esperamos!"),
    ProcessingStatus.EN_ROUTE: ("Pedido en camino", "🛵 Tu pedido va en camino"),
    ProcessingStatus.DELIVERED: (
        "Pedido entregado",
        "Disfruta tu pedido ☕️🥐, esperamos que lo disfrutes!",
    ),
    ProcessingStatus.CANCELLED: (
        "Pedido no aceptado",
        "🚨 Comunícate con nosotros para resolverlo cuanto antes",
    ),
}


@dataclass(frozen=True)
class OrderNotification:
    customer_id: int
    transaction_id: int
    message: PushMessage


def notification_for_status(processing_status: int, transaction_id: int) -> PushMessage | None:
    try:
        status = ProcessingStatus(processing_status)
    except ValueError:
        return None
    template = _TEMPLATES.get(status)
    if template is None:
        return None
    title, body = template
    return PushMessage(
        title=title,
        body=body,
        data={
            "transaction_id": str(transaction_id),
            "processing_status": str(int(status)),
        },
    )


def _is_recent(date_start: str | None, now: datetime) -> bool:
    started = parse_iso(date_start)
    if started is None:
        return False
    return ensure_utc(now) - started <= MAX_NOTIFICATION_AGE


def _status_changed(change: TransactionChange) -> bool:
    if change.action == "created":
        return change.processing_status == ProcessingStatus.PREPARING
    return (
        change.old_processing_status is not None
        and change.old_processing_status != change.processing_status
    )


def select_notifications(
    changes: Iterable[TransactionChange], now: datetime
) -> list[OrderNotification]:
    out: list[OrderNotification] = []
    for change in changes:
        if change.service_mode != ServiceMode.TAKEAWAY or change.customer_id is None:
            continue
        if not _is_recent(change.date_start, now):
            continue
        if not _status_changed(change):
            continue
        message = notification_for_status(change.processing_status, change.transaction_id)
        if message is None:
            continue
        out.append(
            OrderNotification(
                customer_id=change.customer_id,
                transaction_id=change.transaction_id,
                message=message,
            )
        )
    return out


async def dispatch_notifications(
    sink: NotificationSink, notifications: list[OrderNotification]
) -> int:
    """Send every notification concurrently and return how many failed."""
    if not notifications:
        return 0
    results = await asyncio.gather(
        *(sink.send_push(n.customer_id, n.message) for n in notifications),
        return_exceptions=True,
    )
    failed = 0
    for notification, result in zip(notifications, results):
        if isinstance(result, BaseException):
            failed += 1
            logger.warning(
                "push for transaction {} (customer {}) failed: {}",
                notification.transaction_id,
                notification.customer_id,
                result,
            )
    return failed
