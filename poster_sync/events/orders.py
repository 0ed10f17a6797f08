"""Order-step analytics derived from transaction changes.

A first sync of an order emits ``order:created`` plus whatever the order has
already gone through (accepted, declined). Later syncs emit one event for the
current step only, so a jump from preparing straight to delivered produces a
single ``order:delivered``.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection

from poster_sync.events.notifications import ProcessingStatus, ServiceMode
from poster_sync.models.events import (
    OrderEvent,
    OrderEventType,
    ServiceModeName,
    TransactionChange,
)

CURRENCY = "MXN"
DECLINED_STATUS = 4

_STEP_EVENTS: dict[int, OrderEventType] = {
    ProcessingStatus.READY: "order:ready",
    ProcessingStatus.DELIVERED: "order:delivered",
    ProcessingStatus.CLOSED: "order:closed",
}

_SERVICE_MODE_NAMES: dict[int, ServiceModeName] = {
    ServiceMode.DINE_IN: "dine_in",
    ServiceMode.TAKEAWAY: "takeaway",
    ServiceMode.DELIVERY: "delivery",
}


def service_mode_name(service_mode: int | None) -> ServiceModeName:
    if service_mode is None:
        return "unknown"
    return _SERVICE_MODE_NAMES.get(service_mode, "unknown")


def detect_order_event_types(change: TransactionChange) -> list[OrderEventType]:
    types: list[OrderEventType] = []

    if change.action == "created":
        types.append("order:created")
        if change.status == DECLINED_STATUS:
            types.append("order:declined")
        if change.is_accepted:
            types.append("order:accepted")
        return types

    if change.is_accepted and not change.old_is_accepted:
        types.append("order:accepted")
    if change.status == DECLINED_STATUS and change.old_status != DECLINED_STATUS:
        types.append("order:declined")
    if (
        change.old_processing_status is not None
        and change.old_processing_status != change.processing_status
    ):
        step = _STEP_EVENTS.get(change.processing_status)
        if step is not None:
            types.append(step)
    return types


def order_counts(conn: Connection, customer_ids: Iterable[int]) -> dict[int, int]:
    ids = sorted(set(customer_ids))
    if not ids:
        return {}
    stmt = text(
        "SELECT customer_id, COUNT(*) AS order_count FROM transactions "
        "WHERE customer_id IN :ids GROUP BY customer_id;"
    ).bindparams(bindparam("ids", expanding=True))
    rows = conn.execute(stmt, {"ids": ids}).mappings().all()
    return {int(r["customer_id"]): int(r["order_count"]) for r in rows}


def build_order_events(
    conn: Connection, changes: Iterable[TransactionChange]
) -> list[OrderEvent]:
    """Order events for every change that has a customer.

    ``order:closed`` carries the income amount with its currency and the
    customer's total order count.
    """
    detected: list[tuple[TransactionChange, int, OrderEventType]] = []
    for change in changes:
        if change.customer_id is None:
            continue
        detected.extend(
            (change, change.customer_id, t) for t in detect_order_event_types(change)
        )

    counts = order_counts(conn, (cid for _, cid, t in detected if t == "order:closed"))

    events: list[OrderEvent] = []
    for change, customer_id, event_type in detected:
        closed = event_type == "order:closed"
        events.append(
            OrderEvent(
                type=event_type,
                customer_id=customer_id,
                transaction_id=change.transaction_id,
                service_mode=service_mode_name(change.service_mode),
                payed_sum=change.payed_sum,
                income_amount=change.income_amount,
                currency=CURRENCY if closed else None,
                order_count=counts.get(customer_id) if closed else None,
            )
        )
    return events
