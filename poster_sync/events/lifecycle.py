from __future__ import annotations

from collections.abc import Iterable

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import Connection

from poster_sync.models.events import (
    CustomerLifecycleEvent,
    FirstTimeCustomerData,
    FirstTimeCustomerEvent,
    MilestoneOrderData,
    MilestoneOrderEvent,
    PaymentCompletionData,
    PaymentCompletionEvent,
    ProductDiscoveryData,
    ProductDiscoveryEvent,
    RevivalData,
    RevivalEvent,
    TransactionChange,
    WaiterChangeData,
    WaiterChangeEvent,
)
from poster_sync.utils.time import parse_iso, whole_days_between

MILESTONES = frozenset({5, 10, 25, 50, 100, 250, 500, 1000})
REVIVAL_DAYS = 30


def _order_count(conn: Connection, customer_id: int, transaction_id: int) -> int:
    return int(
        conn.execute(
            text(
                "SELECT COUNT(*) FROM transactions "
                "WHERE customer_id = :customer_id AND id <= :tx_id;"
            ),
            {"customer_id": customer_id, "tx_id": transaction_id},
        ).scalar()
        or 0
    )


def _previous_order_date(conn: Connection, customer_id: int, transaction_id: int) -> str | None:
    return conn.execute(
        text(
            "SELECT MAX(date_created) FROM transactions "
            "WHERE customer_id = :customer_id AND id < :tx_id;"
        ),
        {"customer_id": customer_id, "tx_id": transaction_id},
    ).scalar()


def _previously_ordered_products(
    conn: Connection, customer_id: int, transaction_id: int
) -> set[int]:
    rows = conn.execute(
        text(
            """
            SELECT DISTINCT ol.product_id
            FROM order_lines ol
            JOIN transactions t ON t.id = ol.transaction_id
            WHERE t.customer_id = :customer_id
              AND t.id < :tx_id
              AND ol.product_id IS NOT NULL;
            """
        ),
        {"customer_id": customer_id, "tx_id": transaction_id},
    ).scalars()
    return {int(r) for r in rows}


def _created_events(conn: Connection, change: TransactionChange) -> list[CustomerLifecycleEvent]:
    customer_id = change.customer_id
    assert customer_id is not None
    tx_id = change.transaction_id
    events: list[CustomerLifecycleEvent] = []

    count = _order_count(conn, customer_id, tx_id)
    if count == 1:
        events.append(
            FirstTimeCustomerEvent(
                customer_id=customer_id,
                transaction_id=tx_id,
                data=FirstTimeCustomerData(
                    payed_sum=change.payed_sum, transaction_date=change.date_created
                ),
            )
        )
    else:
        prior = _previous_order_date(conn, customer_id, tx_id)
        prior_dt = parse_iso(prior)
        current_dt = parse_iso(change.date_created)
        if prior_dt is not None and current_dt is not None:
            days = whole_days_between(prior_dt, current_dt)
            if days >= REVIVAL_DAYS:
                events.append(
                    RevivalEvent(
                        customer_id=customer_id,
                        transaction_id=tx_id,
                        data=RevivalData(
                            days_since_last_order=days,
                            last_transaction_date=str(prior),
                            transaction_date=change.date_created,
                        ),
                    )
                )

    if count in MILESTONES:
        events.append(
            MilestoneOrderEvent(
                customer_id=customer_id,
                transaction_id=tx_id,
                data=MilestoneOrderData(order_count=count),
            )
        )

    if change.product_ids and count > 1:
        seen = _previously_ordered_products(conn, customer_id, tx_id)
        discovered = sorted({p for p in change.product_ids if p not in seen})
        if discovered:
            events.append(
                ProductDiscoveryEvent(
                    customer_id=customer_id,
                    transaction_id=tx_id,
                    data=ProductDiscoveryData(discovered_product_ids=discovered),
                )
            )
    return events


def _updated_events(change: TransactionChange) -> list[CustomerLifecycleEvent]:
    customer_id = change.customer_id
    assert customer_id is not None
    events: list[CustomerLifecycleEvent] = []

    if not change.old_date_close and change.date_close:
        events.append(
            PaymentCompletionEvent(
                customer_id=customer_id,
                transaction_id=change.transaction_id,
                data=PaymentCompletionData(
                    date_close=change.date_close, payed_sum=change.payed_sum
                ),
            )
        )

    if (
        change.old_user_id is not None
        and change.user_id is not None
        and change.old_user_id != change.user_id
    ):
        events.append(
            WaiterChangeEvent(
                customer_id=customer_id,
                transaction_id=change.transaction_id,
                data=WaiterChangeData(
                    current_waiter_id=change.user_id, previous_waiter_id=change.old_user_id
                ),
            )
        )
    return events


def derive_events(
    conn: Connection, changes: Iterable[TransactionChange]
) -> list[CustomerLifecycleEvent]:
    """Lifecycle events for the customers touched by ``changes``.

    Counts and prior dates are bounded by transaction id, so the result for a
    given change does not depend on rows written later in the same batch.
    """
    events: list[CustomerLifecycleEvent] = []
    for change in changes:
        if change.customer_id is None:
            continue
        try:
            if change.action == "created":
                events.extend(_created_events(conn, change))
            else:
                events.extend(_updated_events(change))
        except Exception as exc:
            logger.warning(
                "lifecycle derivation failed for transaction {}: {}", change.transaction_id, exc
            )
    return events
