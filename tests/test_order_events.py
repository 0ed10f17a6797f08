from __future__ import annotations

from datetime import timedelta

import pytest

from poster_sync.events.orders import build_order_events, detect_order_event_types
from poster_sync.models.events import TransactionChange
from poster_sync.models.poster import RawTransaction
from poster_sync.sync.ensure import SyncContext
from poster_sync.sync.orchestrator import post_process
from poster_sync.sync.upsert import upsert_transaction

from factories import RecordingSink, make_tx


def _change(**overrides) -> TransactionChange:
    fields = {
        "transaction_id": 1,
        "action": "updated",
        "customer_id": 5,
        "processing_status": 20,
        "old_processing_status": 20,
        "status": 0,
        "old_status": 0,
        "service_mode": 2,
        "date_start": "2024-06-15T17:55:00.000Z",
        "date_created": "2024-06-15T17:55:00.000Z",
    }
    fields.update(overrides)
    return TransactionChange(**fields)


@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({"action": "created", "old_processing_status": None}, ["order:created"]),
        (
            {"action": "created", "is_accepted": True, "old_processing_status": None},
            ["order:created", "order:accepted"],
        ),
        (
            {"action": "created", "status": 4, "old_processing_status": None},
            ["order:created", "order:declined"],
        ),
        ({"is_accepted": True, "old_is_accepted": False}, ["order:accepted"]),
        ({"is_accepted": True, "old_is_accepted": True}, []),
        ({"status": 4, "old_status": 0}, ["order:declined"]),
        ({"status": 4, "old_status": 4}, []),
        ({"processing_status": 30}, ["order:ready"]),
        ({"processing_status": 50}, ["order:delivered"]),
        ({"processing_status": 60, "old_processing_status": 30}, ["order:closed"]),
        ({"processing_status": 40}, []),
        ({"processing_status": 30, "old_processing_status": 30}, []),
    ],
)
def test_detect_order_event_types(overrides, expected) -> None:
    assert detect_order_event_types(_change(**overrides)) == expected


def test_status_jump_emits_only_the_current_step() -> None:
    change = _change(processing_status=50, old_processing_status=10)

    assert detect_order_event_types(change) == ["order:delivered"]


async def _store(ctx: SyncContext, raw: dict) -> TransactionChange:
    return await upsert_transaction(ctx, RawTransaction.model_validate(raw))


async def test_closed_order_carries_income_and_order_count(ctx: SyncContext, now) -> None:
    await _store(ctx, make_tx(1, created=now - timedelta(days=2), client_id=5))
    await _store(ctx, make_tx(2, created=now - timedelta(hours=1), client_id=5, service_mode=2))
    change = await _store(
        ctx,
        make_tx(
            2,
            created=now - timedelta(hours=1),
            client_id=5,
            service_mode=2,
            processing_status=60,
            payed_sum="150",
            payed_card="100",
            payed_cash="50",
        ),
    )

    events = build_order_events(ctx.conn, [change])

    assert [e.type for e in events] == ["order:closed"]
    closed = events[0]
    assert closed.customer_id == 5
    assert closed.service_mode == "takeaway"
    assert closed.income_amount == 15000
    assert closed.currency == "MXN"
    assert closed.order_count == 2


def test_changes_without_customer_emit_nothing() -> None:
    change = _change(action="created", customer_id=None, old_processing_status=None)

    assert build_order_events(None, [change]) == []  # type: ignore[arg-type]


async def test_post_process_publishes_order_events(ctx: SyncContext, now) -> None:
    change = await _store(ctx, make_tx(7, created=now, client_id=5))
    sink = RecordingSink()

    await post_process(ctx.conn, sink, [change], now)

    assert [(e.type, e.transaction_id) for e in sink.order_events] == [("order:created", 7)]
    assert sink.order_events[0].currency is None
    assert sink.order_events[0].order_count is None
