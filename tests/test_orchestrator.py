from __future__ import annotations

from datetime import timedelta

from sqlalchemy import text

from poster_sync.models.poster import RawTransaction
from poster_sync.sync.orchestrator import run_sync, select_for_processing
from poster_sync.sync.state import load_state, try_acquire_lease, update_tier_timestamp

from factories import FakePosSource, RecordingSink, make_tx


def _mark_synced(engine, when, tiers=("all", "month", "week")) -> None:
    with engine.connect() as conn:
        conn = conn.execution_options(isolation_level="AUTOCOMMIT")
        for tier in tiers:
            update_tier_timestamp(conn, tier, when)


def _state(engine):
    with engine.connect() as conn:
        return load_state(conn.execution_options(isolation_level="AUTOCOMMIT"))


def _history(now) -> list[dict]:
    return [
        make_tx(1, created=now - timedelta(days=40), client_id=5),
        make_tx(2, created=now - timedelta(days=5)),
        make_tx(3, created=now - timedelta(hours=8), client_id=5),
        make_tx(
            4,
            created=now - timedelta(minutes=5),
            client_id=7,
            service_mode=2,
            processing_status=20,
        ),
    ]


async def test_first_run_walks_every_tier(engine, settings, now) -> None:
    source = FakePosSource(_history(now))
    sink = RecordingSink()

    result = await run_sync("t", engine, sink, settings, source=source, now=now)

    assert result.status == "success"
    assert [t.name for t in result.tiers] == ["all", "month", "week", "today"]
    assert result.created == 4
    assert result.updated == 3 + 3 + 2
    assert result.errors == 0
    assert result.start_cursor is None

    state = _state(engine)
    assert state.last_transaction_id == 4
    for tier in ("all", "month", "week", "today"):
        assert state.tier_synced_at(tier) == now

    assert sorted(e.type for e in sink.events) == ["first_time_customer", "first_time_customer", "revival"]
    assert [(c, m.title) for c, m in sink.pushes] == [(7, "Pedido aceptado")]
    assert sink.passes == [5, 7]


async def test_today_tier_only_processes_ids_above_cursor(engine, settings, now) -> None:
    source = FakePosSource(_history(now))
    await run_sync("t", engine, RecordingSink(), settings, source=source, now=now)

    later = now + timedelta(minutes=2)
    source.transactions.append(make_tx(5, created=now + timedelta(minutes=1), client_id=5))
    result = await run_sync("t", engine, RecordingSink(), settings, source=source, now=later)

    assert [t.name for t in result.tiers] == ["today"]
    assert result.start_cursor == 4
    assert result.fetched_count == 3
    assert result.to_process_count == 1
    assert result.created == 1 and result.updated == 0
    assert _state(engine).last_transaction_id == 5


async def test_cursor_never_moves_back(engine, settings, now) -> None:
    _mark_synced(engine, now)
    with engine.connect() as conn:
        conn.execution_options(isolation_level="AUTOCOMMIT").execute(
            text("UPDATE sync_state SET last_transaction_id = 100")
        )
    source = FakePosSource([make_tx(50, created=now - timedelta(hours=1))])

    result = await run_sync("t", engine, RecordingSink(), settings, source=source, now=now)

    assert result.to_process_count == 0
    assert _state(engine).last_transaction_id == 100


async def test_tiers_follow_their_gates(engine, settings, now) -> None:
    with engine.connect() as conn:
        conn = conn.execution_options(isolation_level="AUTOCOMMIT")
        update_tier_timestamp(conn, "all", now - timedelta(days=31))
        update_tier_timestamp(conn, "month", now - timedelta(days=6))
        update_tier_timestamp(conn, "week", now - timedelta(days=2))

    result = await run_sync("t", engine, RecordingSink(), settings, source=FakePosSource(), now=now)

    assert [t.name for t in result.tiers] == ["all", "week", "today"]


async def test_fetch_error_returns_failed_summary(engine, settings, now) -> None:
    source = FakePosSource(_history(now))
    source.fail_transactions = True

    result = await run_sync("t", engine, RecordingSink(), settings, source=source, now=now)

    assert result.status == "failed"
    assert result.errors == 1
    assert result.created == 0 and result.updated == 0
    assert len(result.error_samples) == 1
    assert "502" in result.error_samples[0]


async def test_bad_records_are_counted_and_sampled(engine, settings, now) -> None:
    _mark_synced(engine, now)
    created = now - timedelta(hours=1)
    bad = [make_tx(1, created=created, transaction_id=f"bad-{i}") for i in range(7)]
    good = make_tx(20, created=created, client_id=5)
    source = FakePosSource([*bad, good])

    result = await run_sync("t", engine, RecordingSink(), settings, source=source, now=now)

    assert result.status == "success"
    assert result.errors == 7
    assert len(result.error_samples) == 5
    assert result.created == 1
    assert _state(engine).last_transaction_id == 20


async def test_duplicate_records_are_upserted_once(engine, settings, now) -> None:
    _mark_synced(engine, now)
    tx = make_tx(30, created=now - timedelta(hours=1))
    source = FakePosSource([tx, dict(tx)])

    result = await run_sync("t", engine, RecordingSink(), settings, source=source, now=now)

    assert result.fetched_count == 2
    assert result.to_process_count == 1
    assert result.created == 1


async def test_post_pass_failures_do_not_fail_the_run(engine, settings, now) -> None:
    _mark_synced(engine, now)
    tx = make_tx(
        40,
        created=now - timedelta(minutes=2),
        client_id=9,
        service_mode=2,
        processing_status=20,
    )
    sink = RecordingSink(fail_push_for={9})

    result = await run_sync("t", engine, sink, settings, source=FakePosSource([tx]), now=now)

    assert result.status == "success"
    assert result.errors == 0
    assert sink.pushes == []
    assert sink.passes == [9]


def test_select_for_processing_orders_oldest_first(now) -> None:
    txs = [RawTransaction.model_validate(make_tx(i, created=now)) for i in (7, 3, 9, 5, 9)]

    assert [t.id for t in select_for_processing(txs, None)] == [3, 5, 7, 9]
    assert [t.id for t in select_for_processing(txs, 5)] == [7, 9]


async def test_lease_is_renewed_before_each_tier(engine, settings, now) -> None:
    with engine.connect() as conn:
        assert try_acquire_lease(
            conn.execution_options(isolation_level="AUTOCOMMIT"), "me", timedelta(seconds=30)
        )
    before = _state(engine).lease_expires_at

    result = await run_sync(
        "t",
        engine,
        RecordingSink(),
        settings,
        source=FakePosSource(),
        now=now,
        lease_owner="me",
        lease_ttl=timedelta(hours=1),
    )

    assert result.status == "success"
    state = _state(engine)
    assert state.lease_owner == "me"
    assert state.lease_expires_at > before


async def test_lost_lease_stops_the_run(engine, settings, now) -> None:
    with engine.connect() as conn:
        assert try_acquire_lease(
            conn.execution_options(isolation_level="AUTOCOMMIT"), "other-host", timedelta(hours=1)
        )
    source = FakePosSource(_history(now))

    result = await run_sync(
        "t", engine, RecordingSink(), settings, source=source, now=now, lease_owner="me"
    )

    assert result.status == "failed"
    assert "no longer held" in result.error_samples[0]
    assert source.transaction_calls == []
    assert _state(engine).last_transaction_id is None
