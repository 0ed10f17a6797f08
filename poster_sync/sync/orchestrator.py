"""Tiered transaction sync.

Four overlapping windows keep the warehouse fresh at different depths:
``all`` (ten years, at most monthly), ``month`` (weekly), ``week`` (daily)
and ``today`` (every run, filtered by the transaction-id cursor). Tiers run
one after another; each fetches its window, upserts the records oldest first
and then runs the best-effort post-pass (lifecycle events, order analytics
events, order notifications, wallet-pass refresh).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.engine import Connection, Engine

from poster_sync.config import Settings
from poster_sync.events.lifecycle import derive_events
from poster_sync.events.notifications import dispatch_notifications, select_notifications
from poster_sync.events.orders import build_order_events
from poster_sync.models.events import TransactionChange
from poster_sync.models.poster import RawTransaction
from poster_sync.notify.sinks import NotificationSink
from poster_sync.source.poster import PosSource, PosterClient
from poster_sync.sync.cache import EntityCache
from poster_sync.sync.ensure import SyncContext
from poster_sync.sync.fetch import fetch_range
from poster_sync.sync.state import (
    SyncState,
    Tier,
    advance_cursor,
    load_state,
    renew_lease,
    update_tier_timestamp,
)
from poster_sync.sync.upsert import upsert_transaction
from poster_sync.utils.time import local_midnight, utc_now

MAX_ERROR_SAMPLES = 5


@dataclass(frozen=True)
class TierConfig:
    name: Tier
    # Run the tier when it never ran or last ran longer ago than this.
    gate: timedelta | None
    window: timedelta | None


TIERS: tuple[TierConfig, ...] = (
    TierConfig("all", gate=timedelta(days=30), window=timedelta(days=3650)),
    TierConfig("month", gate=timedelta(days=7), window=timedelta(days=30)),
    TierConfig("week", gate=timedelta(days=1), window=timedelta(days=7)),
    TierConfig("today", gate=None, window=None),
)


@dataclass
class TierResult:
    name: Tier
    fetched: int = 0
    to_process: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0


@dataclass
class SyncResult:
    status: str = "success"
    created: int = 0
    updated: int = 0
    errors: int = 0
    error_samples: list[str] = field(default_factory=list)
    fetched_count: int = 0
    to_process_count: int = 0
    start_cursor: int | None = None
    tiers: list[TierResult] = field(default_factory=list)

    def record_error(self, message: str) -> None:
        self.errors += 1
        if len(self.error_samples) < MAX_ERROR_SAMPLES:
            self.error_samples.append(message)


def tier_is_due(tier: TierConfig, state: SyncState, now: datetime) -> bool:
    if tier.gate is None:
        return True
    last = state.tier_synced_at(tier.name)
    return last is None or now - last > tier.gate


def tier_window(tier: TierConfig, now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    if tier.window is None:
        return local_midnight(now, tz_name), now
    return now - tier.window, now


def select_for_processing(
    transactions: list[RawTransaction], cursor: int | None
) -> list[RawTransaction]:
    """Dedupe by id and return oldest first, keeping only ids above ``cursor``."""
    by_id: dict[int, RawTransaction] = {}
    for tx in transactions:
        by_id.setdefault(tx.id, tx)
    newest_first = sorted(by_id.values(), key=lambda t: t.id, reverse=True)

    if cursor is not None:
        kept: list[RawTransaction] = []
        for tx in newest_first:
            if tx.id <= cursor:
                break
            kept.append(tx)
        newest_first = kept

    return list(reversed(newest_first))


def _parse_records(records: list[dict[str, Any]], result: SyncResult) -> list[RawTransaction]:
    parsed: list[RawTransaction] = []
    for record in records:
        try:
            parsed.append(RawTransaction.model_validate(record))
        except ValidationError as exc:
            tx_id = record.get("transaction_id") if isinstance(record, dict) else None
            message = f"transaction {tx_id}: invalid record ({exc.error_count()} errors)"
            logger.error(message)
            result.record_error(message)
    return parsed


async def _gather_best_effort(
    label: str, calls: list[Awaitable[None]], describe: Callable[[int], str]
) -> int:
    if not calls:
        return 0
    results = await asyncio.gather(*calls, return_exceptions=True)
    failed = 0
    for i, res in enumerate(results):
        if isinstance(res, BaseException):
            failed += 1
            logger.warning("{} failed for {}: {}", label, describe(i), res)
    return failed


async def post_process(
    conn: Connection,
    sink: NotificationSink,
    changes: list[TransactionChange],
    now: datetime,
) -> None:
    if not changes:
        return
    try:
        events = derive_events(conn, changes)
        await _gather_best_effort(
            "lifecycle publish",
            [sink.publish_lifecycle(e) for e in events],
            lambda i: f"{events[i].type} tx={events[i].transaction_id}",
        )

        order_events = build_order_events(conn, changes)
        await _gather_best_effort(
            "order event publish",
            [sink.publish_order_event(e) for e in order_events],
            lambda i: f"{order_events[i].type} tx={order_events[i].transaction_id}",
        )

        notifications = select_notifications(changes, now)
        failed = await dispatch_notifications(sink, notifications)
        if notifications:
            logger.info("order notifications sent={} failed={}", len(notifications) - failed, failed)

        customers = sorted(
            {c.customer_id for c in changes if c.action == "created" and c.customer_id is not None}
        )
        await _gather_best_effort(
            "wallet pass refresh",
            [sink.update_pass(cid) for cid in customers],
            lambda i: f"customer {customers[i]}",
        )
    except Exception as exc:
        logger.warning("post-processing failed: {}", exc)


async def _run_tier(
    tier: TierConfig,
    ctx: SyncContext,
    sink: NotificationSink,
    settings: Settings,
    state: SyncState,
    now: datetime,
    result: SyncResult,
) -> None:
    date_from, date_to = tier_window(tier, now, settings.sync_timezone)
    records = await fetch_range(
        ctx.source,
        ctx.token,
        date_from,
        date_to,
        chunk_days=settings.sync_chunk_days,
        max_per_chunk=settings.sync_max_per_chunk,
    )
    tier_result = TierResult(name=tier.name, fetched=len(records))
    errors_before = result.errors

    transactions = _parse_records(records, result)
    cursor = state.last_transaction_id if tier.name == "today" else None
    to_process = select_for_processing(transactions, cursor)
    tier_result.to_process = len(to_process)

    changes: list[TransactionChange] = []
    for tx in to_process:
        try:
            change = await upsert_transaction(ctx, tx)
        except Exception as exc:
            message = f"transaction {tx.id}: {exc}"
            logger.error("upsert failed for {}", message)
            result.record_error(message)
            continue
        changes.append(change)
        if change.action == "created":
            tier_result.created += 1
        else:
            tier_result.updated += 1

    await post_process(ctx.conn, sink, changes, now)

    update_tier_timestamp(ctx.conn, tier.name, now)
    if tier.name == "today" and transactions:
        advance_cursor(ctx.conn, max(tx.id for tx in transactions))

    tier_result.errors = result.errors - errors_before
    result.created += tier_result.created
    result.updated += tier_result.updated
    result.fetched_count += tier_result.fetched
    result.to_process_count += tier_result.to_process
    result.tiers.append(tier_result)
    logger.info(
        "tier {} {}..{} fetched={} processed={} created={} updated={} errors={}",
        tier.name,
        date_from.isoformat(),
        date_to.isoformat(),
        tier_result.fetched,
        tier_result.to_process,
        tier_result.created,
        tier_result.updated,
        tier_result.errors,
    )


async def run_sync(
    token: str,
    engine: Engine,
    sink: NotificationSink,
    settings: Settings,
    *,
    source: PosSource | None = None,
    now: datetime | None = None,
    lease_owner: str | None = None,
    lease_ttl: timedelta = timedelta(minutes=10),
) -> SyncResult:
    """Run every due tier once and return the run summary.

    A failing fetch ends the run with a ``failed`` summary instead of raising.
    When ``lease_owner`` is given the lease is renewed before each tier, and a
    lease lost to another runner ends the run as ``failed``.
    """
    run_now = now or utc_now()
    own_source = source is None
    pos: PosSource = source if source is not None else PosterClient.from_settings(settings)
    result = SyncResult()

    try:
        with engine.connect() as conn:
            conn = conn.execution_options(isolation_level="AUTOCOMMIT")
            state = load_state(conn)
            result.start_cursor = state.last_transaction_id
            ctx = SyncContext(conn=conn, source=pos, token=token, cache=EntityCache())

            for tier in TIERS:
                if not tier_is_due(tier, state, run_now):
                    logger.debug("tier {} not due", tier.name)
                    continue
                if lease_owner is not None:
                    renew_lease(conn, lease_owner, lease_ttl)
                await _run_tier(tier, ctx, sink, settings, state, run_now, result)

            if ctx.stubs_written:
                logger.warning("stub rows written this run: {}", ctx.stubs_written)
    except Exception as exc:
        logger.error("sync run failed: {}", exc)
        return SyncResult(
            status="failed",
            errors=1,
            error_samples=[str(exc)],
            start_cursor=result.start_cursor,
        )
    finally:
        if own_source and isinstance(pos, PosterClient):
            await pos.aclose()

    return result
