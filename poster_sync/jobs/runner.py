from __future__ import annotations

import argparse
import asyncio
import sys
import time
from datetime import timedelta
from typing import Any

from loguru import logger
from sqlalchemy.engine import Engine

from poster_sync.config import Settings, load_settings
from poster_sync.db.engine import get_engine
from poster_sync.db.schema import ensure_schema
from poster_sync.jobs.locking import LockNotAcquired, sync_lease
from poster_sync.notify.sinks import NotificationSink, sink_from_settings
from poster_sync.ops.run_logger import fail_stale_running_runs, finish_run, start_run
from poster_sync.source.poster import PosSource
from poster_sync.sync.orchestrator import SyncResult, run_sync


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


def _token(settings: Settings) -> str:
    if settings.poster_token is None:
        raise RuntimeError("POSTER_TOKEN is not set.")
    return settings.poster_token.get_secret_value()


def _record_skipped_run(engine: Engine, *, run_type: str, reason: str) -> None:
    run_id = start_run(engine, run_type)
    finish_run(engine, run_id, "skipped", error_message=reason)


async def _run_with_sink(
    token: str,
    engine: Engine,
    settings: Settings,
    source: PosSource | None,
    sink: NotificationSink | None,
    lease_owner: str,
    lease_ttl: timedelta,
) -> SyncResult:
    """Run one sync; a sink built here from settings is closed afterwards."""
    active = sink if sink is not None else sink_from_settings(settings)
    try:
        return await run_sync(
            token,
            engine,
            active,
            settings,
            source=source,
            lease_owner=lease_owner,
            lease_ttl=lease_ttl,
        )
    finally:
        if sink is None:
            await active.aclose()


def run_sync_once(
    *,
    settings: Settings | None = None,
    engine: Engine | None = None,
    source: PosSource | None = None,
    sink: NotificationSink | None = None,
    run_type: str = "sync",
) -> dict[str, Any]:
    settings = settings or load_settings()
    engine = engine or get_engine(settings)
    token = _token(settings)
    lease_ttl = timedelta(seconds=settings.sync_lease_seconds)

    fail_stale_running_runs(engine, run_type_prefix=run_type, older_than_minutes=10)

    with engine.connect() as conn:
        conn = conn.execution_options(isolation_level="AUTOCOMMIT")
        try:
            with sync_lease(conn, ttl=lease_ttl) as owner:
                run_id = start_run(engine, run_type)
                result = asyncio.run(
                    _run_with_sink(token, engine, settings, source, sink, owner, lease_ttl)
                )
                finish_run(
                    engine,
                    run_id,
                    result.status,
                    created=result.created,
                    updated=result.updated,
                    errors=result.errors,
                    error_message="; ".join(result.error_samples) or None,
                )
                logger.info(
                    "Sync {}: created={} updated={} errors={} fetched={}",
                    result.status,
                    result.created,
                    result.updated,
                    result.errors,
                    result.fetched_count,
                )
                return {
                    "status": result.status,
                    "run_id": run_id,
                    "created": result.created,
                    "updated": result.updated,
                    "errors": result.errors,
                    "error_samples": result.error_samples,
                }
        except LockNotAcquired:
            logger.info("Another sync run is in progress; skipping.")
            _record_skipped_run(
                engine, run_type=run_type, reason="Skipped: lease held by another sync run."
            )
            return {"status": "skipped"}


def init_db(settings: Settings | None = None, engine: Engine | None = None) -> None:
    settings = settings or load_settings()
    engine = engine or get_engine(settings)
    with engine.begin() as conn:
        ensure_schema(conn)
    logger.info("Schema ready.")


def main() -> int:
    parser = argparse.ArgumentParser(description="Sync Poster transactions into the warehouse.")
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--once", action="store_true", help="Run a single sync and exit.")
    mode_group.add_argument("--watch", action="store_true", help="Run forever on an interval.")
    mode_group.add_argument("--init-db", action="store_true", help="Create tables and exit.")
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=None,
        help="Watch interval in seconds (default: SYNC_INTERVAL_SECONDS).",
    )
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)

    if args.init_db:
        init_db(settings)
        return 0

    if args.once:
        result = run_sync_once(settings=settings)
        return 0 if result["status"] in {"success", "skipped"} else 1

    interval_s = max(5, int(args.interval_seconds or settings.sync_interval_seconds))
    while True:
        result = run_sync_once(settings=settings, run_type="sync_watch")
        if result["status"] == "failed":
            logger.error("Watch cycle failed (will retry next interval).")
        time.sleep(interval_s)


if __name__ == "__main__":
    raise SystemExit(main())
