from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine

from poster_sync.utils.time import iso_z, utc_now


def fail_stale_running_runs(
    engine: Engine,
    run_type_prefix: str | None = None,
    older_than_minutes: int = 10,
    now: datetime | None = None,
) -> int:
    now_utc = now or utc_now()
    params: dict[str, Any] = {
        "now": iso_z(now_utc),
        "cutoff": iso_z(now_utc - timedelta(minutes=older_than_minutes)),
        "message": f"Auto-failed stale running run (older than {int(older_than_minutes)} minutes).",
    }
    prefix_filter = ""
    if run_type_prefix is not None:
        prefix_filter = "AND run_type LIKE :run_type_prefix"
        params["run_type_prefix"] = f"{run_type_prefix}%"
    with engine.begin() as conn:
        res = conn.execute(
            text(f"""
                UPDATE sync_runs
                SET finished_at = :now,
                    status = 'failed',
                    error_message = :message
                WHERE status = 'running'
                  AND finished_at IS NULL
                  AND started_at < :cutoff
                  {prefix_filter};
                """),
            params,
        )
        return int(getattr(res, "rowcount", 0) or 0)


def start_run(engine: Engine, run_type: str) -> str:
    run_id = str(uuid.uuid4())
    with engine.begin() as conn:
        conn.execute(
            text("""
                INSERT INTO sync_runs (run_id, run_type, started_at, status)
                VALUES (:run_id, :run_type, :started_at, 'running');
                """),
            {"run_id": run_id, "run_type": str(run_type)[:200], "started_at": iso_z(utc_now())},
        )
    return run_id


def finish_run(
    engine: Engine,
    run_id: str,
    status: str,
    created: int = 0,
    updated: int = 0,
    errors: int = 0,
    error_message: str | None = None,
) -> None:
    msg = error_message
    if msg is not None and len(msg) > 3800:
        msg = msg[:3800] + "..."

    with engine.begin() as conn:
        conn.execute(
            text("""
                UPDATE sync_runs
                SET finished_at = :finished_at,
                    status = :status,
                    created = :created,
                    updated = :updated,
                    errors = :errors,
                    error_message = :error_message
                WHERE run_id = :run_id
                  AND finished_at IS NULL;
                """),
            {
                "run_id": run_id,
                "finished_at": iso_z(utc_now()),
                "status": str(status)[:32],
                "created": int(created),
                "updated": int(updated),
                "errors": int(errors),
                "error_message": msg,
            },
        )


def latest_run(engine: Engine, run_type_prefix: str | None = None) -> dict[str, Any] | None:
    params: dict[str, Any] = {}
    prefix_filter = ""
    if run_type_prefix is not None:
        prefix_filter = "WHERE run_type LIKE :run_type_prefix"
        params["run_type_prefix"] = f"{run_type_prefix}%"
    with engine.connect() as conn:
        row = conn.execute(
            text(f"""
                SELECT run_id, run_type, status, created, updated, errors,
                       started_at, finished_at, error_message
                FROM sync_runs
                {prefix_filter}
                ORDER BY started_at DESC
                LIMIT 1;
                """),
            params,
        ).mappings().first()
        return None if row is None else dict(row)
