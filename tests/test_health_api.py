from __future__ import annotations

from fastapi.testclient import TestClient

from poster_sync.api.health import create_app
from poster_sync.ops.run_logger import finish_run, start_run


def test_health_reports_database_and_sync_state(engine) -> None:
    run_id = start_run(engine, "sync")
    finish_run(engine, run_id, "success", created=3, updated=1)

    with TestClient(create_app(engine)) as client:
        resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["sql"] == "ok"
    assert body["sync"]["last_transaction_id"] is None
    assert set(body["sync"]["tiers"]) == {"all", "month", "week", "today"}
    assert body["last_run"]["run_id"] == run_id
    assert body["last_run"]["status"] == "success"
    assert body["last_run"]["created"] == 3


def test_health_degrades_when_tables_are_missing(engine) -> None:
    with engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE sync_runs")

    with TestClient(create_app(engine)) as client:
        body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["sql"] == "ok"
    assert "sync_error" in body
