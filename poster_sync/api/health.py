from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from sqlalchemy.engine import Engine

from poster_sync.config import load_settings
from poster_sync.db.engine import get_engine
from poster_sync.db.healthcheck import run_healthcheck
from poster_sync.ops.run_logger import latest_run
from poster_sync.sync.state import TIER_COLUMNS, load_state


def create_app(engine: Engine | None = None) -> FastAPI:
    app = FastAPI(title="Poster Sync Health", version="1.0.0")

    def _engine() -> Engine:
        nonlocal engine
        if engine is None:
            engine = get_engine(load_settings())
        return engine

    @app.get("/health")
    def health() -> dict[str, Any]:
        out: dict[str, Any] = {"status": "ok"}
        db = _engine()

        try:
            check = run_healthcheck(db)
            out["sql"] = "ok"
            out["sql_now"] = str(check["now"])
        except Exception as exc:
            out["sql"] = "degraded"
            out["sql_error"] = str(exc)
            out["status"] = "degraded"
            return out

        try:
            with db.connect() as conn:
                conn = conn.execution_options(isolation_level="AUTOCOMMIT")
                state = load_state(conn)
            out["sync"] = {
                "last_transaction_id": state.last_transaction_id,
                "tiers": {tier: getattr(state, column) for tier, column in TIER_COLUMNS.items()},
                "lease_owner": state.lease_owner,
                "lease_expires_at": state.lease_expires_at,
            }
            out["last_run"] = latest_run(db)
        except Exception as exc:
            out["sync_error"] = str(exc)
            out["status"] = "degraded"

        return out

    return app
