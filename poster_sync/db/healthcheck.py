from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Engine


def run_healthcheck(engine: Engine) -> dict:
    with engine.connect() as conn:
        row = conn.execute(text("SELECT 1 AS ok, CURRENT_TIMESTAMP AS now;")).mappings().one()
        return {"ok": int(row["ok"]), "now": str(row["now"])}
