from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from poster_sync.config import Settings


def _enable_sqlite_foreign_keys(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure_engine(engine: Engine) -> Engine:
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def get_engine(settings: Settings, database_url: str | None = None) -> Engine:
    url = database_url or settings.database_url
    return configure_engine(create_engine(url, pool_pre_ping=True))
