from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from poster_sync.config import Settings
from poster_sync.db.engine import configure_engine
from poster_sync.db.schema import ensure_schema
from poster_sync.sync.ensure import SyncContext

from factories import FakePosSource, RecordingSink

NOW = datetime(2024, 6, 15, 18, 0, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def engine():
    eng = configure_engine(
        create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    with eng.begin() as conn:
        ensure_schema(conn)
    yield eng
    eng.dispose()


@pytest.fixture
def conn(engine):
    with engine.connect() as c:
        yield c.execution_options(isolation_level="AUTOCOMMIT")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        POSTER_TOKEN="test-token",
        SYNC_TIMEZONE="UTC",
    )


@pytest.fixture
def source() -> FakePosSource:
    return FakePosSource()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def ctx(conn, source) -> SyncContext:
    return SyncContext(conn=conn, source=source, token="test-token")
