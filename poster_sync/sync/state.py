from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from sqlalchemy import text
from sqlalchemy.engine import Connection

from poster_sync.db.schema import SYNC_STATE_ID
from poster_sync.db.writers import insert_ignore, select_by_key
from poster_sync.utils.time import iso_z, parse_iso, utc_now

Tier = Literal["all", "month", "week", "today"]

TIER_COLUMNS: dict[Tier, str] = {
    "all": "last_all_sync_at",
    "month": "last_month_sync_at",
    "week": "last_week_sync_at",
    "today": "last_today_sync_at",
}


@dataclass(frozen=True)
class SyncState:
    id: str
    last_transaction_id: int | None = None
    last_today_sync_at: str | None = None
    last_week_sync_at: str | None = None
    last_month_sync_at: str | None = None
    last_all_sync_at: str | None = None
    lease_owner: str | None = None
    lease_expires_at: str | None = None
    updated_at: str | None = None

    def tier_synced_at(self, tier: Tier) -> datetime | None:
        return parse_iso(getattr(self, TIER_COLUMNS[tier]))


def _ensure_row(conn: Connection, state_id: str) -> None:
    insert_ignore(conn, "sync_state", {"id": state_id}, key=("id",))


def load_state(conn: Connection, state_id: str = SYNC_STATE_ID) -> SyncState:
    _ensure_row(conn, state_id)
    row = select_by_key(conn, "sync_state", {"id": state_id})
    assert row is not None
    last_id = row.get("last_transaction_id")
    return SyncState(
        id=row["id"],
        last_transaction_id=None if last_id is None else int(last_id),
        last_today_sync_at=row.get("last_today_sync_at"),
        last_week_sync_at=row.get("last_week_sync_at"),
        last_month_sync_at=row.get("last_month_sync_at"),
        last_all_sync_at=row.get("last_all_sync_at"),
        lease_owner=row.get("lease_owner"),
        lease_expires_at=row.get("lease_expires_at"),
        updated_at=row.get("updated_at"),
    )


def update_tier_timestamp(
    conn: Connection, tier: Tier, synced_at: datetime, state_id: str = SYNC_STATE_ID
) -> None:
    column = TIER_COLUMNS[tier]
    _ensure_row(conn, state_id)
    conn.execute(
        text(f"UPDATE sync_state SET {column} = :ts, updated_at = :now WHERE id = :id;"),
        {"ts": iso_z(synced_at), "now": iso_z(utc_now()), "id": state_id},
    )


def advance_cursor(
    conn: Connection, transaction_id: int, state_id: str = SYNC_STATE_ID
) -> None:
    """Move ``last_transaction_id`` forward; never moves it back."""
    _ensure_row(conn, state_id)
    conn.execute(
        text(
            """
            UPDATE sync_state
            SET last_transaction_id = :tx_id, updated_at = :now
            WHERE id = :id
              AND (last_transaction_id IS NULL OR last_transaction_id < :tx_id);
            """
        ),
        {"tx_id": int(transaction_id), "now": iso_z(utc_now()), "id": state_id},
    )


def try_acquire_lease(
    conn: Connection,
    owner: str,
    ttl: timedelta,
    now: datetime | None = None,
    state_id: str = SYNC_STATE_ID,
) -> bool:
    now_utc = now or utc_now()
    _ensure_row(conn, state_id)
    res = conn.execute(
        text(
            """
            UPDATE sync_state
            SET lease_owner = :owner, lease_expires_at = :expires
            WHERE id = :id
              AND (lease_owner IS NULL OR lease_owner = :owner
                   OR lease_expires_at IS NULL OR lease_expires_at < :now);
            """
        ),
        {
            "owner": owner,
            "expires": iso_z(now_utc + ttl),
            "now": iso_z(now_utc),
            "id": state_id,
        },
    )
    return int(getattr(res, "rowcount", 0) or 0) == 1


class LeaseLost(RuntimeError):
    pass


def renew_lease(
    conn: Connection,
    owner: str,
    ttl: timedelta,
    state_id: str = SYNC_STATE_ID,
) -> None:
    """Push the expiry of a lease ``owner`` still holds; raise if it was taken over."""
    if not try_acquire_lease(conn, owner, ttl, state_id=state_id):
        raise LeaseLost(f"sync lease {state_id} is no longer held by {owner}")


def release_lease(conn: Connection, owner: str, state_id: str = SYNC_STATE_ID) -> None:
    conn.execute(
        text(
            """
            UPDATE sync_state
            SET lease_owner = NULL, lease_expires_at = NULL
            WHERE id = :id AND lease_owner = :owner;
            """
        ),
        {"owner": owner, "id": state_id},
    )
