from __future__ import annotations

import os
import socket
import uuid
from contextlib import contextmanager
from datetime import timedelta

from loguru import logger
from sqlalchemy.engine import Connection

from poster_sync.db.schema import SYNC_STATE_ID
from poster_sync.sync.state import release_lease, try_acquire_lease

DEFAULT_LEASE = timedelta(minutes=10)


class LockNotAcquired(Exception):
    pass


def lease_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


@contextmanager
def sync_lease(
    conn: Connection,
    owner: str | None = None,
    ttl: timedelta = DEFAULT_LEASE,
    state_id: str = SYNC_STATE_ID,
):
    """Hold the sync lease row for the duration of the block.

    ``conn`` must be in AUTOCOMMIT so other processes see the lease at once.
    An expired lease is taken over; a live one held by someone else raises
    :class:`LockNotAcquired`.
    """
    owner = owner or lease_owner_id()
    if not try_acquire_lease(conn, owner, ttl, state_id=state_id):
        logger.info("Sync lease not acquired: {}", state_id)
        raise LockNotAcquired(state_id)

    logger.info("Sync lease acquired: {} by {}", state_id, owner)
    try:
        yield owner
    finally:
        try:
            release_lease(conn, owner, state_id=state_id)
            logger.info("Sync lease released: {}", state_id)
        except Exception as exc:
            logger.warning("Failed to release lease '{}': {}", state_id, exc)
