from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from poster_sync.source.poster import PosSource
from poster_sync.utils.time import DAY

ONE_MS = timedelta(milliseconds=1)


def chunk_windows(
    date_from: datetime, date_to: datetime, chunk_days: int
) -> list[tuple[datetime, datetime]]:
    """Split ``[date_from, date_to]`` into contiguous, non-overlapping windows.

    Each window spans ``chunk_days``; the next one starts 1 ms after the
    previous end and the last one is clamped to ``date_to``.
    """
    step = timedelta(days=chunk_days)
    windows: list[tuple[datetime, datetime]] = []
    current = date_from
    while current < date_to:
        end = min(current + step, date_to)
        windows.append((current, end))
        current = end + ONE_MS
    return windows


async def fetch_range(
    source: PosSource,
    token: str,
    date_from: datetime,
    date_to: datetime,
    chunk_days: int = 30,
    max_per_chunk: int = 1000,
) -> list[dict[str, Any]]:
    span = date_to - date_from

    if span <= timedelta(days=chunk_days):
        fetched = await source.get_transactions(token, date_from, date_to, include_products=True)
        if len(fetched) > max_per_chunk and span > DAY:
            mid = date_from + span / 2
            logger.debug(
                "bisecting {}..{} ({} rows > {})", date_from, date_to, len(fetched), max_per_chunk
            )
            first, second = await asyncio.gather(
                fetch_range(source, token, date_from, mid, chunk_days, max_per_chunk),
                fetch_range(source, token, mid + ONE_MS, date_to, chunk_days, max_per_chunk),
            )
            return [*first, *second]
        return list(fetched)

    windows = chunk_windows(date_from, date_to, chunk_days)
    results = await asyncio.gather(
        *(
            fetch_range(source, token, start, end, chunk_days, max_per_chunk)
            for start, end in windows
        )
    )
    return [tx for chunk in results for tx in chunk]
