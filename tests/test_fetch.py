from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime, timedelta

import pytest

from poster_sync.source.poster import PosterApiError
from poster_sync.sync.fetch import ONE_MS, chunk_windows, fetch_range

from factories import FakePosSource, make_tx

START = datetime(2024, 1, 1, tzinfo=UTC)


def test_chunk_windows_are_contiguous_and_clamped() -> None:
    end = START + timedelta(days=75)
    windows = chunk_windows(START, end, chunk_days=30)

    assert len(windows) == 3
    assert windows[0] == (START, START + timedelta(days=30))
    for (_, prev_end), (next_start, _) in zip(windows, windows[1:]):
        assert next_start == prev_end + ONE_MS
    assert windows[-1][1] == end


async def test_fetch_range_chunks_return_every_record_once() -> None:
    txs = [make_tx(i, created=START + timedelta(days=i, hours=3)) for i in range(1, 90)]
    source = FakePosSource(txs)

    fetched = await fetch_range(source, "t", START, START + timedelta(days=90), chunk_days=30)

    assert len(source.transaction_calls) == 3
    assert Counter(t["transaction_id"] for t in fetched) == Counter(t["transaction_id"] for t in txs)


async def test_fetch_range_bisects_oversized_windows() -> None:
    txs = [make_tx(i, created=START + timedelta(hours=5 * i)) for i in range(1, 20)]
    source = FakePosSource(txs)

    fetched = await fetch_range(
        source, "t", START, START + timedelta(days=4), chunk_days=30, max_per_chunk=5
    )

    assert len(source.transaction_calls) > 1
    assert Counter(t["transaction_id"] for t in fetched) == Counter(t["transaction_id"] for t in txs)


async def test_fetch_range_does_not_bisect_single_day() -> None:
    txs = [make_tx(i, created=START + timedelta(minutes=i)) for i in range(1, 20)]
    source = FakePosSource(txs)

    fetched = await fetch_range(
        source, "t", START, START + timedelta(hours=23), chunk_days=30, max_per_chunk=5
    )

    assert len(source.transaction_calls) == 1
    assert len(fetched) == 19


async def test_fetch_range_propagates_source_errors() -> None:
    source = FakePosSource()
    source.fail_transactions = True

    with pytest.raises(PosterApiError):
        await fetch_range(source, "t", START, START + timedelta(days=90), chunk_days=30)
