from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"unsafe SQL identifier: {name!r}")
    return name


def upsert(
    conn: Connection,
    table: str,
    row: Mapping[str, Any],
    key: Sequence[str],
    update: Sequence[str] | None = None,
) -> None:
    """Insert ``row``; on a key conflict overwrite ``update`` columns.

    ``update`` defaults to every non-key column of ``row`` (full overwrite).
    """
    cols = [_ident(c) for c in row]
    key_cols = [_ident(c) for c in key]
    set_cols = [_ident(c) for c in (update if update is not None else cols) if c not in key_cols]

    conflict = f"ON CONFLICT ({', '.join(key_cols)})"
    if set_cols:
        assignments = ", ".join(f"{c} = excluded.{c}" for c in set_cols)
        conflict += f" DO UPDATE SET {assignments}"
    else:
        conflict += " DO NOTHING"

    conn.execute(
        text(
            f"INSERT INTO {_ident(table)} ({', '.join(cols)}) "
            f"VALUES ({', '.join(':' + c for c in cols)}) {conflict};"
        ),
        dict(row),
    )


def insert_ignore(
    conn: Connection, table: str, row: Mapping[str, Any], key: Sequence[str]
) -> None:
    upsert(conn, table, row, key, update=())


def select_by_key(
    conn: Connection, table: str, key: Mapping[str, Any], columns: Sequence[str] = ("*",)
) -> dict[str, Any] | None:
    select_cols = ", ".join(c if c == "*" else _ident(c) for c in columns)
    where = " AND ".join(f"{_ident(k)} = :{k}" for k in key)
    found = (
        conn.execute(text(f"SELECT {select_cols} FROM {_ident(table)} WHERE {where};"), dict(key))
        .mappings()
        .first()
    )
    return None if found is None else dict(found)
