from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from poster_sync.db.writers import json_dumps, select_by_key, upsert
from poster_sync.models.events import TransactionChange
from poster_sync.models.poster import RawProductLine, RawTransaction
from poster_sync.sync.ensure import SyncContext, ensure
from poster_sync.sync.graph import ENTITY_TABLES, EntityKind, assert_write_order
from poster_sync.sync.normalize import optional_cents, to_cents, to_id, to_int, to_iso
from poster_sync.utils.time import iso_z, utc_now

TRANSACTION_WRITE_PLAN = assert_write_order(
    (
        EntityKind.CLIENT_GROUP,
        EntityKind.CUSTOMER,
        EntityKind.LOCATION,
        EntityKind.TRANSACTION,
        EntityKind.CATEGORY,
        EntityKind.PRODUCT,
        EntityKind.ORDER_LINE,
        EntityKind.MODIFIER_GROUP,
        EntityKind.MODIFIER,
        EntityKind.LINE_MODIFIER,
    )
)

TRANSACTIONS = ENTITY_TABLES[EntityKind.TRANSACTION]
ORDER_LINES = ENTITY_TABLES[EntityKind.ORDER_LINE]
LINE_MODIFIERS = ENTITY_TABLES[EntityKind.LINE_MODIFIER]


def map_transaction(
    tx: RawTransaction, customer_id: int | None, location_id: int | None
) -> dict[str, Any]:
    now = iso_z(utc_now())
    return {
        "id": tx.id,
        "customer_id": customer_id,
        "location_id": location_id,
        "table_id": to_id(tx.table_id),
        "user_id": to_id(tx.user_id),
        "status": to_int(tx.status) or 0,
        "processing_status": to_int(tx.processing_status) or 0,
        "service_mode": to_int(tx.service_mode),
        "pay_type": to_int(tx.pay_type),
        # 0 = sale, 1 = return
        "type": to_int(tx.type) or 0,
        "reason": to_int(tx.reason),
        "is_accepted": tx.is_accepted,
        "comment": tx.transaction_comment or tx.comment or None,
        "discount": tx.discount or None,
        "payed_sum": to_cents(tx.payed_sum),
        "payed_cash": optional_cents(tx.payed_cash),
        "payed_card": optional_cents(tx.payed_card),
        "payed_cert": optional_cents(tx.payed_cert),
        "payed_bonus": optional_cents(tx.payed_bonus),
        "payed_third_party": optional_cents(tx.payed_third_party),
        "round_sum": optional_cents(tx.round_sum),
        "tip_sum": optional_cents(tx.tip_sum),
        "sum": optional_cents(tx.sum),
        "date_created": to_iso(tx.date_create) or now,
        "date_start": to_iso(tx.date_start),
        "date_close": to_iso(tx.date_close),
        "synced_at": now,
        "updated_at": now,
    }


async def upsert_transaction(ctx: SyncContext, tx: RawTransaction) -> TransactionChange:
    existing = select_by_key(
        ctx.conn,
        TRANSACTIONS,
        {"id": tx.id},
        columns=("processing_status", "status", "date_close", "user_id", "is_accepted"),
    )

    customer_id = to_id(tx.client_id)
    await ensure(ctx, EntityKind.CUSTOMER, customer_id)
    location_id = to_id(tx.spot_id)
    await ensure(ctx, EntityKind.LOCATION, location_id)

    row = map_transaction(tx, customer_id, location_id)
    upsert(ctx.conn, TRANSACTIONS, row, key=("id",))

    # Lines reference the transaction row, so they go in only after it exists.
    product_ids = await upsert_order_lines(ctx, tx)

    income = (row["payed_card"] or 0) + (row["payed_cash"] or 0) + (row["payed_third_party"] or 0)
    return TransactionChange(
        transaction_id=tx.id,
        action="updated" if existing else "created",
        customer_id=customer_id,
        processing_status=row["processing_status"],
        status=row["status"],
        service_mode=row["service_mode"],
        date_start=row["date_start"],
        date_created=row["date_created"],
        date_close=row["date_close"],
        payed_sum=row["payed_sum"],
        income_amount=income,
        user_id=row["user_id"],
        is_accepted=row["is_accepted"],
        old_processing_status=existing["processing_status"] if existing else None,
        old_status=existing["status"] if existing else None,
        old_date_close=existing["date_close"] if existing else None,
        old_user_id=existing["user_id"] if existing else None,
        old_is_accepted=bool(existing["is_accepted"]) if existing else False,
        product_ids=tuple(product_ids),
    )


async def upsert_order_lines(ctx: SyncContext, tx: RawTransaction) -> list[int]:
    product_ids: list[int] = []
    for line_index, product in enumerate(tx.products or []):
        product_id = to_id(product.product_id)
        await ensure(ctx, EntityKind.PRODUCT, product_id)
        category_id = to_id(product.category_id)
        await ensure(ctx, EntityKind.CATEGORY, category_id)

        if product.modifiers:
            modifiers_json = json_dumps([m.model_dump(exclude_none=True) for m in product.modifiers])
        elif product.modification:
            modifiers_json = json_dumps(
                [m.model_dump(exclude_none=True) for m in product.modification]
            )
        else:
            modifiers_json = None

        quantity = product.num
        upsert(
            ctx.conn,
            ORDER_LINES,
            {
                "transaction_id": tx.id,
                "line_index": line_index,
                "product_id": product_id,
                "category_id": category_id,
                "product_name": product.product_name,
                "quantity": float(quantity) if quantity and _is_number(quantity) else None,
                "product_sum": optional_cents(product.product_sum),
                "modifiers_json": modifiers_json,
            },
            key=("transaction_id", "line_index"),
        )
        await upsert_line_modifiers(ctx, tx.id, line_index, product)

        if product_id is not None:
            product_ids.append(product_id)
    return product_ids


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def find_modifier_id_by_name(conn: Connection, name: str) -> int | None:
    if not name.strip():
        return None
    found = conn.execute(
        text(
            "SELECT id FROM product_modifiers WHERE name = :name AND is_stub = :stub "
            "ORDER BY id DESC LIMIT 1;"
        ),
        {"name": name, "stub": False},
    ).scalar()
    return None if found is None else int(found)


async def upsert_line_modifiers(
    ctx: SyncContext, transaction_id: int, line_index: int, product: RawProductLine
) -> None:
    to_persist: list[dict[str, Any]] = []

    for modification in product.modification or []:
        modifier_id = to_id(modification.m)
        if modifier_id is None:
            continue
        await ensure(ctx, EntityKind.MODIFIER, modifier_id, modification.model_dump())
        to_persist.append(
            {
                "modifier_id": modifier_id,
                "name": modification.modification_name,
                "group_name": None,
                "amount": to_int(modification.a),
            }
        )

    for named in product.modifiers or []:
        if not named.name:
            continue
        modifier_id = find_modifier_id_by_name(ctx.conn, named.name)
        if modifier_id is None:
            continue
        to_persist.append(
            {
                "modifier_id": modifier_id,
                "name": named.name,
                "group_name": named.group,
                "amount": None,
            }
        )

    for modifier in to_persist:
        upsert(
            ctx.conn,
            LINE_MODIFIERS,
            {"transaction_id": transaction_id, "line_index": line_index, **modifier},
            key=("transaction_id", "line_index", "modifier_id"),
        )
