from __future__ import annotations

import sys

from loguru import logger
from sqlalchemy import text
from sqlalchemy.engine import Connection

from poster_sync.sync.graph import ENTITY_TABLES, EntityKind, topological_order

SYNC_STATE_ID = "transactions"

OPS_STATEMENTS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS sync_state(
        id TEXT NOT NULL PRIMARY KEY,
        last_transaction_id BIGINT NULL,
        last_today_sync_at TEXT NULL,
        last_week_sync_at TEXT NULL,
        last_month_sync_at TEXT NULL,
        last_all_sync_at TEXT NULL,
        lease_owner TEXT NULL,
        lease_expires_at TEXT NULL,
        updated_at TEXT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_runs(
        run_id TEXT NOT NULL PRIMARY KEY,
        run_type TEXT NOT NULL,
        started_at TEXT NOT NULL,
        finished_at TEXT NULL,
        status TEXT NOT NULL,
        created INTEGER NOT NULL DEFAULT 0,
        updated INTEGER NOT NULL DEFAULT 0,
        errors INTEGER NOT NULL DEFAULT 0,
        error_message TEXT NULL
    );
    """,
]

ENTITY_STATEMENTS: dict[EntityKind, str] = {
    EntityKind.CLIENT_GROUP: """
        CREATE TABLE IF NOT EXISTS client_groups(
            id BIGINT NOT NULL PRIMARY KEY,
            name TEXT NULL,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.CUSTOMER: """
        CREATE TABLE IF NOT EXISTS customers(
            id BIGINT NOT NULL PRIMARY KEY,
            first_name TEXT NULL,
            last_name TEXT NULL,
            patronymic TEXT NULL,
            phone TEXT NULL,
            email TEXT NULL,
            birthday TEXT NULL,
            city TEXT NULL,
            country TEXT NULL,
            comment TEXT NULL,
            client_group_id BIGINT NULL REFERENCES client_groups(id),
            client_group_name TEXT NULL,
            loyalty_type TEXT NULL,
            bonus BIGINT NULL,
            ewallet BIGINT NULL,
            total_payed_sum BIGINT NULL,
            created_at TEXT NULL,
            updated_at TEXT NULL,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.LOCATION: """
        CREATE TABLE IF NOT EXISTS locations(
            id BIGINT NOT NULL PRIMARY KEY,
            name TEXT NULL,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.CATEGORY: """
        CREATE TABLE IF NOT EXISTS menu_categories(
            id BIGINT NOT NULL PRIMARY KEY,
            name TEXT NULL,
            parent_id BIGINT NULL,
            color TEXT NULL,
            hidden BOOLEAN NULL,
            sort_order INTEGER NULL,
            tag TEXT NULL,
            tax_id BIGINT NULL,
            visible_raw TEXT NULL,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.PRODUCT: """
        CREATE TABLE IF NOT EXISTS products(
            id BIGINT NOT NULL PRIMARY KEY,
            name TEXT NULL,
            menu_category_id BIGINT NULL REFERENCES menu_categories(id),
            barcode TEXT NULL,
            code TEXT NULL,
            color TEXT NULL,
            description TEXT NULL,
            hidden BOOLEAN NULL,
            no_discount BOOLEAN NULL,
            photo TEXT NULL,
            price_cents BIGINT NULL,
            tax_id BIGINT NULL,
            type INTEGER NULL,
            unit TEXT NULL,
            workshop TEXT NULL,
            spots_raw TEXT NULL,
            updated_at TEXT NULL,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.MODIFIER_GROUP: """
        CREATE TABLE IF NOT EXISTS product_modifier_groups(
            id BIGINT NOT NULL PRIMARY KEY,
            product_id BIGINT NULL REFERENCES products(id),
            name TEXT NULL,
            num_min INTEGER NULL,
            num_max INTEGER NULL,
            type INTEGER NULL,
            is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.MODIFIER: """
        CREATE TABLE IF NOT EXISTS product_modifiers(
            id BIGINT NOT NULL PRIMARY KEY,
            group_id BIGINT NULL REFERENCES product_modifier_groups(id),
            product_id BIGINT NULL REFERENCES products(id),
            name TEXT NULL,
            price_diff BIGINT NULL,
            is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.INGREDIENT: """
        CREATE TABLE IF NOT EXISTS ingredients(
            id BIGINT NOT NULL PRIMARY KEY,
            name TEXT NULL,
            unit TEXT NULL,
            weight TEXT NULL,
            losses_raw TEXT NULL,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.PRODUCT_INGREDIENT: """
        CREATE TABLE IF NOT EXISTS product_ingredients(
            product_id BIGINT NOT NULL REFERENCES products(id),
            ingredient_id BIGINT NOT NULL REFERENCES ingredients(id),
            quantity TEXT NULL,
            PRIMARY KEY (product_id, ingredient_id)
        );
    """,
    EntityKind.DISH: """
        CREATE TABLE IF NOT EXISTS dishes(
            id BIGINT NOT NULL PRIMARY KEY,
            product_id BIGINT NOT NULL REFERENCES products(id),
            cooking_time TEXT NULL,
            workshop TEXT NULL,
            is_stub BOOLEAN NOT NULL DEFAULT FALSE
        );
    """,
    EntityKind.TRANSACTION: """
        CREATE TABLE IF NOT EXISTS transactions(
            id BIGINT NOT NULL PRIMARY KEY,
            customer_id BIGINT NULL REFERENCES customers(id),
            location_id BIGINT NULL REFERENCES locations(id),
            table_id BIGINT NULL,
            user_id BIGINT NULL,
            status INTEGER NOT NULL,
            processing_status INTEGER NOT NULL,
            service_mode INTEGER NULL,
            pay_type INTEGER NULL,
            type INTEGER NOT NULL DEFAULT 0,
            reason INTEGER NULL,
            is_accepted BOOLEAN NOT NULL DEFAULT FALSE,
            comment TEXT NULL,
            discount TEXT NULL,
            payed_sum BIGINT NOT NULL DEFAULT 0,
            payed_cash BIGINT NULL,
            payed_card BIGINT NULL,
            payed_cert BIGINT NULL,
            payed_bonus BIGINT NULL,
            payed_third_party BIGINT NULL,
            round_sum BIGINT NULL,
            tip_sum BIGINT NULL,
            sum BIGINT NULL,
            date_created TEXT NOT NULL,
            date_start TEXT NULL,
            date_close TEXT NULL,
            synced_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """,
    EntityKind.ORDER_LINE: """
        CREATE TABLE IF NOT EXISTS order_lines(
            transaction_id BIGINT NOT NULL REFERENCES transactions(id),
            line_index INTEGER NOT NULL,
            product_id BIGINT NULL REFERENCES products(id),
            category_id BIGINT NULL REFERENCES menu_categories(id),
            product_name TEXT NULL,
            quantity REAL NULL,
            product_sum BIGINT NULL,
            modifiers_json TEXT NULL,
            PRIMARY KEY (transaction_id, line_index)
        );
    """,
    EntityKind.LINE_MODIFIER: """
        CREATE TABLE IF NOT EXISTS transaction_product_modifiers(
            transaction_id BIGINT NOT NULL,
            line_index INTEGER NOT NULL,
            modifier_id BIGINT NOT NULL REFERENCES product_modifiers(id),
            name TEXT NULL,
            group_name TEXT NULL,
            amount INTEGER NULL,
            PRIMARY KEY (transaction_id, line_index, modifier_id),
            FOREIGN KEY (transaction_id, line_index)
                REFERENCES order_lines(transaction_id, line_index)
        );
    """,
}

INDEX_STATEMENTS: list[str] = [
    "CREATE INDEX IF NOT EXISTS ix_transactions_customer ON transactions(customer_id, id);",
    "CREATE INDEX IF NOT EXISTS ix_product_modifiers_name ON product_modifiers(name);",
]


def create_statements() -> list[str]:
    missing = set(EntityKind) - set(ENTITY_STATEMENTS)
    if missing:
        raise RuntimeError(f"no DDL for entity kinds: {sorted(missing)}")
    out = list(OPS_STATEMENTS)
    out.extend(ENTITY_STATEMENTS[kind] for kind in topological_order())
    out.extend(INDEX_STATEMENTS)
    return out


def ensure_schema(conn: Connection) -> None:
    for statement in create_statements():
        conn.execute(text(statement))


def table_names() -> list[str]:
    return ["sync_state", "sync_runs", *(ENTITY_TABLES[k] for k in topological_order())]


def main() -> int:
    from poster_sync.config import load_settings
    from poster_sync.db.engine import get_engine

    logger.remove()
    logger.add(sys.stderr, level="INFO")

    engine = get_engine(load_settings())
    with engine.begin() as conn:
        ensure_schema(conn)
    logger.info("Warehouse schema ready: {}", ", ".join(table_names()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
