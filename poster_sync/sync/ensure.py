"""Dependency resolvers: make sure a referenced row exists before it is used.

One generic :func:`ensure` is driven by the :data:`ENSURE_SPECS` table. For an
id that is neither cached nor already present as a real row, the detail is
fetched from the POS source; its own dependencies are ensured first, then the
full row is upserted. If the source fails or has nothing, a stub row keeps the
foreign keys satisfiable. Stub rows count as absent on the next lookup, so a
later run that succeeds in fetching the detail replaces them.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from sqlalchemy.engine import Connection

from poster_sync.db.writers import insert_ignore, select_by_key, upsert
from poster_sync.source.poster import PosSource
from poster_sync.sync.cache import EntityCache
from poster_sync.sync.graph import (
    ENTITY_DEPENDENCIES,
    ENTITY_TABLES,
    DependencyOrderError,
    EntityKind,
    assert_write_order,
)
from poster_sync.sync.maps import (
    map_category,
    map_client,
    map_client_group,
    map_dish,
    map_ingredient,
    map_modifier,
    map_modifier_group,
    map_product,
)
from poster_sync.sync.normalize import to_id

Detail = dict[str, Any]


@dataclass
class SyncContext:
    conn: Connection
    source: PosSource
    token: str
    cache: EntityCache = field(default_factory=EntityCache)
    stubs_written: int = 0


@dataclass(frozen=True)
class EntitySpec:
    kind: EntityKind
    to_row: Callable[[Detail, int], dict[str, Any]]
    stub_row: Callable[[int], dict[str, Any]]
    fetch: Callable[[SyncContext, int], Awaitable[Detail | None]] | None = None
    dependencies: Callable[[Detail], list[tuple[EntityKind, int | None, Detail | None]]] = (
        lambda _detail: []
    )
    after_write: Callable[[SyncContext, Detail, int], Awaitable[None]] | None = None

    @property
    def table(self) -> str:
        return ENTITY_TABLES[self.kind]


async def _fetch_customer(ctx: SyncContext, client_id: int) -> Detail | None:
    return await ctx.source.get_client_by_id(ctx.token, client_id)


async def _fetch_category(ctx: SyncContext, category_id: int) -> Detail | None:
    if ctx.cache.menu_categories is None:
        try:
            listing = await ctx.source.get_menu_categories(ctx.token)
        except Exception:
            ctx.cache.menu_categories = {}
            raise
        ctx.cache.menu_categories = {
            cid: c for c in listing if (cid := to_id(c.get("category_id"))) is not None
        }
    return ctx.cache.menu_categories.get(category_id)


async def _fetch_product(ctx: SyncContext, product_id: int) -> Detail | None:
    return await ctx.source.get_product(ctx.token, product_id)


def _customer_dependencies(client: Detail) -> list[tuple[EntityKind, int | None, Detail | None]]:
    return [(EntityKind.CLIENT_GROUP, to_id(client.get("client_groups_id")), client)]


def _product_dependencies(product: Detail) -> list[tuple[EntityKind, int | None, Detail | None]]:
    return [(EntityKind.CATEGORY, to_id(product.get("menu_category_id")), None)]


PRODUCT_DETAIL_PLAN = assert_write_order(
    (
        EntityKind.MODIFIER_GROUP,
        EntityKind.MODIFIER,
        EntityKind.INGREDIENT,
        EntityKind.PRODUCT_INGREDIENT,
        EntityKind.DISH,
    ),
    satisfied=(EntityKind.CATEGORY, EntityKind.PRODUCT),
)


async def _write_product_children(ctx: SyncContext, product: Detail, product_id: int) -> None:
    conn = ctx.conn
    for group in product.get("group_modifications") or []:
        if to_id(group.get("dish_modification_group_id")) is None:
            continue
        group_row = map_modifier_group(group, product_id)
        upsert(conn, ENTITY_TABLES[EntityKind.MODIFIER_GROUP], group_row, key=("id",))
        ctx.cache.add(EntityKind.MODIFIER_GROUP, group_row["id"])

        for modification in group.get("modifications") or []:
            if to_id(modification.get("dish_modification_id")) is None:
                continue
            row = map_modifier(modification, product_id, group_row["id"])
            upsert(conn, ENTITY_TABLES[EntityKind.MODIFIER], row, key=("id",))
            ctx.cache.add(EntityKind.MODIFIER, row["id"])

    for ingredient in product.get("ingredients") or []:
        if to_id(ingredient.get("ingredient_id")) is None:
            continue
        row = map_ingredient(ingredient)
        upsert(conn, ENTITY_TABLES[EntityKind.INGREDIENT], row, key=("id",))
        ctx.cache.add(EntityKind.INGREDIENT, row["id"])
        upsert(
            conn,
            ENTITY_TABLES[EntityKind.PRODUCT_INGREDIENT],
            {
                "product_id": product_id,
                "ingredient_id": row["id"],
                "quantity": row["weight"],
            },
            key=("product_id", "ingredient_id"),
        )

    upsert(
        conn,
        ENTITY_TABLES[EntityKind.DISH],
        map_dish({**product, "product_id": product_id}),
        key=("id",),
    )


ENSURE_SPECS: dict[EntityKind, EntitySpec] = {
    EntityKind.CLIENT_GROUP: EntitySpec(
        kind=EntityKind.CLIENT_GROUP,
        to_row=map_client_group,
        stub_row=lambda i: {"id": i, "name": None, "is_stub": False},
    ),
    EntityKind.CUSTOMER: EntitySpec(
        kind=EntityKind.CUSTOMER,
        fetch=_fetch_customer,
        to_row=map_client,
        stub_row=lambda i: {"id": i, "is_stub": True},
        dependencies=_customer_dependencies,
    ),
    EntityKind.LOCATION: EntitySpec(
        kind=EntityKind.LOCATION,
        to_row=lambda d, i: {"id": i, "name": d.get("spot_name"), "is_stub": False},
        stub_row=lambda i: {"id": i, "is_stub": False},
    ),
    EntityKind.CATEGORY: EntitySpec(
        kind=EntityKind.CATEGORY,
        fetch=_fetch_category,
        to_row=map_category,
        stub_row=lambda i: {"id": i, "name": f"category-{i}", "is_stub": True},
    ),
    EntityKind.PRODUCT: EntitySpec(
        kind=EntityKind.PRODUCT,
        fetch=_fetch_product,
        to_row=lambda d, i: map_product({**d, "product_id": d.get("product_id") or i}),
        stub_row=lambda i: {"id": i, "name": f"product-{i}", "is_stub": True},
        dependencies=_product_dependencies,
        after_write=_write_product_children,
    ),
    EntityKind.MODIFIER: EntitySpec(
        kind=EntityKind.MODIFIER,
        to_row=lambda d, i: {"id": i, "name": d.get("modification_name") or f"modifier-{i}", "is_stub": True},
        stub_row=lambda i: {"id": i, "name": f"modifier-{i}", "is_stub": True},
    ),
}


def _exists(conn: Connection, kind: EntityKind, entity_id: int) -> bool:
    found = select_by_key(conn, ENTITY_TABLES[kind], {"id": entity_id}, columns=("is_stub",))
    return found is not None and not found["is_stub"]


async def ensure(
    ctx: SyncContext,
    kind: EntityKind,
    entity_id: int | None,
    detail: Detail | None = None,
) -> None:
    """Guarantee a ``kind`` row with ``entity_id`` exists. Idempotent.

    ``detail`` is only used for kinds without a detail source of their own,
    where the referencing payload carries the data (client group name on a
    client, for example).
    """
    if entity_id is None or entity_id <= 0:
        return
    if ctx.cache.has(kind, entity_id):
        return

    spec = ENSURE_SPECS[kind]
    if _exists(ctx.conn, kind, entity_id):
        ctx.cache.add(kind, entity_id)
        return

    if spec.fetch is not None:
        detail = None
        try:
            detail = await spec.fetch(ctx, entity_id)
        except Exception as exc:
            logger.warning("{} {}: detail fetch failed: {}", kind, entity_id, exc)

    if detail:
        for dep_kind, dep_id, dep_detail in spec.dependencies(detail):
            if dep_kind not in ENTITY_DEPENDENCIES[kind]:
                raise DependencyOrderError(f"{kind} does not declare a dependency on {dep_kind}")
            await ensure(ctx, dep_kind, dep_id, dep_detail)
        row = spec.to_row(detail, entity_id)
        upsert(ctx.conn, spec.table, row, key=("id",))
        if row.get("is_stub"):
            ctx.stubs_written += 1
            logger.warning("{} {}: stored stub row from referencing payload", kind, entity_id)
        if spec.after_write is not None:
            await spec.after_write(ctx, detail, entity_id)
    else:
        stub = spec.stub_row(entity_id)
        insert_ignore(ctx.conn, spec.table, stub, key=("id",))
        if stub.get("is_stub"):
            ctx.stubs_written += 1
            logger.warning("{} {}: stored stub row", kind, entity_id)

    ctx.cache.add(kind, entity_id)
