"""Static foreign-key dependency graph of the warehouse entities.

Every table that references another table declares it here. DDL is emitted in
topological order, and write plans are checked against this graph so a
dependent row is never written before the rows it points at.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import StrEnum
from functools import lru_cache
from graphlib import CycleError, TopologicalSorter


class EntityKind(StrEnum):
    CLIENT_GROUP = "client_group"
    CUSTOMER = "customer"
    LOCATION = "location"
    CATEGORY = "category"
    PRODUCT = "product"
    MODIFIER_GROUP = "modifier_group"
    MODIFIER = "modifier"
    INGREDIENT = "ingredient"
    PRODUCT_INGREDIENT = "product_ingredient"
    DISH = "dish"
    TRANSACTION = "transaction"
    ORDER_LINE = "order_line"
    LINE_MODIFIER = "line_modifier"


class DependencyOrderError(RuntimeError):
    pass


ENTITY_DEPENDENCIES: dict[EntityKind, tuple[EntityKind, ...]] = {
    EntityKind.CLIENT_GROUP: (),
    EntityKind.CUSTOMER: (EntityKind.CLIENT_GROUP,),
    EntityKind.LOCATION: (),
    EntityKind.CATEGORY: (),
    EntityKind.PRODUCT: (EntityKind.CATEGORY,),
    EntityKind.MODIFIER_GROUP: (EntityKind.PRODUCT,),
    EntityKind.MODIFIER: (EntityKind.MODIFIER_GROUP, EntityKind.PRODUCT),
    EntityKind.INGREDIENT: (),
    EntityKind.PRODUCT_INGREDIENT: (EntityKind.PRODUCT, EntityKind.INGREDIENT),
    EntityKind.DISH: (EntityKind.PRODUCT,),
    EntityKind.TRANSACTION: (EntityKind.CUSTOMER, EntityKind.LOCATION),
    EntityKind.ORDER_LINE: (
        EntityKind.TRANSACTION,
        EntityKind.PRODUCT,
        EntityKind.CATEGORY,
    ),
    EntityKind.LINE_MODIFIER: (EntityKind.ORDER_LINE, EntityKind.MODIFIER),
}

ENTITY_TABLES: dict[EntityKind, str] = {
    EntityKind.CLIENT_GROUP: "client_groups",
    EntityKind.CUSTOMER: "customers",
    EntityKind.LOCATION: "locations",
    EntityKind.CATEGORY: "menu_categories",
    EntityKind.PRODUCT: "products",
    EntityKind.MODIFIER_GROUP: "product_modifier_groups",
    EntityKind.MODIFIER: "product_modifiers",
    EntityKind.INGREDIENT: "ingredients",
    EntityKind.PRODUCT_INGREDIENT: "product_ingredients",
    EntityKind.DISH: "dishes",
    EntityKind.TRANSACTION: "transactions",
    EntityKind.ORDER_LINE: "order_lines",
    EntityKind.LINE_MODIFIER: "transaction_product_modifiers",
}


@lru_cache(maxsize=1)
def topological_order() -> tuple[EntityKind, ...]:
    sorter = TopologicalSorter(ENTITY_DEPENDENCIES)
    try:
        return tuple(sorter.static_order())
    except CycleError as exc:
        raise DependencyOrderError(f"entity graph has a cycle: {exc.args[1]}") from exc


def assert_write_order(
    plan: Sequence[EntityKind], satisfied: Iterable[EntityKind] = ()
) -> tuple[EntityKind, ...]:
    """Check that each kind in ``plan`` comes after every kind it depends on.

    ``satisfied`` lists kinds known to be present already (for example rows
    ensured earlier in the run). Returns the plan as a tuple so it can be
    stored as a module constant.
    """
    seen = set(satisfied)
    for kind in plan:
        missing = [dep for dep in ENTITY_DEPENDENCIES[kind] if dep not in seen]
        if missing:
            raise DependencyOrderError(
                f"{kind} written before {', '.join(str(m) for m in missing)}"
            )
        seen.add(kind)
    return tuple(plan)
