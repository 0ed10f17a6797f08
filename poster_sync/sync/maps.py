from __future__ import annotations

from typing import Any

from poster_sync.db.writers import json_dumps
from poster_sync.sync.normalize import optional_cents, to_id, to_int, to_iso
from poster_sync.utils.time import iso_z, utc_now


def _text(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _flag(value: Any) -> bool:
    return str(value).strip() == "1"


def map_client(client: dict[str, Any], client_id: int) -> dict[str, Any]:
    return {
        "id": client_id,
        "first_name": _text(client.get("firstname")),
        "last_name": _text(client.get("lastname")),
        "patronymic": _text(client.get("patronymic")),
        "phone": _text(client.get("phone") or client.get("phone_number")),
        "email": _text(client.get("email")),
        "birthday": _text(client.get("birthday")),
        "city": _text(client.get("city")),
        "country": _text(client.get("country")),
        "comment": _text(client.get("comment")),
        "client_group_id": to_id(client.get("client_groups_id")),
        "client_group_name": _text(client.get("client_groups_name")),
        "loyalty_type": _text(client.get("loyalty_type")),
        "bonus": to_int(client.get("bonus")),
        "ewallet": optional_cents(client.get("ewallet")),
        "total_payed_sum": optional_cents(client.get("total_payed_sum")),
        "created_at": to_iso(client.get("date_activale")),
        "updated_at": iso_z(utc_now()),
        "is_stub": False,
    }


def map_client_group(client: dict[str, Any], group_id: int) -> dict[str, Any]:
    return {"id": group_id, "name": _text(client.get("client_groups_name")), "is_stub": False}


def map_category(category: dict[str, Any], category_id: int) -> dict[str, Any]:
    return {
        "id": category_id,
        "name": _text(category.get("category_name")),
        "parent_id": to_id(category.get("parent_category")),
        "color": _text(category.get("category_color")),
        "hidden": _flag(category.get("category_hidden")),
        "sort_order": to_int(category.get("sort_order")),
        "tag": _text(category.get("category_tag")),
        "tax_id": to_int(category.get("tax_id")),
        "visible_raw": json_dumps(category.get("visible") or []),
        "is_stub": False,
    }


def _primary_price(product: dict[str, Any]) -> Any:
    price = product.get("price")
    if isinstance(price, dict) and price:
        return next(iter(price.values()))
    spots = product.get("spots") or []
    if spots and isinstance(spots[0], dict):
        return spots[0].get("price")
    return None


def map_product(product: dict[str, Any]) -> dict[str, Any]:
    description = product.get("description")
    if not isinstance(description, str):
        description = product.get("small-description")
    return {
        "id": int(product["product_id"]),
        "name": _text(product.get("product_name")),
        "menu_category_id": to_id(product.get("menu_category_id")),
        "barcode": _text(product.get("barcode")),
        "code": _text(product.get("product_code")),
        "color": _text(product.get("color")),
        "description": _text(description),
        "hidden": _flag(product.get("hidden")),
        "no_discount": _flag(product.get("nodiscount")),
        "photo": _text(product.get("photo")),
        # Poster product prices are already in cents.
        "price_cents": to_int(_primary_price(product)),
        "tax_id": to_int(product.get("tax_id")),
        "type": to_int(product.get("type")),
        "unit": _text(product.get("unit")),
        "workshop": _text(product.get("workshop")),
        "spots_raw": json_dumps(product.get("spots") or []),
        "updated_at": iso_z(utc_now()),
        "is_stub": False,
    }


def map_modifier_group(group: dict[str, Any], product_id: int) -> dict[str, Any]:
    return {
        "id": int(group["dish_modification_group_id"]),
        "product_id": product_id,
        "name": _text(group.get("name")),
        "num_min": to_int(group.get("num_min")),
        "num_max": to_int(group.get("num_max")),
        "type": to_int(group.get("type")),
        "is_deleted": to_int(group.get("is_deleted")) == 1,
        "is_stub": False,
    }


def map_modifier(
    modification: dict[str, Any], product_id: int, group_id: int | None
) -> dict[str, Any]:
    modifier_id = int(modification["dish_modification_id"])
    name = _text(modification.get("modificator_name") or modification.get("name"))
    return {
        "id": modifier_id,
        "group_id": group_id,
        "product_id": product_id,
        "name": name or f"modifier-{modifier_id}",
        "price_diff": optional_cents(modification.get("price")),
        "is_deleted": False,
        "is_stub": False,
    }


def map_ingredient(ingredient: dict[str, Any]) -> dict[str, Any]:
    losses = {
        key: ingredient.get(f"ingredients_losses_{key}")
        for key in ("bake", "clear", "cook", "fry", "stew")
    }
    return {
        "id": int(ingredient["ingredient_id"]),
        "name": _text(ingredient.get("ingredient_name")),
        "unit": _text(ingredient.get("ingredient_unit")),
        "weight": _text(ingredient.get("ingredient_weight")),
        "losses_raw": json_dumps(losses),
        "is_stub": False,
    }


def map_dish(product: dict[str, Any]) -> dict[str, Any]:
    product_id = int(product["product_id"])
    return {
        "id": product_id,
        "product_id": product_id,
        "cooking_time": _text(product.get("cooking_time")),
        "workshop": _text(product.get("workshop")),
        "is_stub": False,
    }
