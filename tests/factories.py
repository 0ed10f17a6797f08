from __future__ import annotations

from datetime import datetime
from typing import Any

from poster_sync.models.events import CustomerLifecycleEvent, OrderEvent, PushMessage
from poster_sync.source.poster import PosterApiError
from poster_sync.sync.normalize import to_iso
from poster_sync.utils.time import parse_iso


def poster_date(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def make_tx(
    tx_id: int,
    *,
    created: datetime,
    client_id: int = 0,
    spot_id: int = 1,
    user_id: int = 0,
    processing_status: int = 10,
    service_mode: int = 1,
    status: int = 1,
    date_start: datetime | None = None,
    date_close: datetime | None = None,
    payed_sum: str = "0",
    payed_cash: str = "0",
    payed_card: str = "0",
    products: list[dict[str, Any]] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    tx: dict[str, Any] = {
        "transaction_id": str(tx_id),
        "client_id": str(client_id),
        "spot_id": str(spot_id),
        "user_id": str(user_id),
        "status": str(status),
        "processing_status": str(processing_status),
        "service_mode": str(service_mode),
        "date_create": poster_date(created),
        "date_start": poster_date(date_start or created),
        "date_close": poster_date(date_close) if date_close else "0",
        "payed_sum": payed_sum,
        "payed_cash": payed_cash,
        "payed_card": payed_card,
        "products": products or [],
    }
    tx.update(extra)
    return tx


def line(product_id: int, category_id: int = 1, num: str = "1", product_sum: str = "50", **extra: Any) -> dict[str, Any]:
    return {
        "product_id": str(product_id),
        "category_id": str(category_id),
        "num": num,
        "product_sum": product_sum,
        **extra,
    }


class FakePosSource:
    """In-memory POS source; transactions are filtered by their creation date."""

    def __init__(
        self,
        transactions: list[dict[str, Any]] | None = None,
        *,
        products: dict[int, dict[str, Any]] | None = None,
        categories: list[dict[str, Any]] | None = None,
        clients: dict[int, dict[str, Any]] | None = None,
    ) -> None:
        self.transactions = list(transactions or [])
        self.products = dict(products or {})
        self.categories = list(categories or [])
        self.clients = dict(clients or {})
        self.fail_transactions = False
        self.fail_details = False
        self.transaction_calls: list[tuple[datetime, datetime]] = []
        self.product_calls: list[int] = []
        self.category_calls = 0
        self.client_calls: list[int] = []

    async def get_transactions(
        self,
        token: str,
        date_from: datetime,
        date_to: datetime,
        include_products: bool = True,
    ) -> list[dict[str, Any]]:
        self.transaction_calls.append((date_from, date_to))
        if self.fail_transactions:
            raise PosterApiError("dash.getTransactions failed: 502 Bad Gateway")
        out = []
        for tx in self.transactions:
            created = parse_iso(to_iso(tx.get("date_create")))
            if created is not None and date_from <= created <= date_to:
                out.append(dict(tx))
        return out

    async def get_product(self, token: str, product_id: int) -> dict[str, Any] | None:
        self.product_calls.append(product_id)
        if self.fail_details:
            raise PosterApiError("menu.getProduct failed")
        return self.products.get(product_id)

    async def get_menu_categories(self, token: str) -> list[dict[str, Any]]:
        self.category_calls += 1
        if self.fail_details:
            raise PosterApiError("menu.getCategories failed")
        return list(self.categories)

    async def get_client_by_id(self, token: str, client_id: int) -> dict[str, Any] | None:
        self.client_calls.append(client_id)
        if self.fail_details:
            raise PosterApiError("clients.getClient failed")
        return self.clients.get(client_id)


class RecordingSink:
    def __init__(self, fail_push_for: set[int] | None = None) -> None:
        self.pushes: list[tuple[int, PushMessage]] = []
        self.events: list[CustomerLifecycleEvent] = []
        self.order_events: list[OrderEvent] = []
        self.passes: list[int] = []
        self.fail_push_for = set(fail_push_for or ())
        self.closed = False

    async def send_push(self, customer_id: int, message: PushMessage) -> None:
        if customer_id in self.fail_push_for:
            raise RuntimeError(f"push rejected for {customer_id}")
        self.pushes.append((customer_id, message))

    async def publish_lifecycle(self, event: CustomerLifecycleEvent) -> None:
        self.events.append(event)

    async def publish_order_event(self, event: OrderEvent) -> None:
        self.order_events.append(event)

    async def update_pass(self, customer_id: int) -> None:
        self.passes.append(customer_id)

    async def aclose(self) -> None:
        self.closed = True
