from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

import httpx
from loguru import logger

from poster_sync.config import Settings
from poster_sync.utils.time import format_api_date


class PosterApiError(Exception):
    pass


class PosSource(Protocol):
    async def get_transactions(
        self,
        token: str,
        date_from: datetime,
        date_to: datetime,
        include_products: bool = True,
    ) -> list[dict[str, Any]]: ...

    async def get_product(self, token: str, product_id: int) -> dict[str, Any] | None: ...

    async def get_menu_categories(self, token: str) -> list[dict[str, Any]]: ...

    async def get_client_by_id(self, token: str, client_id: int) -> dict[str, Any] | None: ...


class PosterClient:
    """Minimal async client for the Poster web API (``/api/<method>``).

    Every call passes the account token as a query parameter; the payload of
    interest is under ``response`` and failures come back as ``error``.
    """

    def __init__(
        self,
        base_url: str = "https://joinposter.com/api",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PosterClient":
        return cls(base_url=settings.poster_base_url, timeout=settings.poster_timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, token: str, **params: Any) -> Any:
        query = {k: str(v) for k, v in params.items() if v is not None}
        query["token"] = token
        try:
            response = await self._client.get(f"{self.base_url}/{method}", params=query)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise PosterApiError(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise PosterApiError(f"{method} returned invalid JSON") from exc

        if isinstance(payload, dict) and payload.get("response") is not None:
            return payload["response"]
        error = payload.get("error") if isinstance(payload, dict) else None
        raise PosterApiError(f"{method} error: {error or 'empty response'}")

    async def get_transactions(
        self,
        token: str,
        date_from: datetime,
        date_to: datetime,
        include_products: bool = True,
    ) -> list[dict[str, Any]]:
        data = await self._call(
            "dash.getTransactions",
            token,
            date_from=format_api_date(date_from),
            date_to=format_api_date(date_to),
            include_products="true" if include_products else None,
            include_history="true",
        )
        if isinstance(data, dict):
            data = data.get("data") or []
        logger.debug(
            "dash.getTransactions {}..{} -> {} rows",
            format_api_date(date_from),
            format_api_date(date_to),
            len(data),
        )
        return list(data)

    async def get_product(self, token: str, product_id: int) -> dict[str, Any] | None:
        data = await self._call("menu.getProduct", token, product_id=product_id)
        return data if isinstance(data, dict) and data else None

    async def get_menu_categories(self, token: str) -> list[dict[str, Any]]:
        data = await self._call("menu.getCategories", token)
        return list(data or [])

    async def get_client_by_id(self, token: str, client_id: int) -> dict[str, Any] | None:
        data = await self._call("clients.getClient", token, client_id=client_id)
        if isinstance(data, list):
            return data[0] if data else None
        return data or None
