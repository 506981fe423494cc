"""HTTP client of the marketsync backend API (remote mode)."""

from __future__ import annotations

from typing import Any, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from marketsync.errors import NotFoundError, TransportError, UpstreamError, ValidationError
from marketsync.models import Market, PricePoint, Transaction, WalletProfile

M = TypeVar("M", bound=BaseModel)


class HttpMarketBackend:
    """Reads markets, transactions and wallet profiles from a running backend."""

    def __init__(self, base_url: str, timeout: float = 15.0, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    @property
    def realtime_url(self) -> str:
        """WebSocket URL of the backend change feed."""
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/realtime"
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):] + "/realtime"
        return self.base_url + "/realtime"

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self._client.get(path, params={k: v for k, v in (params or {}).items() if v is not None})
        except httpx.HTTPError as e:
            raise TransportError(f"Backend unreachable: {e}") from e
        if resp.status_code == 400:
            raise ValidationError(_detail(resp))
        if resp.status_code == 404:
            raise NotFoundError(_detail(resp))
        if resp.status_code >= 400:
            raise UpstreamError(_detail(resp), status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError("Backend returned a malformed body") from e

    async def fetch_markets(
        self, source: str | None = None, category: str | None = None, limit: int | None = 50
    ) -> list[Market]:
        data = await self._get("/markets", {"source": source, "category": category, "limit": limit})
        return _parse_list(data, "markets", Market)

    async def fetch_transactions(self, limit: int = 100) -> list[Transaction]:
        data = await self._get("/transactions", {"limit": limit})
        return _parse_list(data, "transactions", Transaction)

    async def fetch_profiles(self, limit: int = 50) -> list[WalletProfile]:
        data = await self._get("/profiles", {"limit": limit})
        return _parse_list(data, "profiles", WalletProfile)

    async def fetch_market(self, market_pk: str) -> Market:
        if not market_pk:
            raise ValidationError("Market id is required")
        data = await self._get(f"/markets/{market_pk}")
        if not isinstance(data, dict):
            raise UpstreamError("Backend returned a malformed body")
        try:
            return Market(**data)
        except PydanticValidationError as e:
            raise UpstreamError("Backend returned a malformed body") from e

    async def price_history(self, market_pk: str) -> list[PricePoint]:
        data = await self._get(f"/markets/{market_pk}/history")
        return _parse_list(data, "samples", PricePoint)

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_list(data: Any, key: str, model: type[M]) -> list[M]:
    """Validate {key: [...]} into models; any other shape is an UpstreamError."""
    rows = data.get(key) if isinstance(data, dict) else None
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        raise UpstreamError("Backend returned a malformed body")
    try:
        return [model(**r) for r in rows]
    except PydanticValidationError as e:
        raise UpstreamError("Backend returned a malformed body") from e


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"Backend returned {resp.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"Backend returned {resp.status_code}"
