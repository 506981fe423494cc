"""FastAPI backend - markets read query, activity, realtime change feed and proxy pass-through."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketsync.api.proxy import forward_get, validate_target
from marketsync.api.schemas import (
    ErrorResponse,
    HealthResponse,
    MarketHistoryResponse,
    MarketsResponse,
    ProfilesResponse,
    SparklineResponse,
    TransactionsResponse,
)
from marketsync.config import Settings, get_settings
from marketsync.errors import MarketSyncError, error_to_http
from marketsync.models import ChangeNotification, Market
from marketsync.storage import MarketStore
from marketsync.storage.markets import MAX_QUERY_LIMIT
from marketsync.sync.history import generate_sparkline_path

log = structlog.get_logger(__name__)

# Tables pushed to /realtime subscribers
REALTIME_TABLES = ("markets", "market_data", "wallet_transactions")


def _error_json(code: str, message: str, status_code: int = 404) -> JSONResponse:
    """Return consistent error JSON: { detail, code }."""
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "code": code},
    )


def create_app(
    settings: Settings | None = None,
    store: MarketStore | None = None,
    with_poller: bool = False,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the API around one MarketStore. with_poller runs the aggregator poll in-process."""
    settings = settings or get_settings()
    store = store or MarketStore(settings.db_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or httpx.AsyncClient(timeout=15.0)
        app.state.http_client = client
        poller = None
        if with_poller:
            from marketsync.ingestion.jobs import make_poller

            poller = make_poller(store, settings, client=client)
            poller.start(settings.poll_interval_sec)

        yield

        if poller is not None:
            poller.stop()
            await poller.wait_idle()
        if http_client is None:
            await client.aclose()
        store.close()

    app = FastAPI(title="marketsync API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.store = store
    app.state.settings = settings

    @app.exception_handler(MarketSyncError)
    async def marketsync_error(request: Request, exc: MarketSyncError) -> JSONResponse:
        status_code, detail = error_to_http(exc)
        return _error_json(exc.code, detail, status_code)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/markets", response_model=MarketsResponse)
    async def markets_list(
        source: str | None = None,
        category: str | None = None,
        limit: int = Query(MAX_QUERY_LIMIT, description="Clamped to 50"),
    ) -> MarketsResponse:
        """Active markets with their latest prices."""
        markets = await store.fetch_markets(source=source, category=category, limit=limit)
        return MarketsResponse(markets=markets)

    @app.get(
        "/markets/{market_pk}",
        response_model=Market,
        responses={404: {"description": "Market not found", "model": ErrorResponse}},
    )
    async def market_detail(market_pk: str) -> Market:
        return await store.fetch_market(market_pk)

    @app.get(
        "/markets/{market_pk}/history",
        response_model=MarketHistoryResponse,
        responses={404: {"description": "Market not found", "model": ErrorResponse}},
    )
    async def market_history(
        market_pk: str,
        width: float = Query(60, gt=0),
        height: float = Query(30, gt=0),
    ) -> MarketHistoryResponse:
        """Last samples of a market and the sparkline derived from them."""
        market = await store.fetch_market(market_pk)
        samples = store.price_history([market.id], points=settings.history_window).get(market.id, [])
        spark = generate_sparkline_path(samples, width, height)
        return MarketHistoryResponse(
            market_id=market.id,
            samples=samples,
            sparkline=SparklineResponse(path=spark.path, is_positive=spark.is_positive),
        )

    @app.get("/transactions", response_model=TransactionsResponse)
    async def transactions_list(limit: int = Query(100, ge=1, le=500)) -> TransactionsResponse:
        return TransactionsResponse(transactions=await store.fetch_transactions(limit=limit))

    @app.get("/profiles", response_model=ProfilesResponse)
    async def profiles_list(limit: int = Query(50, ge=1, le=500)) -> ProfilesResponse:
        return ProfilesResponse(profiles=await store.fetch_profiles(limit=limit))

    @app.get(
        "/proxy",
        responses={
            400: {"description": "Missing url", "model": ErrorResponse},
            403: {"description": "Host not allowed", "model": ErrorResponse},
        },
    )
    async def proxy(url: str | None = None) -> JSONResponse:
        """Forward a GET to an allow-listed host and return its JSON verbatim."""
        target = validate_target(url, settings.proxy_allowed_hosts)
        body = await forward_get(app.state.http_client, target)
        return JSONResponse(
            content=body,
            headers={"Cache-Control": f"public, max-age={settings.proxy_cache_max_age}"},
        )

    @app.websocket("/realtime")
    async def realtime(websocket: WebSocket) -> None:
        """Push {table, event, payload} for every change written to the store."""
        await websocket.accept()
        queue: asyncio.Queue[ChangeNotification] = asyncio.Queue()
        subs = [store.bus.subscribe(table, "*", queue.put_nowait) for table in REALTIME_TABLES]

        async def pump() -> None:
            while True:
                notification = await queue.get()
                await websocket.send_json(notification.model_dump(mode="json"))

        pump_task = asyncio.create_task(pump())
        try:
            # Client messages are ignored; receive() surfaces the disconnect
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            log.debug("realtime_client_disconnected")
        finally:
            pump_task.cancel()
            for sub in subs:
                store.bus.unsubscribe(sub)

    return app


def run_api(
    host: str = "127.0.0.1",
    port: int = 8000,
    with_poller: bool = False,
    settings: Settings | None = None,
) -> None:
    import uvicorn

    uvicorn.run(create_app(settings, with_poller=with_poller), host=host, port=port, reload=False)
