"""Sync runtime end to end: store writes -> bus -> coordinator -> deltas and history."""

import asyncio

import httpx
import pytest

from conftest import make_market, settle
from marketsync.backend import HttpMarketBackend
from marketsync.errors import NotFoundError, TransportError, UpstreamError, ValidationError
from marketsync.models import Transaction
from marketsync.sync import PollScheduler, SyncRuntime
from marketsync.sync.runtime import MARKETS, PROFILE, TRANSACTIONS


def test_store_write_drives_one_coalesced_refetch(bus, store):
    store.upsert_markets([make_market("a", 0.40), make_market("b", 0.60)])
    ticks = []

    async def scenario():
        runtime = SyncRuntime(store, bus, on_tick=lambda snap, delta: ticks.append((snap.generation, delta)))
        runtime.start()
        await runtime.coordinator.wait_idle()
        assert runtime.coordinator.fetch_count(MARKETS) == 1

        # markets UPDATE + market_data INSERT for one write
        store.upsert_markets([make_market("a", 0.44)])
        await settle()
        await runtime.coordinator.wait_idle()

        assert runtime.coordinator.fetch_count(MARKETS) == 2
        assert runtime.coordinator.fetch_count(TRANSACTIONS) == 1
        assert runtime.coordinator.fetch_count(PROFILE) == 1
        assert runtime.market("id-a").yes_price == 0.44
        assert [p.yes_price for p in runtime.history.window("id-a")] == [0.40, 0.44]
        assert runtime.sparkline("id-a").is_positive is True
        status = runtime.get_status()
        runtime.close()
        return status

    status = asyncio.run(scenario())
    assert [gen for gen, _ in ticks] == [1, 2]
    first, second = ticks[0][1], ticks[1][1]
    assert first.changes == {} and first.active == frozenset()
    event = second.changes["id-a"]
    assert event.old_price == 0.40 and event.new_price == 0.44
    assert event.change_percent == pytest.approx(10.0)
    assert second.active == frozenset({"id-a"})
    assert status["active"] == ["id-a"]
    assert status["subscriptions"] == 5
    assert bus.subscription_count == 0


def test_transaction_insert_refreshes_activity_domains(bus, store):
    store.upsert_markets([make_market("a", 0.40)])

    async def scenario():
        runtime = SyncRuntime(store, bus)
        runtime.start()
        await runtime.coordinator.wait_idle()
        store.insert_transactions(
            [
                Transaction(
                    hash="0xh1",
                    market_id="id-a",
                    wallet_address="0xw",
                    side="yes",
                    transaction_type="BUY",
                    amount=10,
                    price=0.4,
                    timestamp=1_700_000_000_000,
                )
            ]
        )
        await settle()
        await runtime.coordinator.wait_idle()
        c = runtime.coordinator
        counts = (c.fetch_count(MARKETS), c.fetch_count(TRANSACTIONS), c.fetch_count(PROFILE))
        profiles = c.snapshot(PROFILE)
        runtime.close()
        return counts, profiles

    counts, profiles = asyncio.run(scenario())
    assert counts == (1, 2, 2)
    assert [p.address for p in profiles.items] == ["0xw"]


def test_market_lookup_errors(bus, store):
    store.upsert_markets([make_market("a", 0.40)])

    async def scenario():
        runtime = SyncRuntime(store, bus)
        with pytest.raises(NotFoundError):
            runtime.market("id-a")  # no snapshot yet
        runtime.start()
        await runtime.coordinator.wait_idle()
        with pytest.raises(ValidationError):
            runtime.market("")
        with pytest.raises(NotFoundError):
            runtime.market("id-zzz")
        with pytest.raises(NotFoundError):
            await runtime.fetch_market("id-zzz")
        market = await runtime.fetch_market("id-a")
        runtime.close()
        return market

    assert asyncio.run(scenario()).market_id == "0xa"


def test_poller_refresh_marks_markets_stale(bus, store):
    prices = iter([0.30, 0.36])
    deltas = []

    async def refresh_markets():
        store.upsert_markets([make_market("a", next(prices))])
        return 1

    async def refresh_transactions():
        return 0

    async def scenario():
        poller = PollScheduler(refresh_markets, refresh_transactions)
        runtime = SyncRuntime(store, bus, poller=poller, on_tick=lambda snap, delta: deltas.append(delta))
        assert poller.on_markets_refreshed is not None
        runtime.start()
        await runtime.coordinator.wait_idle()
        for _ in range(2):
            await poller.tick()
            await settle()
            await runtime.coordinator.wait_idle()
        snapshot = runtime.coordinator.snapshot(MARKETS)
        runtime.close()
        return snapshot

    snapshot = asyncio.run(scenario())
    assert snapshot.get("id-a").yes_price == 0.36
    moves = [d.changes["id-a"] for d in deltas if "id-a" in d.changes]
    assert len(moves) == 1
    assert moves[0].change_percent == pytest.approx(20.0)


def test_run_returns_when_stopped(bus, store):
    async def scenario():
        runtime = SyncRuntime(store, bus)
        stop = asyncio.Event()
        task = asyncio.create_task(runtime.run(stop))
        await settle()
        stop.set()
        await task
        return runtime

    runtime = asyncio.run(scenario())
    assert runtime.coordinator.closed
    assert bus.subscription_count == 0


def _backend(handler) -> HttpMarketBackend:
    client = httpx.AsyncClient(base_url="http://backend.test", transport=httpx.MockTransport(handler))
    return HttpMarketBackend("http://backend.test", client=client)


def test_http_backend_maps_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/markets":
            assert request.url.params["limit"] == "50"
            assert "category" not in request.url.params
            return httpx.Response(200, json={"markets": [make_market("a", 0.4).model_dump()]})
        if request.url.path == "/markets/gone":
            return httpx.Response(404, json={"detail": "Market not found: gone", "code": "not_found"})
        raise httpx.ConnectError("refused", request=request)

    async def scenario():
        backend = _backend(handler)
        markets = await backend.fetch_markets()
        with pytest.raises(NotFoundError, match="gone"):
            await backend.fetch_market("gone")
        with pytest.raises(ValidationError):
            await backend.fetch_market("")
        with pytest.raises(TransportError):
            await backend.fetch_transactions()
        await backend.aclose()
        return markets

    assert [m.id for m in asyncio.run(scenario())] == ["id-a"]


def test_http_backend_rejects_malformed_bodies():
    bodies = {
        "/markets/listed": [],
        "/markets/badfield": {"id": 1},
        "/markets": [{"id": "a"}],
        "/transactions": {"transactions": [{"hash": "0xh"}]},
        "/profiles": {"profiles": "none"},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=bodies[request.url.path])

    async def scenario():
        backend = _backend(handler)
        calls = [
            backend.fetch_market("listed"),
            backend.fetch_market("badfield"),
            backend.fetch_markets(),
            backend.fetch_transactions(),
            backend.fetch_profiles(),
        ]
        results = await asyncio.gather(*calls, return_exceptions=True)
        await backend.aclose()
        return results

    results = asyncio.run(scenario())
    assert all(isinstance(r, UpstreamError) for r in results), results


def test_realtime_url():
    assert HttpMarketBackend("http://127.0.0.1:8000/").realtime_url == "ws://127.0.0.1:8000/realtime"
    assert HttpMarketBackend("https://api.example.com").realtime_url == "wss://api.example.com/realtime"
