"""Sync coordinator state machine: coalescing, teardown, stale-while-revalidate."""

import asyncio

import pytest

from conftest import settle
from marketsync.bus import ChangeBus
from marketsync.errors import CoordinatorClosedError, TransportError, ValidationError
from marketsync.models import ChangeNotification
from marketsync.sync import DomainState, SyncCoordinator


class GatedFetcher:
    """Fetcher whose first call blocks until release() is called."""

    def __init__(self, block_first: bool = True) -> None:
        self.calls = 0
        self.gate = asyncio.Event()
        self.block_first = block_first
        self.fail_with: Exception | None = None

    async def __call__(self):
        self.calls += 1
        call = self.calls
        if call == 1 and self.block_first:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return [f"item-{call}"]

    def release(self) -> None:
        self.gate.set()


def _notify(bus: ChangeBus, table: str = "markets", event: str = "UPDATE") -> None:
    bus.publish(ChangeNotification(table=table, event=event))


def test_notification_burst_during_fetch_causes_exactly_one_more_fetch():
    async def scenario():
        bus = ChangeBus()
        fetcher = GatedFetcher()
        coord = SyncCoordinator(bus)
        coord.register("markets", fetcher, [("markets", "*"), ("market_data", "*")])
        coord.start()
        await settle()
        state_during = coord.state("markets")
        for _ in range(10):
            _notify(bus)
            _notify(bus, "market_data", "INSERT")
        await settle()
        fetcher.release()
        await coord.wait_idle()
        return coord, fetcher, state_during

    coord, fetcher, state_during = asyncio.run(scenario())
    assert state_during is DomainState.FETCHING
    assert fetcher.calls == 2
    assert coord.snapshot("markets").generation == 2
    assert coord.snapshot("markets").items == ("item-2",)
    assert coord.state("markets") is DomainState.IDLE


def test_triggers_while_pending_are_absorbed():
    async def scenario():
        coord = SyncCoordinator(ChangeBus())
        fetcher = GatedFetcher(block_first=False)
        coord.register("markets", fetcher)
        coord.trigger("markets")
        assert coord.state("markets") is DomainState.FETCH_PENDING
        coord.trigger("markets")
        coord.invalidate("markets")
        await coord.wait_idle()
        return fetcher

    assert asyncio.run(scenario()).calls == 1


def test_irrelevant_tables_do_not_trigger():
    async def scenario():
        bus = ChangeBus()
        coord = SyncCoordinator(bus)
        fetcher = GatedFetcher(block_first=False)
        coord.register("transactions", fetcher, [("wallet_transactions", "INSERT")])
        coord.start()
        await coord.wait_idle()
        _notify(bus, "markets")
        _notify(bus, "wallet_transactions", "UPDATE")
        await settle()
        await coord.wait_idle()
        return fetcher

    assert asyncio.run(scenario()).calls == 1


def test_teardown_discards_in_flight_result():
    async def scenario():
        bus = ChangeBus()
        fetcher = GatedFetcher()
        coord = SyncCoordinator(bus)
        published = []
        coord.register("markets", fetcher, [("markets", "*")])
        coord.add_listener("markets", published.append)
        coord.start()
        await settle()
        subs_before = bus.subscription_count
        coord.teardown()
        subs_after = bus.subscription_count
        fetcher.release()
        await coord.wait_idle()
        _notify(bus)
        coord.trigger("markets")
        await settle()
        return coord, fetcher, published, subs_before, subs_after

    coord, fetcher, published, subs_before, subs_after = asyncio.run(scenario())
    assert subs_before == 1
    assert subs_after == 0
    assert published == []
    assert coord.snapshot("markets") is None
    assert fetcher.calls == 1
    assert coord.closed


def test_teardown_fails_pending_waiters():
    async def scenario():
        coord = SyncCoordinator(ChangeBus())
        fetcher = GatedFetcher()
        coord.register("markets", fetcher)
        waiter = asyncio.create_task(coord.refresh("markets"))
        await settle()
        coord.teardown()
        fetcher.release()
        with pytest.raises(CoordinatorClosedError):
            await waiter
        with pytest.raises(CoordinatorClosedError):
            await coord.refresh("markets")

    asyncio.run(scenario())


def test_user_refresh_raises_typed_error_and_keeps_previous_snapshot():
    async def scenario():
        coord = SyncCoordinator(ChangeBus())
        fetcher = GatedFetcher(block_first=False)
        coord.register("markets", fetcher)
        first = await coord.refresh("markets")
        fetcher.fail_with = TransportError("backend down")
        with pytest.raises(TransportError):
            await coord.refresh("markets")
        return coord, first

    coord, first = asyncio.run(scenario())
    assert coord.snapshot("markets") is first
    assert isinstance(coord.last_error("markets"), TransportError)
    assert coord.state("markets") is DomainState.IDLE


def test_refresh_during_fetch_waits_for_the_rerun():
    async def scenario():
        coord = SyncCoordinator(ChangeBus())
        fetcher = GatedFetcher()
        coord.register("markets", fetcher)
        coord.trigger("markets")
        await settle()
        waiter = asyncio.create_task(coord.refresh("markets"))
        await settle()
        fetcher.release()
        return await waiter

    snapshot = asyncio.run(scenario())
    assert snapshot.generation == 2
    assert snapshot.items == ("item-2",)


def test_stale_while_revalidate():
    now = [0.0]

    async def scenario():
        coord = SyncCoordinator(ChangeBus(), stale_after_sec=5.0, clock=lambda: now[0])
        fetcher = GatedFetcher(block_first=False)
        coord.register("markets", fetcher)
        first = await coord.read("markets")
        now[0] = 3.0
        fresh = await coord.read("markets")
        calls_when_fresh = fetcher.calls
        now[0] = 9.0
        stale = await coord.read("markets")
        await coord.wait_idle()
        return first, fresh, stale, calls_when_fresh, coord.snapshot("markets"), fetcher

    first, fresh, stale, calls_when_fresh, latest, fetcher = asyncio.run(scenario())
    assert first.generation == 1
    assert fresh is first
    assert calls_when_fresh == 1
    # stale value served immediately, refreshed in the background
    assert stale is first
    assert fetcher.calls == 2
    assert latest.generation == 2


def test_listener_failure_does_not_stop_publication():
    async def scenario():
        coord = SyncCoordinator(ChangeBus())
        seen = []

        def broken(snapshot):
            raise RuntimeError("listener bug")

        coord.register("markets", GatedFetcher(block_first=False))
        coord.add_listener("markets", broken)
        coord.add_listener("markets", seen.append)
        await coord.refresh("markets")
        return seen

    assert len(asyncio.run(scenario())) == 1


def test_unknown_or_duplicate_domain():
    coord = SyncCoordinator(ChangeBus())
    coord.register("markets", GatedFetcher())
    with pytest.raises(ValidationError):
        coord.register("markets", GatedFetcher())
    with pytest.raises(ValidationError):
        coord.state("profile")


class ScriptedFetcher:
    """Fetcher whose first call waits on a gate, then plays back a script of outcomes."""

    def __init__(self, *outcomes) -> None:
        self.calls = 0
        self.gate = asyncio.Event()
        self.outcomes = list(outcomes)

    async def __call__(self):
        self.calls += 1
        if self.calls == 1:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        return [f"item-{self.calls}"]


def test_rerun_after_failed_fetch_publishes():
    published = []

    async def scenario():
        bus = ChangeBus()
        fetcher = ScriptedFetcher(TransportError("backend down"))
        coord = SyncCoordinator(bus)
        coord.register("markets", fetcher, [("markets", "*")])
        coord.add_listener("markets", lambda snap: published.append(snap.generation))
        coord.start()
        await settle()
        _notify(bus)
        await settle()
        fetcher.gate.set()
        await coord.wait_idle()
        return coord, fetcher

    coord, fetcher = asyncio.run(scenario())
    assert fetcher.calls == 2
    assert published == [1]
    assert coord.snapshot("markets").items == ("item-2",)
    assert coord.last_error("markets") is None
    assert coord.state("markets") is DomainState.IDLE


def test_waiters_complete_in_pass_order():
    generations = []

    async def scenario():
        coord = SyncCoordinator(ChangeBus())
        fetcher = ScriptedFetcher()
        coord.register("markets", fetcher)
        coord.add_listener("markets", lambda snap: generations.append(snap.generation))
        first = asyncio.create_task(coord.refresh("markets"))
        await settle()
        assert coord.state("markets") is DomainState.FETCHING
        second = asyncio.create_task(coord.refresh("markets"))
        await settle()
        fetcher.gate.set()
        return await first, await second

    first, second = asyncio.run(scenario())
    assert (first.generation, first.items) == (1, ("item-1",))
    assert (second.generation, second.items) == (2, ("item-2",))
    assert generations == [1, 2]


def test_cancelled_fetch_fails_waiters_instead_of_hanging():
    async def scenario():
        coord = SyncCoordinator(ChangeBus())
        fetcher = ScriptedFetcher(asyncio.CancelledError())
        coord.register("markets", fetcher)
        coord.trigger("markets")
        await settle()
        cold_read = asyncio.create_task(coord.read("markets"))
        refresh = asyncio.create_task(coord.refresh("markets"))
        await settle()
        fetcher.gate.set()
        await coord.wait_idle()
        results = await asyncio.gather(cold_read, refresh, return_exceptions=True)
        state_after = coord.state("markets")
        recovered = await coord.refresh("markets")
        return results, state_after, recovered

    results, state_after, recovered = asyncio.run(scenario())
    assert all(isinstance(r, CoordinatorClosedError) for r in results), results
    assert state_after is DomainState.IDLE
    assert recovered.generation == 1


def test_cold_read_joins_initial_fetch():
    async def scenario():
        coord = SyncCoordinator(ChangeBus())
        fetcher = ScriptedFetcher()
        coord.register("markets", fetcher)
        coord.start()
        await settle()
        reader = asyncio.create_task(coord.read("markets"))
        await settle()
        fetcher.gate.set()
        snapshot = await reader
        await coord.wait_idle()
        return fetcher, snapshot

    fetcher, snapshot = asyncio.run(scenario())
    assert fetcher.calls == 1
    assert snapshot.generation == 1
