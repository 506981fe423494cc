"""Sync coordinator - per-domain fetch state machine driven by change notifications and polls.

Each domain moves IDLE -> FETCH_PENDING -> FETCHING -> IDLE. Triggers that arrive
while a fetch is pending are absorbed; triggers that arrive while fetching set a
single rerun flag, so at most one fetch is in flight and at most one is queued.
"""

from __future__ import annotations

import asyncio
import enum
import time
from typing import Any, Awaitable, Callable

import structlog

from marketsync.bus import ChangeBus, Subscription
from marketsync.errors import CoordinatorClosedError, ValidationError
from marketsync.models import ChangeNotification, Snapshot

log = structlog.get_logger(__name__)

Fetcher = Callable[[], Awaitable[list[Any]]]
Listener = Callable[[Snapshot], None]


class DomainState(str, enum.Enum):
    IDLE = "idle"
    FETCH_PENDING = "fetch_pending"
    FETCHING = "fetching"


class _Domain:
    """State of one data domain (markets, transactions, profile)."""

    def __init__(self, name: str, fetcher: Fetcher, tables: list[tuple[str, str]]) -> None:
        self.name = name
        self.fetcher = fetcher
        self.tables = tables
        self.state = DomainState.IDLE
        self.rerun = False
        self.snapshot: Snapshot | None = None
        self.generation = 0
        self.fetch_count = 0
        self.last_error: BaseException | None = None
        self.listeners: list[Listener] = []
        self.task: asyncio.Task[None] | None = None
        # Waiters for the next pass to start, and for the pass currently running
        self.next_waiters: list[asyncio.Future[Snapshot]] = []
        self.current_waiters: list[asyncio.Future[Snapshot]] = []


class SyncCoordinator:
    """Owns the market state generations and the change bus subscriptions."""

    def __init__(
        self,
        bus: ChangeBus,
        *,
        stale_after_sec: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bus = bus
        self.stale_after_sec = stale_after_sec
        self._clock = clock
        self._domains: dict[str, _Domain] = {}
        self._subscriptions: list[Subscription] = []
        self._started = False
        self._closed = False

    def register(self, domain: str, fetcher: Fetcher, tables: list[tuple[str, str]] | None = None) -> None:
        """Add a data domain. tables lists the (table, event_filter) pairs that invalidate it."""
        if domain in self._domains:
            raise ValidationError(f"Domain already registered: {domain}")
        self._domains[domain] = _Domain(domain, fetcher, list(tables or []))
        if self._started and not self._closed:
            self._subscribe(self._domains[domain])
            self.trigger(domain)

    def add_listener(self, domain: str, listener: Listener) -> None:
        """Call listener(snapshot) for every snapshot published for domain."""
        self._get(domain).listeners.append(listener)

    def _get(self, domain: str) -> _Domain:
        try:
            return self._domains[domain]
        except KeyError:
            raise ValidationError(f"Unknown domain: {domain}") from None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def _subscribe(self, d: _Domain) -> None:
        for table, event_filter in d.tables:

            def handler(notification: ChangeNotification, name: str = d.name) -> None:
                log.debug("change_detected", domain=name, table=notification.table, event_type=notification.event)
                self.trigger(name)

            self._subscriptions.append(self.bus.subscribe(table, event_filter, handler))

    def start(self) -> None:
        """Open one subscription per watched table and fetch every domain once (initial mount)."""
        if self._closed:
            raise CoordinatorClosedError("Coordinator was torn down")
        if self._started:
            return
        self._started = True
        for d in self._domains.values():
            self._subscribe(d)
        log.info("coordinator_started", domains=list(self._domains), subscriptions=len(self._subscriptions))
        for name in self._domains:
            self.trigger(name)

    def teardown(self) -> None:
        """Release all subscriptions. In-flight fetches finish but are never published."""
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            self.bus.unsubscribe(sub)
        self._subscriptions.clear()
        for d in self._domains.values():
            self._fail_waiters(d, CoordinatorClosedError("Coordinator was torn down"))
            d.rerun = False
        log.info("coordinator_teardown")

    def _fail_waiters(self, d: _Domain, error: BaseException) -> None:
        for fut in d.next_waiters + d.current_waiters:
            if not fut.done():
                fut.set_exception(error)
        d.next_waiters = []
        d.current_waiters = []

    # --- triggers ---

    def trigger(self, domain: str) -> None:
        """Request a fetch. Coalesces with a pending fetch; queues at most one rerun."""
        if self._closed:
            return
        d = self._get(domain)
        if d.state is DomainState.FETCHING:
            d.rerun = True
            return
        if d.state is DomainState.FETCH_PENDING:
            return
        d.state = DomainState.FETCH_PENDING
        d.task = asyncio.get_running_loop().create_task(self._run(d))

    invalidate = trigger

    async def _run(self, d: _Domain) -> None:
        while True:
            d.state = DomainState.FETCHING
            d.rerun = False
            d.current_waiters, d.next_waiters = d.next_waiters, []
            d.fetch_count += 1
            error: BaseException | None = None
            snapshot: Snapshot | None = None
            try:
                items = await d.fetcher()
            except asyncio.CancelledError:
                d.state = DomainState.IDLE
                d.rerun = False
                self._fail_waiters(d, CoordinatorClosedError(f"Fetch of {d.name} was cancelled"))
                raise
            except Exception as e:
                error = e
            if self._closed:
                log.debug("fetch_discarded", domain=d.name)
                break
            if error is None:
                d.generation += 1
                snapshot = Snapshot(
                    domain=d.name,
                    generation=d.generation,
                    fetched_at=self._clock(),
                    items=tuple(items),
                )
                d.snapshot = snapshot
                d.last_error = None
                self._publish(d, snapshot)
            else:
                d.last_error = error
                log.warning("fetch_failed", domain=d.name, error=str(error), error_type=type(error).__name__)
            for fut in d.current_waiters:
                if fut.done():
                    continue
                if error is None:
                    fut.set_result(snapshot)
                else:
                    fut.set_exception(error)
            d.current_waiters = []
            if not d.rerun:
                break
        d.state = DomainState.IDLE

    def _publish(self, d: _Domain, snapshot: Snapshot) -> None:
        log.debug("snapshot_published", domain=d.name, generation=snapshot.generation, items=len(snapshot))
        for listener in list(d.listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.warning("listener_failed", domain=d.name, error=str(e))

    # --- readers ---

    def _wait_next(self, d: _Domain) -> asyncio.Future[Snapshot]:
        fut: asyncio.Future[Snapshot] = asyncio.get_running_loop().create_future()
        d.next_waiters.append(fut)
        return fut

    async def refresh(self, domain: str) -> Snapshot:
        """User-triggered fetch: wait for the next completed pass and raise its error, if any."""
        if self._closed:
            raise CoordinatorClosedError("Coordinator was torn down")
        d = self._get(domain)
        fut = self._wait_next(d)
        self.trigger(domain)
        return await fut

    async def read(self, domain: str) -> Snapshot:
        """Stale-while-revalidate read.

        Fresh snapshots are returned as is. Stale ones are returned immediately and a
        background refresh is triggered. Without any snapshot, waits for a fetch.
        """
        d = self._get(domain)
        if d.snapshot is None:
            if d.state is DomainState.FETCHING and not self._closed:
                # Join the pass in flight (initial mount) instead of queueing another
                fut: asyncio.Future[Snapshot] = asyncio.get_running_loop().create_future()
                d.current_waiters.append(fut)
                return await fut
            return await self.refresh(domain)
        if self.is_stale(domain):
            self.trigger(domain)
        return d.snapshot

    def is_stale(self, domain: str) -> bool:
        d = self._get(domain)
        if d.snapshot is None:
            return True
        return self._clock() - d.snapshot.fetched_at >= self.stale_after_sec

    def snapshot(self, domain: str) -> Snapshot | None:
        return self._get(domain).snapshot

    def state(self, domain: str) -> DomainState:
        return self._get(domain).state

    def fetch_count(self, domain: str) -> int:
        return self._get(domain).fetch_count

    def last_error(self, domain: str) -> BaseException | None:
        return self._get(domain).last_error

    async def wait_idle(self) -> None:
        """Wait until no domain has a fetch pending or running."""
        while True:
            tasks = [d.task for d in self._domains.values() if d.task is not None and not d.task.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_status(self) -> dict[str, Any]:
        return {
            name: {
                "state": d.state.value,
                "generation": d.generation,
                "fetch_count": d.fetch_count,
                "items": len(d.snapshot) if d.snapshot is not None else None,
                "stale": self.is_stale(name),
                "last_error": str(d.last_error) if d.last_error else None,
            }
            for name, d in self._domains.items()
        }
