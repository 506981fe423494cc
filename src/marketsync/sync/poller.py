"""Fixed-interval bulk refresh: markets and transactions, run concurrently each tick."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

log = structlog.get_logger(__name__)

RefreshAction = Callable[[], Awaitable[Any]]


class PollScheduler:
    """Runs a tick immediately on start, then every interval_sec.

    Both actions of a tick run concurrently and are joined all-settled, so a failure
    in one never cancels the other. Failures are logged and the next tick is the
    only retry. stop() cancels the interval but lets an in-flight tick finish; its
    staleness mark is then discarded.
    """

    def __init__(
        self,
        refresh_markets: RefreshAction,
        refresh_transactions: RefreshAction,
        on_markets_refreshed: Callable[[], None] | None = None,
    ) -> None:
        self.refresh_markets = refresh_markets
        self.refresh_transactions = refresh_transactions
        self.on_markets_refreshed = on_markets_refreshed
        self._loop_task: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._stopped = False
        self.tick_count = 0
        self.skipped_ticks = 0
        self.failures: dict[str, int] = {"markets": 0, "transactions": 0}

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self, interval_sec: float) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be positive")
        if self.running:
            return
        self._stopped = False
        self._loop_task = asyncio.get_running_loop().create_task(self._loop(interval_sec))
        log.info("poller_started", interval_sec=interval_sec)

    async def _loop(self, interval_sec: float) -> None:
        while True:
            if self._tick_task is not None and not self._tick_task.done():
                self.skipped_ticks += 1
                log.warning("poll_tick_skipped", reason="previous tick still running")
            else:
                self._tick_task = asyncio.create_task(self.tick())
            await asyncio.sleep(interval_sec)

    async def tick(self) -> None:
        """Run both refresh actions; inspect each result individually."""
        self.tick_count += 1
        results = await asyncio.gather(
            self.refresh_markets(),
            self.refresh_transactions(),
            return_exceptions=True,
        )
        markets_result, transactions_result = results
        for name, result in (("markets", markets_result), ("transactions", transactions_result)):
            if isinstance(result, BaseException):
                self.failures[name] += 1
                log.warning("poll_action_failed", action=name, error=str(result), error_type=type(result).__name__)
        if isinstance(markets_result, BaseException):
            return
        if self._stopped:
            log.debug("poll_result_discarded", reason="stopped")
            return
        if self.on_markets_refreshed is not None:
            self.on_markets_refreshed()

    def stop(self) -> None:
        """Cancel the interval. An in-flight tick is not cancelled."""
        self._stopped = True
        if self._loop_task is not None:
            self._loop_task.cancel()
            self._loop_task = None
            log.info("poller_stopped", ticks=self.tick_count)

    async def wait_idle(self) -> None:
        """Wait for an in-flight tick to complete."""
        if self._tick_task is not None and not self._tick_task.done():
            await asyncio.gather(self._tick_task, return_exceptions=True)

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "ticks": self.tick_count,
            "skipped_ticks": self.skipped_ticks,
            "failures": dict(self.failures),
        }
