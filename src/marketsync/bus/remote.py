"""Backend realtime WebSocket client - receive change notifications, reconnect."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
import websockets
from pydantic import ValidationError as PydanticValidationError

from marketsync.bus.change_bus import ChangeBus
from marketsync.models import ChangeNotification

log = structlog.get_logger(__name__)


def parse_notification(raw: str | bytes) -> ChangeNotification | None:
    """Decode one pushed message; None when it is not a change notification."""
    try:
        data: Any = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    try:
        return ChangeNotification(
            table=str(data.get("table", "")),
            event=str(data.get("event", "")),
            payload=data.get("payload") if isinstance(data.get("payload"), dict) else {},
        )
    except PydanticValidationError:
        return None


class RemoteChangeFeed:
    """Republishes notifications from the backend /realtime socket on a local ChangeBus."""

    def __init__(
        self,
        ws_url: str,
        bus: ChangeBus,
        *,
        reconnect_base_delay_sec: float = 1.0,
        reconnect_max_delay_sec: float = 60.0,
    ) -> None:
        self.ws_url = ws_url
        self.bus = bus
        self.reconnect_base_delay_sec = reconnect_base_delay_sec
        self.reconnect_max_delay_sec = reconnect_max_delay_sec
        self.received = 0

    def on_message(self, raw: str | bytes) -> None:
        notification = parse_notification(raw)
        if notification is None:
            log.debug("realtime_message_ignored")
            return
        self.received += 1
        self.bus.publish(notification)

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Receive until stop_event is set. Reconnect with exponential backoff."""
        stop = stop_event or asyncio.Event()
        delay = self.reconnect_base_delay_sec

        while not stop.is_set():
            try:
                async with websockets.connect(
                    self.ws_url,
                    ping_interval=20,
                    ping_timeout=20,
                    close_timeout=5,
                ) as ws:
                    delay = self.reconnect_base_delay_sec
                    log.info("realtime_connected", url=self.ws_url)
                    while not stop.is_set():
                        try:
                            raw = await asyncio.wait_for(ws.recv(), timeout=1.0)
                        except asyncio.TimeoutError:
                            continue
                        self.on_message(raw)
            except asyncio.CancelledError:
                log.info("realtime_cancelled")
                raise
            except Exception as e:
                log.warning("realtime_error", error=str(e), delay=delay)
                try:
                    await asyncio.wait_for(stop.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                delay = min(delay * 2, self.reconnect_max_delay_sec)

        log.info("realtime_stopped", received=self.received)
