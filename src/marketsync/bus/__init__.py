"""Change bus: table change notifications, local and pushed from the backend."""

from marketsync.bus.change_bus import EVENT_FILTERS, ChangeBus, Subscription
from marketsync.bus.remote import RemoteChangeFeed, parse_notification

__all__ = ["ChangeBus", "Subscription", "EVENT_FILTERS", "RemoteChangeFeed", "parse_notification"]
