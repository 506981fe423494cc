"""Synchronization core: coordinator, poll scheduler, delta tracker, history summarizer."""

from marketsync.sync.coordinator import DomainState, SyncCoordinator
from marketsync.sync.deltas import DeltaTracker, TickDelta
from marketsync.sync.history import HistorySummarizer, Sparkline, generate_sparkline_path
from marketsync.sync.poller import PollScheduler
from marketsync.sync.runtime import SyncRuntime

__all__ = [
    "DomainState",
    "SyncCoordinator",
    "DeltaTracker",
    "TickDelta",
    "HistorySummarizer",
    "Sparkline",
    "generate_sparkline_path",
    "PollScheduler",
    "SyncRuntime",
]
