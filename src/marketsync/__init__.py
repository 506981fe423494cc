"""marketsync - client-side market view synchronized from a poll job and a change feed."""

__version__ = "0.1.0"
