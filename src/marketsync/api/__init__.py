"""Backend API: markets read query, realtime feed, proxy pass-through."""
