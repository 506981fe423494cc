"""Aggregator ingestion (Polymarket Gamma and data APIs)."""
