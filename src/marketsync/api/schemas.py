"""Pydantic schemas for API request/response consistency and OpenAPI docs."""

from __future__ import annotations

from pydantic import BaseModel, Field

from marketsync.models import Market, PricePoint, Transaction, WalletProfile


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Human-readable message")
    code: str | None = Field(None, description="Machine-readable code, e.g. not_found, host_not_allowed")


# --- Markets ---
class MarketsResponse(BaseModel):
    markets: list[Market]


class SparklineResponse(BaseModel):
    path: str
    is_positive: bool


class MarketHistoryResponse(BaseModel):
    market_id: str
    samples: list[PricePoint]
    sparkline: SparklineResponse


# --- Activity ---
class TransactionsResponse(BaseModel):
    transactions: list[Transaction]


class ProfilesResponse(BaseModel):
    profiles: list[WalletProfile]
