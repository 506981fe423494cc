"""ChangeNotification - what the change bus delivers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ChangeNotification(BaseModel):
    """Something in `table` changed. The payload is opaque and never applied as a diff."""

    table: str
    event: str = Field(..., pattern=r"^(INSERT|UPDATE|DELETE|\*)$")  # "*" means unspecified change
    payload: dict[str, Any] = Field(default_factory=dict)
