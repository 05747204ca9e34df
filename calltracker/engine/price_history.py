"""
Call Tracker - Price History Models

A price history is the time-ordered list of (unixTime, value) samples that
Birdeye's history_price endpoint returns. The same shape is persisted as the
per-call JSON artifact:

    {"items": [{"unixTime": 1712345678, "value": 0.0123}, ...]}
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PriceSample(BaseModel):
    """One price observation."""

    model_config = ConfigDict(populate_by_name=True)

    unix_time: int = Field(..., alias="unixTime", description="Unix seconds")
    value: float = Field(..., description="Price in USD")


class PriceHistory(BaseModel):
    """Samples ascending by unix_time, as returned upstream."""

    items: list[PriceSample] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.items

    def to_artifact_json(self) -> str:
        """Serialise to the artifact wire format (camelCase keys, numbers)."""
        return self.model_dump_json(by_alias=True)
