from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class Price(BaseModel):
    """A price expressed as `multiplier / 10**decimals`."""

    multiplier: str
    decimals: int

    def as_decimal(self) -> Decimal:
        return Decimal(self.multiplier).scaleb(-self.decimals)


class AssetPrice(BaseModel):
    asset_id: str
    price: Optional[Price] = None


class PriceData(BaseModel):
    """Response of the oracle's `get_price_data` view."""

    timestamp: int = Field(..., description="Block timestamp in nanoseconds")
    recency_duration_sec: int
    prices: list[AssetPrice] = Field(default_factory=list)

    def price_for(self, asset_id: str) -> Optional[Price]:
        for item in self.prices:
            if item.asset_id == asset_id:
                return item.price
        return None

    def age_seconds(self, *, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return now.timestamp() - self.timestamp / 1_000_000_000

    def is_fresh(self, *, now: Optional[datetime] = None) -> bool:
        return self.age_seconds(now=now) <= self.recency_duration_sec

    @staticmethod
    def from_view(result: dict[str, Any]) -> "PriceData":
        return PriceData(
            timestamp=int(result.get("timestamp", 0)),
            recency_duration_sec=int(result.get("recency_duration_sec", 0)),
            prices=[AssetPrice.model_validate(p) for p in result.get("prices") or []],
        )
