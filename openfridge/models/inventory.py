"""Inventory management models."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, Field

LOW_STOCK_THRESHOLD = 3


class InventoryItem(BaseModel):
    """Item stocked in one machine."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    machine_id: str
    item_name: str
    price: Decimal = Field(ge=0)
    purchase_price: Decimal | None = Field(default=None, ge=0)
    stock_count: int = Field(default=0, ge=0)
    image_url: str | None = None
    description: str | None = None
    reorder_url: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_low_stock(self) -> bool:
        """Check if item is low on stock."""
        return self.stock_count <= LOW_STOCK_THRESHOLD

    @property
    def is_sold_out(self) -> bool:
        """Check if item is sold out."""
        return self.stock_count == 0

    def decremented(self, quantity: int) -> "InventoryItem":
        """Return a copy with stock reduced by a sale, floored at zero."""
        return self.model_copy(
            update={"stock_count": max(0, self.stock_count - quantity)}
        )
