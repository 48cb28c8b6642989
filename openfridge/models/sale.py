"""Sale and door access records."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    """How a sale was paid."""

    CARD = "card"
    WALLET = "wallet"
    CRYPTO = "crypto"


class DoorTrigger(str, Enum):
    """Why a door was unlocked."""

    PURCHASE = "purchase"
    MANUAL = "manual"


class Sale(BaseModel):
    """One settled cart line."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    machine_id: str
    inventory_id: str | None = None
    item_name: str
    quantity: int = Field(ge=1)
    total_price: Decimal = Field(ge=0)
    payment_method: PaymentMethod = PaymentMethod.CARD
    payment_reference: str | None = None
    sold_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DoorAccessEvent(BaseModel):
    """Outcome of a successful lock trigger."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    machine_id: str
    payment_reference: str | None = None
    trigger: DoorTrigger = DoorTrigger.PURCHASE
    opened_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
