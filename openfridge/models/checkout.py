"""Checkout boundary models: payment handles, settlement and lock outcomes."""

from datetime import datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field

from openfridge.models.sale import PaymentMethod


class ContactInfo(BaseModel):
    """Optional receipt contact details."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None

    @property
    def is_blank(self) -> bool:
        """Check if nothing was entered."""
        return not (self.name or self.email or self.phone)


class LineSummary(BaseModel):
    """Name and quantity of a cart line, as shown to the payment provider."""

    name: str
    qty: int = Field(ge=1)


class PaymentHandleRequest(BaseModel):
    """Request for a payment handle from the provider."""

    amount: Decimal = Field(gt=0)
    machine_id: str
    items: list[LineSummary] = Field(default_factory=list)
    method: PaymentMethod = PaymentMethod.CARD


class PaymentHandle(BaseModel):
    """Opaque handle the display uses to confirm a payment."""

    reference: str
    client_secret: str | None = None
    hosted_url: str | None = None
    amount: Decimal
    method: PaymentMethod = PaymentMethod.CARD
    demo: bool = False


class SettlementLine(BaseModel):
    """One cart line sent for settlement."""

    inventory_id: str | None = None
    name: str
    qty: int = Field(ge=1)
    total: Decimal = Field(ge=0)


class SettlementRequest(BaseModel):
    """Payload of the settlement call."""

    payment_reference: str = Field(min_length=1)
    machine_id: str = Field(min_length=1)
    lines: list[SettlementLine] = Field(min_length=1)
    payment_method: PaymentMethod = PaymentMethod.CARD
    contact: ContactInfo | None = None

    @property
    def amount(self) -> Decimal:
        """Total paid across all lines."""
        return sum((line.total for line in self.lines), Decimal("0"))


class LockOutcome(BaseModel):
    """Result of a lock trigger."""

    unlocked: bool = False
    expires_at: datetime | None = None
    error: str | None = None


class SettlementResult(BaseModel):
    """Response of the settlement call."""

    success: bool
    order_id: str
    lock: LockOutcome = Field(default_factory=LockOutcome)
    contact: ContactInfo | None = None
    replayed: bool = False


class SettlementRecord(BaseModel):
    """Durable idempotency record keyed by payment reference."""

    payment_reference: str
    machine_id: str
    sale_ids: list[str] = Field(default_factory=list)
    amount: Decimal
    lock: LockOutcome | None = None
    settled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
