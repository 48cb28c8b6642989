"""Data models for the kiosk service."""

from openfridge.models.checkout import (
    ContactInfo,
    LineSummary,
    LockOutcome,
    PaymentHandle,
    PaymentHandleRequest,
    SettlementLine,
    SettlementRecord,
    SettlementRequest,
    SettlementResult,
)
from openfridge.models.inventory import InventoryItem
from openfridge.models.machine import IpadPlacement, Machine, MachineStatus
from openfridge.models.sale import DoorAccessEvent, DoorTrigger, PaymentMethod, Sale

__all__ = [
    # Machine
    "Machine",
    "MachineStatus",
    "IpadPlacement",
    # Inventory
    "InventoryItem",
    # Sales
    "Sale",
    "PaymentMethod",
    "DoorAccessEvent",
    "DoorTrigger",
    # Checkout boundary
    "ContactInfo",
    "LineSummary",
    "PaymentHandleRequest",
    "PaymentHandle",
    "SettlementLine",
    "SettlementRequest",
    "SettlementResult",
    "SettlementRecord",
    "LockOutcome",
]
