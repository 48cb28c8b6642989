"""Machine (smart fridge) models."""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class MachineStatus(str, Enum):
    """Operational status of a machine."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class IpadPlacement(str, Enum):
    """Where the kiosk tablet is mounted."""

    ON_DOOR = "on_door"
    COUNTERTOP = "countertop"
    MOUNTED = "mounted"


class Machine(BaseModel):
    """A physical vending unit with optional smart lock."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    location: str
    status: MachineStatus = MachineStatus.ACTIVE
    owner_id: str | None = None
    image_url: str | None = None
    description: str | None = None

    # Smart lock configuration
    lock_enabled: bool = False
    lock_api_url: str | None = None
    lock_api_key: str | None = None
    lock_duration_sec: int = Field(default=30, ge=0)

    ipad_placement: IpadPlacement | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        """Check if the machine is selling."""
        return self.status == MachineStatus.ACTIVE
