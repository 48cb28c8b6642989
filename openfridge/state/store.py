"""Repository for machines, inventory, sales and door access records."""

from typing import Any

from redis.asyncio.client import Pipeline

from openfridge.models.checkout import LockOutcome, SettlementRecord, SettlementRequest
from openfridge.models.inventory import InventoryItem
from openfridge.models.machine import Machine
from openfridge.models.sale import DoorAccessEvent, Sale
from openfridge.state.manager import StateManager, decode_value, encode_value
from openfridge.utils.logging import get_logger

logger = get_logger(__name__)


class MachineNotFoundError(LookupError):
    """Raised when a machine id has no record."""

    def __init__(self, machine_id: str):
        super().__init__(f"Machine {machine_id} not found")
        self.machine_id = machine_id


class FridgeStore:
    """Durable storage of the kiosk domain on top of Redis."""

    def __init__(self, state: StateManager):
        self.state = state

    # Keys

    def _machine_key(self, machine_id: str) -> str:
        return f"machine:{machine_id}"

    def _inventory_key(self, machine_id: str) -> str:
        return f"inventory:{machine_id}"

    def _sales_key(self, machine_id: str) -> str:
        return f"sales:{machine_id}"

    def _door_log_key(self, machine_id: str) -> str:
        return f"door_logs:{machine_id}"

    def _settlement_key(self, payment_reference: str) -> str:
        return f"settlement:{payment_reference}"

    # Machines

    async def save_machine(self, machine: Machine) -> None:
        """Create or replace a machine record."""
        await self.state.set(
            self._machine_key(machine.id), machine.model_dump(mode="json")
        )

    async def get_machine(self, machine_id: str) -> Machine:
        """Load a machine or raise MachineNotFoundError."""
        data = await self.state.get(self._machine_key(machine_id))
        if not data:
            raise MachineNotFoundError(machine_id)
        return Machine(**data)

    # Inventory

    async def save_item(self, item: InventoryItem) -> None:
        """Create or replace an inventory item."""
        await self.state.hset(
            self._inventory_key(item.machine_id),
            item.id,
            item.model_dump(mode="json"),
        )

    async def get_item(self, machine_id: str, item_id: str) -> InventoryItem | None:
        """Load one inventory item."""
        data = await self.state.hget(self._inventory_key(machine_id), item_id)
        return InventoryItem(**data) if data else None

    async def list_inventory(
        self,
        machine_id: str,
        in_stock_only: bool = False,
    ) -> list[InventoryItem]:
        """List a machine's inventory ordered by item name."""
        data = await self.state.hgetall(self._inventory_key(machine_id))
        items = [InventoryItem(**value) for value in data.values()]

        if in_stock_only:
            items = [item for item in items if item.stock_count > 0]

        return sorted(items, key=lambda item: item.item_name.lower())

    # Sales

    async def list_sales(self, machine_id: str) -> list[Sale]:
        """List every sale recorded for a machine, oldest first."""
        return [Sale(**data) for data in await self.state.lrange(self._sales_key(machine_id))]

    # Door access log

    async def add_door_event(self, event: DoorAccessEvent) -> None:
        """Record a successful unlock."""
        await self.state.lpush(
            self._door_log_key(event.machine_id), event.model_dump(mode="json")
        )

    async def list_door_events(self, machine_id: str, limit: int = 50) -> list[DoorAccessEvent]:
        """List door access events, newest first."""
        data = await self.state.lrange(self._door_log_key(machine_id), 0, limit - 1)
        return [DoorAccessEvent(**value) for value in data]

    # Settlement

    async def get_settlement(self, payment_reference: str) -> SettlementRecord | None:
        """Load the settlement record for a payment, if any."""
        data = await self.state.get(self._settlement_key(payment_reference))
        return SettlementRecord(**data) if data else None

    async def record_lock_outcome(
        self,
        record: SettlementRecord,
        lock: LockOutcome,
    ) -> SettlementRecord:
        """Attach the lock outcome to a committed settlement."""
        updated = record.model_copy(update={"lock": lock})
        await self.state.set(
            self._settlement_key(record.payment_reference),
            updated.model_dump(mode="json"),
        )
        return updated

    async def commit_settlement(
        self,
        request: SettlementRequest,
    ) -> tuple[SettlementRecord, bool]:
        """
        Atomically record sales and decrement stock for a paid cart.

        All sale rows, every stock decrement and the settlement record are
        written in a single transaction. A payment reference that was
        already committed is not applied again.

        Returns:
            The settlement record and whether it was created by this call
        """
        inventory_key = self._inventory_key(request.machine_id)
        sales_key = self._sales_key(request.machine_id)
        settlement_key = self._settlement_key(request.payment_reference)

        async def apply(pipe: Pipeline) -> tuple[SettlementRecord, bool]:
            existing = decode_value(await pipe.get(settlement_key))
            if existing:
                return SettlementRecord(**existing), False

            item_ids = [line.inventory_id for line in request.lines if line.inventory_id]
            raw_items = await pipe.hmget(inventory_key, item_ids) if item_ids else []
            stock: dict[str, InventoryItem] = {
                item_id: InventoryItem(**decode_value(raw))
                for item_id, raw in zip(item_ids, raw_items)
                if raw
            }

            sales: list[Sale] = []
            for line in request.lines:
                sales.append(
                    Sale(
                        machine_id=request.machine_id,
                        inventory_id=line.inventory_id,
                        item_name=line.name,
                        quantity=line.qty,
                        total_price=line.total,
                        payment_method=request.payment_method,
                        payment_reference=request.payment_reference,
                    )
                )

                item = stock.get(line.inventory_id) if line.inventory_id else None
                if item is None:
                    logger.warning(
                        "settlement_item_missing",
                        machine_id=request.machine_id,
                        inventory_id=line.inventory_id,
                        item_name=line.name,
                    )
                    continue

                stock[item.id] = item.decremented(line.qty)

            record = SettlementRecord(
                payment_reference=request.payment_reference,
                machine_id=request.machine_id,
                sale_ids=[sale.id for sale in sales],
                amount=request.amount,
            )

            pipe.multi()
            if stock:
                mapping: dict[str, Any] = {
                    item_id: encode_value(item.model_dump(mode="json"))
                    for item_id, item in stock.items()
                }
                pipe.hset(inventory_key, mapping=mapping)
            pipe.rpush(sales_key, *(encode_value(sale.model_dump(mode="json")) for sale in sales))
            pipe.set(settlement_key, encode_value(record.model_dump(mode="json")))

            return record, True

        return await self.state.transaction(apply, inventory_key, settlement_key)
