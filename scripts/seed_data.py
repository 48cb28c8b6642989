"""Seed a demo machine and its inventory."""

import asyncio
from decimal import Decimal

from openfridge.models.inventory import InventoryItem
from openfridge.models.machine import IpadPlacement, Machine
from openfridge.state.manager import StateManager
from openfridge.state.store import FridgeStore
from openfridge.utils.logging import setup_logging

DEMO_MACHINE_ID = "demo-fridge"


async def seed_machine(store: FridgeStore) -> Machine:
    """Seed the demo machine."""
    print("Seeding machine...")

    machine = Machine(
        id=DEMO_MACHINE_ID,
        name="Lobby Fridge",
        location="Building A, ground floor",
        owner_id="demo-operator",
        description="Cold drinks and fresh snacks",
        ipad_placement=IpadPlacement.ON_DOOR,
    )
    await store.save_machine(machine)

    print(f"  ✓ Added {machine.name} ({machine.id})")
    print("✓ Machine seeded successfully\n")
    return machine


async def seed_inventory(store: FridgeStore, machine: Machine) -> None:
    """Seed the demo machine's inventory."""
    print("Seeding inventory...")

    items = [
        InventoryItem(
            machine_id=machine.id,
            item_name="Cold Brew",
            price=Decimal("4.50"),
            purchase_price=Decimal("1.80"),
            stock_count=12,
        ),
        InventoryItem(
            machine_id=machine.id,
            item_name="Sparkling Water",
            price=Decimal("2.00"),
            purchase_price=Decimal("0.60"),
            stock_count=24,
        ),
        InventoryItem(
            machine_id=machine.id,
            item_name="Greek Yogurt",
            price=Decimal("3.25"),
            purchase_price=Decimal("1.10"),
            stock_count=3,
        ),
        InventoryItem(
            machine_id=machine.id,
            item_name="Chicken Wrap",
            price=Decimal("7.95"),
            purchase_price=Decimal("3.40"),
            stock_count=6,
        ),
        InventoryItem(
            machine_id=machine.id,
            item_name="Fruit Cup",
            price=Decimal("3.75"),
            purchase_price=Decimal("1.25"),
            stock_count=0,
        ),
    ]

    for item in items:
        await store.save_item(item)
        flag = " (low stock)" if item.is_low_stock else ""
        print(f"  ✓ Added {item.item_name} (${item.price}, stock: {item.stock_count}){flag}")

    print("✓ Inventory seeded successfully\n")


async def main() -> None:
    """Run all seed functions."""
    print("\n" + "=" * 50)
    print("  Seeding OpenFridge Demo Data")
    print("=" * 50 + "\n")

    state_manager = StateManager()
    await state_manager.connect()
    store = FridgeStore(state_manager)

    try:
        machine = await seed_machine(store)
        await seed_inventory(store, machine)
    finally:
        await state_manager.disconnect()

    print("=" * 50)
    print("  ✓ All data seeded successfully!")
    print(f"  Kiosk: ws://localhost:8000/ws/kiosk/{DEMO_MACHINE_ID}")
    print("=" * 50 + "\n")


if __name__ == "__main__":
    setup_logging(level="WARNING", log_format="text")
    asyncio.run(main())
