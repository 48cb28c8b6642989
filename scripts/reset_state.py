"""Reset all state in Redis (useful for testing)."""

import asyncio

from openfridge.state.manager import StateManager
from openfridge.utils.logging import setup_logging


async def reset_all_state() -> None:
    """Clear all data from Redis."""
    print("\n⚠️  WARNING: This will delete ALL machines, inventory and sales from Redis!")
    response = input("Are you sure? (yes/no): ")

    if response.lower() != "yes":
        print("Cancelled.")
        return

    print("\nResetting state...")

    state_manager = StateManager()
    await state_manager.connect()
    await state_manager.flush()
    await state_manager.disconnect()

    print("✓ All state cleared from Redis\n")


if __name__ == "__main__":
    setup_logging(log_format="text")
    asyncio.run(reset_all_state())
