"""Reset delivery round state in Redis (useful for testing)."""

import asyncio

from delivery_rounds.state import StateManager
from delivery_rounds.state.keys import KEY_PATTERNS


async def reset_all_state() -> None:
    """Delete every key owned by the delivery round service."""
    print("\n⚠️  WARNING: This will delete all orders, drivers, rounds and suggestions!")
    response = input("Are you sure? (yes/no): ")

    if response.lower() != "yes":
        print("Cancelled.")
        return

    print("\nResetting state...")

    state_manager = StateManager()
    await state_manager.connect()

    deleted = 0
    try:
        for pattern in KEY_PATTERNS:
            found = await state_manager.scan_keys(pattern)
            if found:
                await state_manager.delete(*found)
                deleted += len(found)
            print(f"  ✓ {pattern}: {len(found)} keys")
    finally:
        await state_manager.disconnect()

    print(f"✓ {deleted} keys cleared from Redis\n")


if __name__ == "__main__":
    asyncio.run(reset_all_state())
