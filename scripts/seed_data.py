"""Seed drivers, delivery orders and a suggested round for local runs."""

import asyncio
from datetime import timedelta

from delivery_rounds.models import Driver, DriverStatus, Order, OrderStatus
from delivery_rounds.state import DriverDirectory, OrderStore, RedisRoundPlanner, StateManager
from delivery_rounds.utils.clock import utc_now


async def seed_drivers(state_manager: StateManager) -> list[Driver]:
    """Seed driver pool."""
    print("Seeding drivers...")

    directory = DriverDirectory(state_manager)
    drivers = [
        Driver(name="Sam Carter", phone="+33 6 12 34 56 01", status=DriverStatus.AVAILABLE),
        Driver(name="Lea Martin", phone="+33 6 12 34 56 02", status=DriverStatus.AVAILABLE),
        Driver(name="Yanis Roux", phone="+33 6 12 34 56 03", status=DriverStatus.OFFLINE),
    ]

    for driver in drivers:
        await directory.save(driver)
        print(f"  ✓ Added {driver.name} ({driver.id})")

    print("✓ Drivers seeded successfully\n")
    return drivers


async def seed_orders(state_manager: StateManager) -> list[Order]:
    """Seed delivery orders spread over the next hours."""
    print("Seeding delivery orders...")

    store = OrderStore(state_manager)
    now = utc_now().replace(second=0, microsecond=0)
    orders = [
        Order(
            order_number="D-1001",
            status=OrderStatus.READY,
            customer_name="Alice Bernard",
            customer_phone="+33 6 98 76 54 01",
            delivery_address="12 Rue de la Paix, Paris",
            delivery_lat=48.8690,
            delivery_lng=2.3316,
            scheduled_time=now + timedelta(minutes=40),
        ),
        Order(
            order_number="D-1002",
            status=OrderStatus.READY,
            customer_name="Hugo Petit",
            delivery_address="5 Rue Saint-Honore, Paris",
            delivery_lat=48.8625,
            delivery_lng=2.3382,
            scheduled_time=now + timedelta(minutes=50),
        ),
        Order(
            order_number="D-1003",
            status=OrderStatus.PREPARING,
            customer_name="Chloe Moreau",
            delivery_address="30 Avenue de l'Opera, Paris",
            delivery_lat=48.8680,
            delivery_lng=2.3330,
            scheduled_time=now + timedelta(minutes=55),
        ),
        Order(
            order_number="D-1004",
            status=OrderStatus.PENDING,
            customer_name="Louis Garnier",
            delivery_address="8 Boulevard Haussmann, Paris",
            scheduled_time=now + timedelta(hours=2),
        ),
        Order(
            order_number="D-1005",
            status=OrderStatus.READY,
            customer_name="Emma Laurent",
            delivery_address="2 Place Vendome, Paris",
            delivery_lat=48.8674,
            delivery_lng=2.3295,
            scheduled_time=now + timedelta(hours=1, minutes=15),
        ),
    ]

    for order in orders:
        await store.save(order)
        print(f"  ✓ Added {order.order_number} ({order.status.value}, {order.scheduled_time:%H:%M})")

    print("✓ Orders seeded successfully\n")
    return orders


async def seed_suggested_round(state_manager: StateManager, orders: list[Order]) -> None:
    """Publish and validate one suggested round over the first three orders."""
    print("Seeding suggested round...")

    planner = RedisRoundPlanner(state_manager)
    now = utc_now().replace(second=0, microsecond=0)
    members = orders[:3]

    payload = {
        "id": "6f1c2a9e-3b1d-4c55-9a51-0c2f1d9b7e01",
        "status": "pending",
        "prep_at": (now + timedelta(minutes=10)).isoformat(),
        "depart_at": (now + timedelta(minutes=25)).isoformat(),
        "expires_at": (now + timedelta(minutes=30)).isoformat(),
        "total_distance_minutes": 28,
        "orders": [
            {
                "order_id": str(order.id),
                "order_number": order.order_number,
                "sequence_order": position,
                "estimated_delivery": (now + timedelta(minutes=30 + 10 * position)).isoformat(),
                "customer_name": order.customer_name,
                "delivery_address": order.delivery_address,
                "scheduled_time": order.scheduled_time.isoformat(),
            }
            for position, order in enumerate(members, 1)
        ],
    }

    suggestion = await planner.publish(payload)
    await planner.validate(suggestion.id)
    print(f"  ✓ Published suggestion {suggestion.id} with {len(suggestion.orders)} orders")
    print("✓ Suggested round seeded successfully\n")


async def main() -> None:
    """Run all seed functions."""
    print("\n" + "=" * 50)
    print("  Seeding Delivery Round Data")
    print("=" * 50 + "\n")

    state_manager = StateManager()
    await state_manager.connect()

    try:
        await seed_drivers(state_manager)
        orders = await seed_orders(state_manager)
        await seed_suggested_round(state_manager, orders)
    finally:
        await state_manager.disconnect()

    print("=" * 50)
    print("  ✓ All data seeded successfully!")
    print("=" * 50 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
