"""Redis key layout."""

from uuid import UUID

DELIVERY_ORDERS = "orders:delivery"
ACTIVE_ROUNDS = "rounds:active"
SUGGESTED_ROUNDS = "suggested_rounds"

# Prefixes owned by this service, used by maintenance scripts
KEY_PATTERNS = ("order:*", "orders:*", "driver:*", "round:*", "rounds:*", "suggested_round*")


def order_key(order_id: UUID | str) -> str:
    return f"order:{order_id}"


def driver_key(driver_id: UUID) -> str:
    return f"driver:{driver_id}"


def driver_rounds_key(driver_id: UUID) -> str:
    """Set of the driver's open (ready or in progress) round IDs."""
    return f"driver:{driver_id}:rounds"


def round_key(round_id: UUID | str) -> str:
    return f"round:{round_id}"


def suggestion_key(suggestion_id: UUID | str) -> str:
    return f"suggested_round:{suggestion_id}"
