"""Capacity and time-tolerance rules for delivery rounds."""

from datetime import datetime, timedelta
from typing import Any

from delivery_rounds.errors import CapacityExceededError
from delivery_rounds.models.suggestion import SuggestedRound


def ensure_capacity(current_stops: int, adding: int, max_stops: int, **context: Any) -> None:
    """Raise if ``adding`` more stops would push a round past ``max_stops``."""
    if current_stops + adding > max_stops:
        raise CapacityExceededError(
            f"A round holds at most {max_stops} deliveries "
            f"({current_stops} planned, {adding} more requested)",
            max_stops=max_stops,
            **context,
        )


def customer_window(
    scheduled_time: datetime | None, tolerance_minutes: int
) -> tuple[datetime | None, datetime | None]:
    """Customer slot shown on a stop: scheduled time up to the tolerance."""
    if scheduled_time is None:
        return None, None
    return scheduled_time, scheduled_time + timedelta(minutes=tolerance_minutes)


def within_tolerance(
    estimated: datetime | None,
    scheduled: datetime | None,
    tolerance_minutes: int,
) -> bool:
    """Whether an estimated arrival lands within ±tolerance of the slot.

    Unknown times are treated as on time; this is a display hint only.
    """
    if estimated is None or scheduled is None:
        return True
    return abs(estimated - scheduled) <= timedelta(minutes=tolerance_minutes)


def suggestion_within_tolerance(suggestion: SuggestedRound, tolerance_minutes: int) -> bool:
    return all(
        within_tolerance(member.estimated_delivery, member.scheduled_time, tolerance_minutes)
        for member in suggestion.orders
    )
