"""Data models for the delivery round service."""

from delivery_rounds.models.driver import Driver, DriverStatus, Location
from delivery_rounds.models.order import Order, OrderStatus, OrderType
from delivery_rounds.models.round import (
    DeliveryRound,
    RoundRelease,
    RoundStatus,
    Stop,
    StopStatus,
)
from delivery_rounds.models.suggestion import (
    SuggestedRound,
    SuggestedRoundMember,
    SuggestedRoundPayload,
    SuggestionStatus,
)
from delivery_rounds.models.work import (
    EligibleWork,
    OrderAvailability,
    OrderView,
    SuggestionAvailability,
    SuggestionView,
)

__all__ = [
    # Driver
    "Driver",
    "DriverStatus",
    "Location",
    # Order
    "Order",
    "OrderStatus",
    "OrderType",
    # Round
    "DeliveryRound",
    "RoundRelease",
    "RoundStatus",
    "Stop",
    "StopStatus",
    # Suggestion
    "SuggestedRound",
    "SuggestedRoundMember",
    "SuggestedRoundPayload",
    "SuggestionStatus",
    # Eligibility
    "EligibleWork",
    "OrderAvailability",
    "OrderView",
    "SuggestionAvailability",
    "SuggestionView",
]
