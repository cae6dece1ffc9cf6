"""Read models returned by the eligibility query."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from delivery_rounds.models.order import Order
from delivery_rounds.models.round import DeliveryRound
from delivery_rounds.models.suggestion import SuggestedRound


class OrderAvailability(str, Enum):
    """Whether an individual order can be taken right now."""

    TAKEABLE = "takeable"
    IN_PREPARATION = "in_preparation"


class SuggestionAvailability(str, Enum):
    """Why a suggested round can or cannot be taken right now."""

    TAKEABLE = "takeable"
    AWAITING_VALIDATION = "awaiting_validation"
    IN_PREPARATION = "in_preparation"


class OrderView(BaseModel):
    """An unassigned order as shown to a driver."""

    order: Order
    availability: OrderAvailability

    @property
    def can_take(self) -> bool:
        return self.availability == OrderAvailability.TAKEABLE


class SuggestionView(BaseModel):
    """A suggested round as shown to a driver."""

    suggestion: SuggestedRound
    availability: SuggestionAvailability
    ready_count: int = Field(ge=0)
    total_count: int = Field(ge=1)
    within_tolerance: bool = True

    @property
    def can_take(self) -> bool:
        return self.availability == SuggestionAvailability.TAKEABLE


class EligibleWork(BaseModel):
    """Everything a driver may claim, plus the round they already hold."""

    driver_id: UUID
    generated_at: datetime
    orders: list[OrderView] = Field(default_factory=list)
    suggested_rounds: list[SuggestionView] = Field(default_factory=list)
    current_round: DeliveryRound | None = None
    refresh_after_seconds: int = 30
