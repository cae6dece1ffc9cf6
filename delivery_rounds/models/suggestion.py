"""Suggested round models, as published by the round planner."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field, model_validator


class SuggestionStatus(str, Enum):
    """Planner-side suggestion states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class SuggestedRoundMember(BaseModel):
    """One order inside a suggested round, with its planned position."""

    order_id: UUID
    order_number: str | None = None
    sequence_order: int = Field(ge=1)
    estimated_delivery: AwareDatetime
    customer_name: str | None = None
    delivery_address: str | None = None
    scheduled_time: AwareDatetime | None = None


class SuggestedRoundPayload(BaseModel):
    """Candidate grouping of nearby, time-compatible orders, as ingested.

    Built once from the planner's JSON payload; members are kept sorted by
    sequence position, which must form a dense ``1..N`` range. Claim markers
    are not part of the payload and are ignored if sent.
    """

    id: UUID
    status: SuggestionStatus = SuggestionStatus.PENDING
    prep_at: AwareDatetime
    depart_at: AwareDatetime
    expires_at: AwareDatetime
    total_distance_minutes: int | None = Field(default=None, ge=0)
    orders: list[SuggestedRoundMember] = Field(min_length=1)

    @model_validator(mode="after")
    def check_members(self) -> "SuggestedRoundPayload":
        """Sort members and reject gaps or duplicates."""
        self.orders.sort(key=lambda member: member.sequence_order)

        order_ids = [member.order_id for member in self.orders]
        if len(set(order_ids)) != len(order_ids):
            raise ValueError("suggested round lists the same order twice")

        sequence = [member.sequence_order for member in self.orders]
        if sequence != list(range(1, len(self.orders) + 1)):
            raise ValueError(
                f"sequence positions must run 1..{len(self.orders)}, got {sequence}"
            )
        return self


class SuggestedRound(SuggestedRoundPayload):
    """Stored suggested round, with the claim marker dispatch maintains."""

    # Set by accept and cleared by revert
    driver_id: UUID | None = None
    accepted_at: AwareDatetime | None = None

    @property
    def order_ids(self) -> list[UUID]:
        return [member.order_id for member in self.orders]

    @property
    def is_claimed(self) -> bool:
        return self.driver_id is not None

    def is_expired(self, now: datetime) -> bool:
        """Expired by status, or past its expiry timestamp."""
        return self.status == SuggestionStatus.EXPIRED or self.expires_at <= now
