"""Delivery round and stop models."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from delivery_rounds.models.driver import Location
from delivery_rounds.utils.clock import utc_now


class RoundStatus(str, Enum):
    """Delivery round states."""

    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class StopStatus(str, Enum):
    """Stop states."""

    PENDING = "pending"
    DELIVERED = "delivered"


class Stop(BaseModel):
    """One order's delivery step inside a round."""

    id: UUID = Field(default_factory=uuid4)
    round_id: UUID
    order_id: UUID
    order_number: str | None = None
    stop_order: int = Field(default=1, ge=1)
    status: StopStatus = StopStatus.PENDING

    # Snapshot of the order at claim time
    address: str = ""
    location: Location | None = None

    # Timing
    customer_slot_start: datetime | None = None
    customer_slot_end: datetime | None = None
    estimated_arrival: datetime | None = None
    actual_arrival: datetime | None = None

    @property
    def is_delivered(self) -> bool:
        return self.status == StopStatus.DELIVERED


class DeliveryRound(BaseModel):
    """Driver-owned, committed sequence of stops.

    ``total_stops`` mirrors ``len(stops)`` and stop positions always run
    ``1..total_stops``; documents violating either are rejected on load.
    """

    id: UUID = Field(default_factory=uuid4)
    driver_id: UUID
    status: RoundStatus = RoundStatus.READY
    suggested_round_id: UUID | None = None

    # Timing
    created_at: datetime = Field(default_factory=utc_now)
    planned_departure: datetime | None = None
    actual_departure: datetime | None = None
    completed_at: datetime | None = None

    total_stops: int = Field(default=0, ge=0)
    stops: list[Stop] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_stops(self) -> "DeliveryRound":
        """Validate the stop count and sequence invariants."""
        if self.total_stops != len(self.stops):
            raise ValueError(
                f"total_stops={self.total_stops} but round holds {len(self.stops)} stops"
            )
        positions = sorted(stop.stop_order for stop in self.stops)
        if positions != list(range(1, len(self.stops) + 1)):
            raise ValueError(f"stop positions must run 1..{len(self.stops)}, got {positions}")
        self.stops.sort(key=lambda stop: stop.stop_order)
        return self

    @property
    def order_ids(self) -> list[UUID]:
        return [stop.order_id for stop in self.stops]

    @property
    def is_grouped(self) -> bool:
        """A round with two or more stops can only be released as a whole."""
        return self.total_stops > 1

    def get_stop(self, stop_id: UUID) -> Stop | None:
        """Find a stop by ID."""
        for stop in self.stops:
            if stop.id == stop_id:
                return stop
        return None

    def next_pending_stop(self) -> Stop | None:
        """First stop in sequence that has not been delivered."""
        for stop in self.stops:
            if not stop.is_delivered:
                return stop
        return None

    def append_stop(self, stop: Stop) -> Stop:
        """Add a stop at the end of the sequence."""
        stop.round_id = self.id
        stop.stop_order = self.total_stops + 1
        self.stops.append(stop)
        self.total_stops = len(self.stops)
        return stop

    def remove_stop(self, stop_id: UUID) -> Stop:
        """Remove a stop and close the gap it leaves in the sequence."""
        stop = self.get_stop(stop_id)
        if stop is None:
            raise KeyError(str(stop_id))

        self.stops.remove(stop)
        for position, remaining in enumerate(self.stops, 1):
            remaining.stop_order = position
        self.total_stops = len(self.stops)
        return stop


class RoundRelease(BaseModel):
    """Outcome of releasing a whole round."""

    round_id: UUID
    order_ids: list[UUID] = Field(default_factory=list)
    suggested_round_id: UUID | None = None
    suggestion_reverted: bool = False
