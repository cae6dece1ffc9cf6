"""Order-related data models."""

from enum import Enum
from uuid import UUID, uuid4

from pydantic import AwareDatetime, BaseModel, Field

from delivery_rounds.models.driver import Location


class OrderStatus(str, Enum):
    """Kitchen readiness of an order, owned by the order core."""

    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    """Order type - Pickup or Delivery."""

    PICKUP = "pickup"
    DELIVERY = "delivery"


OPEN_ORDER_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY}
)


class Order(BaseModel):
    """Delivery order as seen by round dispatch.

    Only ``delivery_round_id`` and ``suggested_round_id`` are written here; the
    rest of the record belongs to the ordering and kitchen flows.
    """

    id: UUID = Field(default_factory=uuid4)
    order_number: str
    order_type: OrderType = OrderType.DELIVERY
    status: OrderStatus = OrderStatus.PENDING

    # Customer
    customer_name: str | None = None
    customer_phone: str | None = None

    # Delivery details
    delivery_address: str | None = None
    delivery_lat: float | None = Field(default=None, ge=-90, le=90)
    delivery_lng: float | None = Field(default=None, ge=-180, le=180)
    scheduled_time: AwareDatetime

    # Assignments
    delivery_round_id: UUID | None = None
    suggested_round_id: UUID | None = None

    @property
    def location(self) -> Location | None:
        """Delivery coordinates, when geocoded."""
        if self.delivery_lat is None or self.delivery_lng is None:
            return None
        return Location(lat=self.delivery_lat, lng=self.delivery_lng)

    @property
    def is_open(self) -> bool:
        """Check if the order is still headed for delivery."""
        return self.status in OPEN_ORDER_STATUSES

    @property
    def is_ready(self) -> bool:
        return self.status == OrderStatus.READY

    @property
    def is_claimed(self) -> bool:
        return self.delivery_round_id is not None
