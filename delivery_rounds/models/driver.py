"""Driver models."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from delivery_rounds.utils.clock import utc_now


class DriverStatus(str, Enum):
    """Driver availability states."""

    AVAILABLE = "available"
    DELIVERING = "delivering"
    OFFLINE = "offline"


class Location(BaseModel):
    """Geographic location."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Driver(BaseModel):
    """Delivery driver profile, read for authorization only."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    phone: str | None = None
    status: DriverStatus = DriverStatus.OFFLINE
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
