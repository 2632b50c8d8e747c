# src/Schemas/trip.py
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored time is UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_utc)]


# ============================================
# TRIP (route_plans)
# ============================================
class Trip_get(BaseModel):
    """
    Read model of a route_plans row, detached from the ORM session.
    """
    model_config = ConfigDict(from_attributes=True)

    trip_id: str
    vehicle_plate: str
    actual_start_time: Optional[UtcDatetime] = None
    actual_end_time: Optional[UtcDatetime] = None
    created_at: Optional[UtcDatetime] = None

    @property
    def is_started(self) -> bool:
        return self.actual_start_time is not None

    @property
    def is_completed(self) -> bool:
        return self.actual_end_time is not None


# ============================================
# CUSTOMER STOP (assigned_customers)
# ============================================
class CustomerStop_get(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trip_id: str
    customer_code: str
    customer_name: Optional[str] = None
    latitude: float
    longitude: float
    completed: bool = False
    completed_at: Optional[UtcDatetime] = None


# ============================================
# COORDINATE LOG (trip_coordinates)
# ============================================
class TripCoordinate_get(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trip_id: str
    latitude: float
    longitude: float
    speed: float = 0.0
    timestamp: UtcDatetime


# ============================================
# TRIP-CHANGE NOTIFICATION
# ============================================
class TripChangeEvent(BaseModel):
    """
    Notification emitted when route planning creates a trip or when a trip
    gets its actual_end_time.

    Delivery is at-least-once; handlers must be idempotent.
    """
    type: Literal["created", "ended"]
    trip_id: str = Field(..., min_length=1, max_length=100)
    plate: Optional[str] = Field(None, max_length=20)
