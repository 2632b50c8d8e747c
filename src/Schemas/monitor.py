# src/Schemas/monitor.py
from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional


class MonitoredTrip_get(BaseModel):
    """One entry of the monitored-trip registry."""
    plate: str
    trip_id: str
    actual_start_time: Optional[datetime] = None


class StopInterval_get(BaseModel):
    stop_start: datetime
    last_loc_time: datetime
    latitude: float
    longitude: float
    processed: bool
    dwell_minutes: float


class VehicleState_get(BaseModel):
    plate: str
    speed: float
    latitude: float
    longitude: float
    loc_time: Optional[datetime] = None
    received_at: datetime
    stop: Optional[StopInterval_get] = None
    trip_id: Optional[str] = None


class MonitorStatus_get(BaseModel):
    monitored_trips: int
    tracked_vehicles: int
    open_stops: int
    trips: List[MonitoredTrip_get]
