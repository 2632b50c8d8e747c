# src/Schemas/telemetry.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional


class TelemetrySample(BaseModel):
    """
    One validated telemetry record of a vehicle.

    Built by the udp_core validators from a normalized payload. loc_time is
    None when the device LocTime could not be parsed; such a sample is kept
    out of stop tracking but still reaches the rest of the pipeline.
    """
    model_config = ConfigDict(frozen=True)

    plate: str = Field(..., min_length=1, max_length=20, description="Vehicle plate")
    speed: float = Field(0.0, ge=0, description="Speed in km/h (0 means stopped)")
    latitude: float = Field(..., ge=-90, le=90, description="Latitude in decimal degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in decimal degrees")

    loc_time: Optional[datetime] = Field(None, description="Device-reported UTC time of the fix")
    loc_time_raw: Optional[str] = Field(None, description="LocTime exactly as received")

    # Carried through, never interpreted
    mileage: Optional[float] = None
    heading: Optional[str] = None

    received_at: datetime = Field(..., description="UTC time the record entered the monitor")

    @property
    def is_moving(self) -> bool:
        return self.speed > 0

    @property
    def log_time(self) -> datetime:
        """Time recorded in the coordinate log for this sample."""
        return self.loc_time or self.received_at
