# src/Services/stop_detector.py
"""
Stop Detector Service - long-stop detection from zero-speed telemetry.

Decision Logic:
1. LocTime unparsable? → TelemetryValidationError (sample skipped here)
2. Moving (speed != 0)? → drop any open stop interval
3. LocTime older than the last accepted one? → ignored for stop tracking
4. Stopped, no interval? → open one at this LocTime and position
5. Stopped, interval open? → advance it; once the dwell reaches
   LONG_STOP_MINUTES and the interval is not processed yet, flag it
   and emit a LongStopEvent (exactly once per interval)

Key Concepts:
- Dwell is measured on device LocTime, never on reception time
- Movement always resets: idle, move, stop again → fresh window
- The event carries the position where the stop STARTED
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from src.Core.config import settings
from src.Core.errors import TelemetryValidationError
from src.Services.geo_math import Position
from src.Services.udp_core.normalizers import normalize_loc_time
from src.Services.vehicle_state import VehicleStateStore


@dataclass(frozen=True)
class LongStopEvent:
    plate: str
    location: Position
    stop_start: datetime
    detected_at: datetime
    dwell_minutes: float


class StopDetector:
    """
    Stateful long-stop detector. State lives in the VehicleStateStore.
    """

    def __init__(
        self,
        state_store: VehicleStateStore,
        long_stop_minutes: Optional[float] = None,
        reject_out_of_order: Optional[bool] = None
    ):
        self.state_store = state_store
        self.long_stop_minutes = (
            settings.LONG_STOP_MINUTES if long_stop_minutes is None else long_stop_minutes
        )
        self.reject_out_of_order = (
            settings.REJECT_OUT_OF_ORDER_SAMPLES if reject_out_of_order is None else reject_out_of_order
        )

    def observe(
        self,
        plate: str,
        speed: float,
        position: Position,
        loc_time: Union[datetime, str, int, float, None]
    ) -> Optional[LongStopEvent]:
        """
        Feed one sample of `plate` to the detector.

        Args:
            plate: Vehicle plate
            speed: Reported speed (0 means stopped)
            position: Reported position
            loc_time: Device time (datetime, or any format normalize_loc_time accepts)

        Returns:
            LongStopEvent: On the sample that first reaches the dwell threshold
            None: Otherwise

        Raises:
            TelemetryValidationError: loc_time missing or unparsable
        """
        if not isinstance(loc_time, datetime):
            try:
                loc_time = normalize_loc_time(loc_time)
            except ValueError as e:
                raise TelemetryValidationError(f"Invalid LocTime for {plate}: {e}", plate=plate) from e

        # ============================================
        # MOVING → reset unconditionally
        # ============================================
        if speed != 0:
            cleared = self.state_store.clear_stop(plate)
            if cleared:
                print(f"[STOP_DETECTOR] {plate}: moving again after "
                      f"{cleared.dwell_minutes:.1f} min stop")
            self._advance_clock(plate, loc_time)
            return None

        # ============================================
        # ORDERING CHECK (stopped samples only)
        # ============================================
        last_seen = self.state_store.last_loc_time(plate)
        if last_seen is not None and loc_time < last_seen and self.reject_out_of_order:
            print(f"[STOP_DETECTOR] {plate}: out-of-order LocTime {loc_time.isoformat()} "
                  f"< {last_seen.isoformat()} - ignored for stop tracking")
            return None

        self._advance_clock(plate, loc_time)

        # ============================================
        # STOPPED, NO INTERVAL → open one
        # ============================================
        interval = self.state_store.touch_stop(plate, loc_time)
        if interval is None:
            self.state_store.open_stop(plate, loc_time, position)
            print(f"[STOP_DETECTOR] {plate}: stopped at {loc_time.isoformat()}")
            return None

        # ============================================
        # STOPPED, INTERVAL OPEN → dwell check
        # ============================================
        dwell = (loc_time - interval.stop_start).total_seconds() / 60.0

        if dwell >= self.long_stop_minutes and not interval.processed:
            if not self.state_store.mark_stop_processed(plate):
                return None

            print(f"[STOP_DETECTOR] {plate}: LONG STOP ({dwell:.1f} min >= "
                  f"{self.long_stop_minutes:.0f} min)")
            return LongStopEvent(
                plate=plate,
                location=interval.location,
                stop_start=interval.stop_start,
                detected_at=loc_time,
                dwell_minutes=dwell
            )

        return None

    def _advance_clock(self, plate: str, loc_time: datetime) -> None:
        last_seen = self.state_store.last_loc_time(plate)
        if last_seen is None or loc_time > last_seen:
            self.state_store.set_last_loc_time(plate, loc_time)
