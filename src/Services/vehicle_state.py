# src/Services/vehicle_state.py
"""
Vehicle State Store - per-vehicle in-memory state.

Responsibilities:
- Cache the latest telemetry sample of every plate
- Hold the open stop interval (if any) of every plate
- Remember the last accepted LocTime per plate (ordering check)
- Hand out consistent snapshots to the HTTP status routes

Architecture:
- Thread-safe (threading.Lock), all reads return copies
- Owned by TripMonitor; transports never touch it directly
- One plate is only ever mutated by its own vehicle worker, so
  sequences of calls for the same plate never interleave
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Optional

from src.Schemas.telemetry import TelemetrySample
from src.Services.geo_math import Position


@dataclass
class StopInterval:
    """
    A run of zero-speed samples of one vehicle.

    processed is set once the long-stop event fired for this interval.
    """
    stop_start: datetime
    location: Position
    last_loc_time: datetime
    processed: bool = False

    @property
    def dwell_minutes(self) -> float:
        return (self.last_loc_time - self.stop_start).total_seconds() / 60.0


@dataclass
class VehicleState:
    plate: str
    latest: Optional[TelemetrySample] = None
    stop: Optional[StopInterval] = None
    last_loc_time: Optional[datetime] = None
    samples_seen: int = field(default=0)


class VehicleStateStore:
    """
    Thread-safe map plate -> VehicleState.
    """

    def __init__(self):
        self._vehicles: Dict[str, VehicleState] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, plate: str) -> VehicleState:
        state = self._vehicles.get(plate)
        if state is None:
            state = VehicleState(plate=plate)
            self._vehicles[plate] = state
        return state

    # ==========================================================
    # LATEST SAMPLE CACHE
    # ==========================================================

    def update_latest(self, sample: TelemetrySample) -> None:
        with self._lock:
            state = self._get_or_create(sample.plate)
            state.latest = sample
            state.samples_seen += 1

    # ==========================================================
    # ORDERING
    # ==========================================================

    def last_loc_time(self, plate: str) -> Optional[datetime]:
        with self._lock:
            state = self._vehicles.get(plate)
            return state.last_loc_time if state else None

    def set_last_loc_time(self, plate: str, loc_time: datetime) -> None:
        with self._lock:
            self._get_or_create(plate).last_loc_time = loc_time

    # ==========================================================
    # STOP INTERVALS
    # ==========================================================

    def open_stop(self, plate: str, loc_time: datetime, location: Position) -> StopInterval:
        with self._lock:
            interval = StopInterval(stop_start=loc_time, location=location, last_loc_time=loc_time)
            self._get_or_create(plate).stop = interval
            return replace(interval)

    def touch_stop(self, plate: str, loc_time: datetime) -> Optional[StopInterval]:
        """Advance last_loc_time of the open interval; returns a copy."""
        with self._lock:
            state = self._vehicles.get(plate)
            if not state or not state.stop:
                return None
            state.stop.last_loc_time = loc_time
            return replace(state.stop)

    def mark_stop_processed(self, plate: str) -> bool:
        """
        Flag the open interval as processed.

        Returns:
            bool: True if this call set the flag, False if there is no open
            interval or it was already processed.
        """
        with self._lock:
            state = self._vehicles.get(plate)
            if not state or not state.stop or state.stop.processed:
                return False
            state.stop.processed = True
            return True

    def clear_stop(self, plate: str) -> Optional[StopInterval]:
        with self._lock:
            state = self._vehicles.get(plate)
            if not state or not state.stop:
                return None
            interval, state.stop = state.stop, None
            return interval

    # ==========================================================
    # SNAPSHOTS
    # ==========================================================

    def snapshot(self) -> Dict[str, VehicleState]:
        """Copy of every vehicle state (safe to read without the lock)."""
        with self._lock:
            return {
                plate: replace(state, stop=replace(state.stop) if state.stop else None)
                for plate, state in self._vehicles.items()
            }

    def open_stop_count(self) -> int:
        with self._lock:
            return sum(1 for state in self._vehicles.values() if state.stop)

    def __len__(self) -> int:
        with self._lock:
            return len(self._vehicles)
