# src/Services/trip_registry.py
"""
Trip Registry - the set of trips currently being monitored.

Maps vehicle_plate -> MonitoredTrip. At most one monitored trip per plate:
registering a second trip for a plate that already has one is refused (the
caller must unregister the existing entry first).

Writers: startup reconciliation and trip-change notifications.
Readers: every telemetry sample (through get()).

Thread-safe: all access goes through a threading.Lock and reads return
immutable values, so a reader always sees a consistent entry.

An optional on_change(plate) callback runs (outside the lock) whenever a
plate gains or loses its monitored trip.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from src.Core.errors import InconsistentRegistry


@dataclass(frozen=True)
class MonitoredTrip:
    trip_id: str
    plate: str
    actual_start_time: Optional[datetime] = None

    @property
    def is_started(self) -> bool:
        return self.actual_start_time is not None


class TripRegistry:
    """
    Thread-safe plate -> MonitoredTrip mapping.
    """

    def __init__(self, on_change: Optional[Callable[[str], None]] = None):
        self._by_plate: Dict[str, MonitoredTrip] = {}
        self._lock = threading.Lock()
        self._on_change = on_change

    def register(self, plate: str, trip_id: str, actual_start_time: Optional[datetime] = None) -> bool:
        """
        Start monitoring `trip_id` for `plate`.

        Returns:
            bool: True if a new entry was added, False if the same trip was
            already registered (idempotent re-delivery).

        Raises:
            InconsistentRegistry: `plate` is registered to a different trip
        """
        with self._lock:
            current = self._by_plate.get(plate)

            if current is not None:
                if current.trip_id == trip_id:
                    if actual_start_time is not None and current.actual_start_time is None:
                        self._by_plate[plate] = replace(current, actual_start_time=actual_start_time)
                    return False

                raise InconsistentRegistry(
                    f"Plate {plate} is already monitoring trip {current.trip_id}; "
                    f"refusing to register trip {trip_id}"
                )

            self._by_plate[plate] = MonitoredTrip(
                trip_id=trip_id,
                plate=plate,
                actual_start_time=actual_start_time
            )

        print(f"[REGISTRY] Monitoring trip {trip_id} for vehicle {plate}")
        self._notify(plate)
        return True

    def unregister(self, trip_id: str) -> Optional[MonitoredTrip]:
        """
        Stop monitoring `trip_id`.

        Returns:
            MonitoredTrip: The removed entry
            None: The trip was not registered
        """
        with self._lock:
            for plate, entry in self._by_plate.items():
                if entry.trip_id == trip_id:
                    del self._by_plate[plate]
                    break
            else:
                return None

        print(f"[REGISTRY] Stopped monitoring trip {trip_id} (vehicle {entry.plate})")
        self._notify(entry.plate)
        return entry

    def get(self, plate: str) -> Optional[MonitoredTrip]:
        with self._lock:
            return self._by_plate.get(plate)

    def mark_started(self, trip_id: str, actual_start_time: datetime) -> Optional[MonitoredTrip]:
        """Record the start time locally once the store accepted it."""
        with self._lock:
            for plate, entry in self._by_plate.items():
                if entry.trip_id == trip_id:
                    updated = replace(entry, actual_start_time=actual_start_time)
                    self._by_plate[plate] = updated
                    return updated
            return None

    def snapshot(self) -> List[MonitoredTrip]:
        with self._lock:
            return sorted(self._by_plate.values(), key=lambda t: t.plate)

    def _notify(self, plate: str) -> None:
        if self._on_change is not None:
            self._on_change(plate)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_plate)

    def __contains__(self, plate: str) -> bool:
        with self._lock:
            return plate in self._by_plate
