# tests/helpers.py
"""Shared test doubles and telemetry builders."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from src.Core.errors import ExternalWriteFailure
from src.Schemas.trip import CustomerStop_get, Trip_get, TripCoordinate_get


T0 = datetime(2025, 12, 1, 10, 0, 0, tzinfo=timezone.utc)

DEPOT = (-26.1440, 28.0436)
NEAR_DEPOT = (-26.1441, 28.0437)       # ~15 m from DEPOT
FAR_FROM_DEPOT = (-26.1540, 28.0436)   # ~1.11 km from DEPOT


class FakeStore:
    """
    In-memory stand-in for TripStore with the same async interface.

    - fail: operation names that raise ExternalWriteFailure
    - gates: trip_id -> asyncio.Event; append_coordinate for that trip
      waits until the event is set
    - calls: (operation, args) log
    """

    def __init__(self):
        self.trips: Dict[str, Trip_get] = {}
        self.customers: Dict[str, Dict[str, CustomerStop_get]] = {}
        self.coordinates: List[dict] = []
        self.calls: List[tuple] = []
        self.fail: Set[str] = set()
        self.gates: Dict[str, asyncio.Event] = {}

    # ---------- fixtures helpers ----------

    def add_trip(self, trip_id, plate, started=None, ended=None, created_at=None) -> Trip_get:
        trip = Trip_get(
            trip_id=trip_id,
            vehicle_plate=plate,
            actual_start_time=started,
            actual_end_time=ended,
            created_at=created_at or T0
        )
        self.trips[trip_id] = trip
        self.customers.setdefault(trip_id, {})
        return trip

    def add_customer(self, trip_id, code, position, completed=False, completed_at=None) -> None:
        self.customers.setdefault(trip_id, {})[code] = CustomerStop_get(
            trip_id=trip_id,
            customer_code=code,
            latitude=position[0],
            longitude=position[1],
            completed=completed,
            completed_at=completed_at
        )

    def add_coordinate(self, trip_id, position, timestamp, plate="ABC123", speed=0.0) -> None:
        self.coordinates.append({
            "trip_id": trip_id, "plate": plate, "latitude": position[0],
            "longitude": position[1], "speed": speed, "timestamp": timestamp
        })

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def _call(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        await asyncio.sleep(0)
        if operation in self.fail:
            raise ExternalWriteFailure(operation, RuntimeError("store unavailable"))

    # ---------- trips ----------

    async def get_trip(self, trip_id):
        await self._call("get_trip", trip_id)
        return self.trips.get(trip_id)

    async def find_active_trip_for_vehicle(self, plate):
        await self._call("find_active_trip_for_vehicle", plate)
        active = sorted(
            (t for t in self.trips.values()
             if t.vehicle_plate == plate and t.is_started and not t.is_completed),
            key=lambda t: (t.actual_start_time, t.trip_id)
        )
        return active[0] if active else None

    async def list_active_trips(self):
        await self._call("list_active_trips")
        return [t for t in self.trips.values() if t.is_started and not t.is_completed]

    async def list_planned_trips(self):
        await self._call("list_planned_trips")
        return [t for t in self.trips.values() if not t.is_started and not t.is_completed]

    async def list_trips_created_between(self, start, end):
        await self._call("list_trips_created_between", start, end)
        return [t for t in self.trips.values() if start <= t.created_at < end]

    async def set_actual_start(self, trip_id, start_time):
        await self._call("set_actual_start", trip_id, start_time)
        trip = self.trips.get(trip_id)
        if trip is None or trip.is_started or trip.is_completed:
            return False
        self.trips[trip_id] = trip.model_copy(update={"actual_start_time": start_time})
        return True

    async def set_actual_end(self, trip_id, end_time):
        await self._call("set_actual_end", trip_id, end_time)
        trip = self.trips.get(trip_id)
        if trip is None or not trip.is_started or trip.is_completed:
            return False
        self.trips[trip_id] = trip.model_copy(update={"actual_end_time": end_time})
        return True

    async def complete_trip(self, trip_id, end_time):
        await self._call("complete_trip", trip_id, end_time)
        trip = self.trips.get(trip_id)
        if trip is None or not trip.is_started or trip.is_completed:
            return False
        self.trips[trip_id] = trip.model_copy(update={"actual_end_time": end_time})
        return True

    # ---------- customer stops ----------

    async def list_incomplete(self, trip_id):
        await self._call("list_incomplete", trip_id)
        return [c for c in self.customers.get(trip_id, {}).values() if not c.completed]

    async def list_completed(self, trip_id):
        await self._call("list_completed", trip_id)
        return [c for c in self.customers.get(trip_id, {}).values()
                if c.completed and c.completed_at is not None]

    async def mark_completed(self, trip_id, customer_code, completed_at):
        await self._call("mark_completed", trip_id, customer_code, completed_at)
        stop = self.customers.get(trip_id, {}).get(customer_code)
        if stop is None or stop.completed:
            return False
        self.customers[trip_id][customer_code] = stop.model_copy(
            update={"completed": True, "completed_at": completed_at}
        )
        return True

    async def set_completed_at(self, trip_id, customer_code, completed_at):
        await self._call("set_completed_at", trip_id, customer_code, completed_at)
        stop = self.customers.get(trip_id, {}).get(customer_code)
        if stop is None or not stop.completed:
            return False
        self.customers[trip_id][customer_code] = stop.model_copy(update={"completed_at": completed_at})
        return True

    async def count_completed(self, trip_id):
        await self._call("count_completed", trip_id)
        return sum(1 for c in self.customers.get(trip_id, {}).values() if c.completed)

    async def count_total(self, trip_id):
        await self._call("count_total", trip_id)
        return len(self.customers.get(trip_id, {}))

    # ---------- coordinate log ----------

    async def append_coordinate(self, trip_id, vehicle_plate, latitude, longitude, speed, timestamp):
        gate = self.gates.get(trip_id)
        if gate is not None:
            await gate.wait()
        await self._call("append_coordinate", trip_id, vehicle_plate, latitude, longitude, speed, timestamp)
        self.add_coordinate(trip_id, (latitude, longitude), timestamp, plate=vehicle_plate, speed=speed)

    async def get_coordinates(self, trip_id, start=None, end=None):
        await self._call("get_coordinates", trip_id, start, end)
        rows = [
            c for c in self.coordinates
            if c["trip_id"] == trip_id
            and (start is None or c["timestamp"] >= start)
            and (end is None or c["timestamp"] < end)
        ]
        rows.sort(key=lambda c: c["timestamp"])
        return [
            TripCoordinate_get(
                trip_id=c["trip_id"], latitude=c["latitude"], longitude=c["longitude"],
                speed=c["speed"], timestamp=c["timestamp"]
            )
            for c in rows
        ]


def record(plate="ABC123", speed=0, position=DEPOT, loc_time: Optional[datetime] = T0, **extra) -> dict:
    """Raw telemetry record as sent by the tracking platform."""
    data = {
        "Plate": plate,
        "Speed": speed,
        "Latitude": position[0],
        "Longitude": position[1],
        "LocTime": loc_time.strftime("%Y-%m-%d %H:%M:%S") if loc_time else None,
    }
    data.update(extra)
    return data


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


