# src/Services/trip_store.py
"""
Trip Store - async access to trips, customer stops and the coordinate log.

Every call:
1. Runs the repository function in a worker thread (asyncio.to_thread)
   with its own short-lived Session
2. Is bounded by STORE_TIMEOUT_S (asyncio.wait_for)
3. Converts ORM rows to detached *_get schemas before the session closes
4. Raises ExternalWriteFailure on any failure or timeout

The event loop never blocks on the database, so a slow write for one
vehicle does not delay any other vehicle.

Usage:
    store = TripStore()
    trip = await store.find_active_trip_for_vehicle("ABC123")
    if trip:
        await store.append_coordinate(trip.trip_id, "ABC123", -26.14, 28.04, 0.0, now)
"""

import asyncio
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from src.Core import log_ws
from src.Core.config import settings
from src.Core.errors import ExternalWriteFailure
from src.DB.session import SessionLocal
from src.Repositories import assigned_customer as customer_repo
from src.Repositories import route_plan as route_plan_repo
from src.Repositories import trip_coordinate as coordinate_repo
from src.Schemas.trip import CustomerStop_get, Trip_get, TripCoordinate_get

T = TypeVar("T")


class TripStore:
    """
    Async facade over the repository modules.

    Args:
        session_factory: Session factory (default: src.DB.session.SessionLocal)
        timeout_s: Per-call timeout (default: settings.STORE_TIMEOUT_S)
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, timeout_s: Optional[float] = None):
        self.session_factory = session_factory or SessionLocal
        self.timeout_s = settings.STORE_TIMEOUT_S if timeout_s is None else timeout_s

    async def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        def call() -> T:
            with self.session_factory() as db:
                return fn(db)

        try:
            return await asyncio.wait_for(asyncio.to_thread(call), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise ExternalWriteFailure(operation, e, timed_out=True) from e
        except Exception as e:
            raise ExternalWriteFailure(operation, e) from e

    # ==========================================================
    # TRIPS
    # ==========================================================

    async def get_trip(self, trip_id: str) -> Optional[Trip_get]:
        def op(db: Session) -> Optional[Trip_get]:
            row = route_plan_repo.get_trip_by_id(db, trip_id)
            return Trip_get.model_validate(row) if row else None

        return await self._run("get_trip", op)

    async def find_active_trip_for_vehicle(self, plate: str) -> Optional[Trip_get]:
        """
        The ACTIVE trip of `plate`, if any.

        More than one ACTIVE trip breaks the one-trip-per-vehicle rule: the
        earliest actual_start_time (then lowest trip_id) wins and the
        conflict is logged.
        """
        def op(db: Session) -> List[Trip_get]:
            rows = route_plan_repo.find_active_trips_for_vehicle(db, plate)
            return [Trip_get.model_validate(r) for r in rows]

        trips = await self._run("find_active_trip_for_vehicle", op)
        if not trips:
            return None

        if len(trips) > 1:
            log_ws.log_from_thread(
                f"[STORE] Inconsistent registry: vehicle {plate} has {len(trips)} active trips "
                f"({', '.join(t.trip_id for t in trips)}); using {trips[0].trip_id}",
                msg_type="warning"
            )
        return trips[0]

    async def list_active_trips(self) -> List[Trip_get]:
        def op(db: Session) -> List[Trip_get]:
            return [Trip_get.model_validate(r) for r in route_plan_repo.list_active_trips(db)]

        return await self._run("list_active_trips", op)

    async def list_planned_trips(self) -> List[Trip_get]:
        def op(db: Session) -> List[Trip_get]:
            return [Trip_get.model_validate(r) for r in route_plan_repo.list_planned_trips(db)]

        return await self._run("list_planned_trips", op)

    async def list_trips_created_between(self, start: datetime, end: datetime) -> List[Trip_get]:
        def op(db: Session) -> List[Trip_get]:
            rows = route_plan_repo.list_trips_created_between(db, start, end)
            return [Trip_get.model_validate(r) for r in rows]

        return await self._run("list_trips_created_between", op)

    async def set_actual_start(self, trip_id: str, start_time: datetime) -> bool:
        return await self._run(
            "set_actual_start",
            lambda db: route_plan_repo.set_actual_start(db, trip_id, start_time)
        )

    async def set_actual_end(self, trip_id: str, end_time: datetime) -> bool:
        return await self._run(
            "set_actual_end",
            lambda db: route_plan_repo.set_actual_end(db, trip_id, end_time) is not None
        )

    async def complete_trip(self, trip_id: str, end_time: datetime) -> bool:
        """
        Aggregate completion (end time, duration, audit row).

        Returns:
            bool: True if this call closed the trip
        """
        return await self._run(
            "complete_trip",
            lambda db: route_plan_repo.complete_trip(db, trip_id, end_time) is not None
        )

    # ==========================================================
    # CUSTOMER STOPS
    # ==========================================================

    async def list_incomplete(self, trip_id: str) -> List[CustomerStop_get]:
        def op(db: Session) -> List[CustomerStop_get]:
            return [CustomerStop_get.model_validate(r) for r in customer_repo.list_incomplete(db, trip_id)]

        return await self._run("list_incomplete", op)

    async def list_completed(self, trip_id: str) -> List[CustomerStop_get]:
        def op(db: Session) -> List[CustomerStop_get]:
            return [CustomerStop_get.model_validate(r) for r in customer_repo.list_completed(db, trip_id)]

        return await self._run("list_completed", op)

    async def mark_completed(self, trip_id: str, customer_code: str, completed_at: datetime) -> bool:
        return await self._run(
            "mark_completed",
            lambda db: customer_repo.mark_completed(db, trip_id, customer_code, completed_at)
        )

    async def set_completed_at(self, trip_id: str, customer_code: str, completed_at: datetime) -> bool:
        return await self._run(
            "set_completed_at",
            lambda db: customer_repo.set_completed_at(db, trip_id, customer_code, completed_at)
        )

    async def count_completed(self, trip_id: str) -> int:
        return await self._run("count_completed", lambda db: customer_repo.count_completed(db, trip_id))

    async def count_total(self, trip_id: str) -> int:
        return await self._run("count_total", lambda db: customer_repo.count_total(db, trip_id))

    # ==========================================================
    # COORDINATE LOG
    # ==========================================================

    async def append_coordinate(
        self,
        trip_id: str,
        vehicle_plate: str,
        latitude: float,
        longitude: float,
        speed: float,
        timestamp: datetime
    ) -> None:
        def op(db: Session) -> None:
            coordinate_repo.append_coordinate(
                db, trip_id, vehicle_plate, latitude, longitude, speed, timestamp
            )

        await self._run("append_coordinate", op)

    async def get_coordinates(
        self,
        trip_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[TripCoordinate_get]:
        def op(db: Session) -> List[TripCoordinate_get]:
            rows = coordinate_repo.get_coordinates_by_trip(db, trip_id, start=start, end=end)
            return [TripCoordinate_get.model_validate(r) for r in rows]

        return await self._run("get_coordinates", op)

