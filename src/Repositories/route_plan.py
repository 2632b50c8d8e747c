# src/Repositories/route_plan.py
"""
Route Plan Repository - Database operations for trips (route_plans).

Responsibilities:
- Look up open trips per vehicle and across the fleet
- Persist the two lifecycle timestamps (start once, end once)
- Aggregate trip completion (duration + audit record)
- Trip listings for the backfill tooling

All writes are conditional on the target column still being NULL, so
repeating a write is harmless.

Usage:
    from src.Repositories.route_plan import list_active_trips, set_actual_start

    trips = list_active_trips(db)
    started = set_actual_start(db, "T-100", datetime.now(timezone.utc))
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from src.Models.route_plan import RoutePlan
from src.Models.trip_completion_audit import TripCompletionAudit
from src.Repositories.assigned_customer import count_completed, count_total


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ==========================================================
# READ OPERATIONS
# ==========================================================

def get_trip_by_id(DB: Session, trip_id: str) -> Optional[RoutePlan]:
    return DB.query(RoutePlan).filter(RoutePlan.trip_id == trip_id).first()


def find_active_trips_for_vehicle(DB: Session, vehicle_plate: str) -> list[RoutePlan]:
    """
    All ACTIVE trips (started, not ended) of a vehicle.

    Normally zero or one row. More than one means the one-active-trip-per-
    vehicle rule was broken upstream; the rows come back ordered by
    actual_start_time then trip_id so callers can apply a deterministic
    tie-break (first row wins).
    """
    return (
        DB.query(RoutePlan)
        .filter(
            RoutePlan.vehicle_plate == vehicle_plate,
            RoutePlan.actual_start_time.isnot(None),
            RoutePlan.actual_end_time.is_(None)
        )
        .order_by(RoutePlan.actual_start_time.asc(), RoutePlan.trip_id.asc())
        .all()
    )


def list_active_trips(DB: Session) -> list[RoutePlan]:
    """
    Every ACTIVE trip across the fleet (startup reconciliation).
    """
    return (
        DB.query(RoutePlan)
        .filter(
            RoutePlan.actual_start_time.isnot(None),
            RoutePlan.actual_end_time.is_(None)
        )
        .order_by(RoutePlan.actual_start_time.asc(), RoutePlan.trip_id.asc())
        .all()
    )


def list_planned_trips(DB: Session) -> list[RoutePlan]:
    """
    Trips created but not started yet, oldest first.
    """
    return (
        DB.query(RoutePlan)
        .filter(
            RoutePlan.actual_start_time.is_(None),
            RoutePlan.actual_end_time.is_(None)
        )
        .order_by(RoutePlan.created_at.asc(), RoutePlan.trip_id.asc())
        .all()
    )


def list_trips_created_between(DB: Session, start: datetime, end: datetime) -> list[RoutePlan]:
    """
    Trips whose created_at falls in [start, end). Used by the backfill tooling.
    """
    return (
        DB.query(RoutePlan)
        .filter(RoutePlan.created_at >= start, RoutePlan.created_at < end)
        .order_by(RoutePlan.created_at.asc(), RoutePlan.trip_id.asc())
        .all()
    )


# ==========================================================
# WRITE OPERATIONS
# ==========================================================

def set_actual_start(DB: Session, trip_id: str, start_time: datetime) -> bool:
    """
    Set actual_start_time (PLANNED -> ACTIVE).

    Returns:
        bool: True if this call started the trip, False if it was already
        started, already ended or does not exist.
    """
    result = DB.execute(
        update(RoutePlan)
        .where(
            RoutePlan.trip_id == trip_id,
            RoutePlan.actual_start_time.is_(None),
            RoutePlan.actual_end_time.is_(None)
        )
        .values(actual_start_time=start_time)
    )
    DB.commit()

    started = result.rowcount == 1
    if started:
        print(f"[REPO] Trip started: {trip_id} at {start_time.isoformat()}")
    return started


def set_actual_end(
    DB: Session,
    trip_id: str,
    end_time: datetime,
    commit: bool = True
) -> Optional[RoutePlan]:
    """
    Set actual_end_time and actual_duration_minutes (ACTIVE -> COMPLETED).

    The row is locked (SELECT ... FOR UPDATE where supported) so two
    concurrent closers cannot both succeed.

    Returns:
        RoutePlan: The trip, if this call ended it
        None: Trip missing, never started, or already ended
    """
    trip = (
        DB.query(RoutePlan)
        .filter(RoutePlan.trip_id == trip_id)
        .with_for_update()
        .first()
    )

    if trip is None or trip.actual_end_time is not None or trip.actual_start_time is None:
        if commit:
            DB.rollback()
        return None

    started_at = _as_utc(trip.actual_start_time)
    trip.actual_end_time = end_time
    trip.actual_duration_minutes = max(
        (_as_utc(end_time) - started_at).total_seconds() / 60.0, 0.0
    )

    if commit:
        DB.commit()
        DB.refresh(trip)

    return trip


def complete_trip(DB: Session, trip_id: str, end_time: datetime) -> Optional[TripCompletionAudit]:
    """
    Aggregate trip completion: end time, duration and audit record, in one
    transaction.

    Returns:
        TripCompletionAudit: The audit row, if this call completed the trip
        None: Nothing to do (already completed, not started, unknown trip)
    """
    trip = set_actual_end(DB, trip_id, end_time, commit=False)
    if trip is None:
        DB.rollback()
        return None

    audit = TripCompletionAudit(
        trip_id=trip.trip_id,
        vehicle_plate=trip.vehicle_plate,
        started_at=trip.actual_start_time,
        ended_at=end_time,
        duration_minutes=trip.actual_duration_minutes,
        customers_total=count_total(DB, trip_id),
        customers_completed=count_completed(DB, trip_id)
    )
    DB.add(audit)
    DB.commit()
    DB.refresh(audit)

    print(f"[REPO] Trip completed: {trip_id} ({audit.duration_minutes:.1f} min, "
          f"{audit.customers_completed}/{audit.customers_total} customers)")

    return audit
