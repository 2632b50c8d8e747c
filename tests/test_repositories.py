# tests/test_repositories.py
import time

import pytest

from src.Core.errors import ExternalWriteFailure
from src.Models.assigned_customer import AssignedCustomer
from src.Models.route_plan import RoutePlan
from src.Models.trip_completion_audit import TripCompletionAudit
from src.Repositories import assigned_customer as customer_repo
from src.Repositories import route_plan as route_plan_repo
from src.Repositories import trip_coordinate as coordinate_repo
from src.Services.trip_store import TripStore

from helpers import DEPOT, NEAR_DEPOT, T0, minutes


def seed_trip(db, trip_id="T-100", plate="ABC123", started=None, ended=None, created_at=T0, customers=()):
    db.add(RoutePlan(
        trip_id=trip_id,
        vehicle_plate=plate,
        actual_start_time=started,
        actual_end_time=ended,
        created_at=created_at
    ))
    for n, (code, position, completed) in enumerate(customers, start=1):
        db.add(AssignedCustomer(
            trip_id=trip_id,
            customer_code=code,
            sequence_order=n,
            latitude=position[0],
            longitude=position[1],
            completed=completed,
            completed_at=T0 if completed else None
        ))
    db.commit()


# ==========================================================
# ROUTE PLANS
# ==========================================================

def test_set_actual_start_only_once(db):
    seed_trip(db)

    assert route_plan_repo.set_actual_start(db, "T-100", T0) is True
    assert route_plan_repo.set_actual_start(db, "T-100", T0 + minutes(5)) is False
    assert route_plan_repo.set_actual_start(db, "T-404", T0) is False

    db.expire_all()
    trip = route_plan_repo.get_trip_by_id(db, "T-100")
    assert trip.actual_start_time.replace(tzinfo=None) == T0.replace(tzinfo=None)
    assert trip.state == "active"


def test_active_and_planned_listings(db):
    seed_trip(db, "T-1", "AAA111", started=T0 + minutes(10))
    seed_trip(db, "T-2", "AAA111", started=T0)
    seed_trip(db, "T-3", "BBB222")
    seed_trip(db, "T-4", "CCC333", started=T0, ended=T0 + minutes(30))

    assert [t.trip_id for t in route_plan_repo.find_active_trips_for_vehicle(db, "AAA111")] == ["T-2", "T-1"]
    assert [t.trip_id for t in route_plan_repo.list_active_trips(db)] == ["T-2", "T-1"]
    assert [t.trip_id for t in route_plan_repo.list_planned_trips(db)] == ["T-3"]
    assert route_plan_repo.find_active_trips_for_vehicle(db, "CCC333") == []


def test_complete_trip_writes_end_duration_and_one_audit_row(db):
    seed_trip(db, started=T0, customers=[("C-1", DEPOT, True), ("C-2", NEAR_DEPOT, True)])

    audit = route_plan_repo.complete_trip(db, "T-100", T0 + minutes(45))

    assert audit is not None
    assert audit.duration_minutes == pytest.approx(45.0)
    assert (audit.customers_total, audit.customers_completed) == (2, 2)

    assert route_plan_repo.complete_trip(db, "T-100", T0 + minutes(50)) is None
    assert db.query(TripCompletionAudit).count() == 1

    trip = route_plan_repo.get_trip_by_id(db, "T-100")
    assert trip.actual_duration_minutes == pytest.approx(45.0)
    assert trip.state == "completed"


def test_unstarted_trip_cannot_be_ended(db):
    seed_trip(db)

    assert route_plan_repo.set_actual_end(db, "T-100", T0) is None
    assert route_plan_repo.complete_trip(db, "T-100", T0) is None


def test_trips_created_between_is_half_open(db):
    seed_trip(db, "T-1", created_at=T0)
    seed_trip(db, "T-2", "BBB222", created_at=T0 + minutes(60))

    rows = route_plan_repo.list_trips_created_between(db, T0, T0 + minutes(60))
    assert [t.trip_id for t in rows] == ["T-1"]


# ==========================================================
# CUSTOMER STOPS
# ==========================================================

def test_mark_completed_is_idempotent(db):
    seed_trip(db, started=T0, customers=[("C-1", DEPOT, False), ("C-2", NEAR_DEPOT, False)])

    assert customer_repo.mark_completed(db, "T-100", "C-1", T0) is True
    assert customer_repo.mark_completed(db, "T-100", "C-1", T0 + minutes(1)) is False

    assert customer_repo.count_total(db, "T-100") == 2
    assert customer_repo.count_completed(db, "T-100") == 1
    assert [c.customer_code for c in customer_repo.list_incomplete(db, "T-100")] == ["C-2"]
    assert [c.customer_code for c in customer_repo.list_by_trip(db, "T-100")] == ["C-1", "C-2"]


def test_set_completed_at_only_touches_completed_stops(db):
    seed_trip(db, started=T0, customers=[("C-1", DEPOT, True), ("C-2", NEAR_DEPOT, False)])

    assert customer_repo.set_completed_at(db, "T-100", "C-1", T0 + minutes(7)) is True
    assert customer_repo.set_completed_at(db, "T-100", "C-2", T0 + minutes(7)) is False
    assert [c.customer_code for c in customer_repo.list_completed(db, "T-100")] == ["C-1"]


def test_counts_of_unknown_trip_are_zero(db):
    assert customer_repo.count_total(db, "T-404") == 0
    assert customer_repo.count_completed(db, "T-404") == 0


# ==========================================================
# COORDINATE LOG
# ==========================================================

def test_coordinates_are_returned_in_time_order_within_window(db):
    for n in (3, 1, 2, 0):
        coordinate_repo.append_coordinate(db, "T-100", "ABC123", DEPOT[0], DEPOT[1], None, T0 + minutes(n))

    rows = coordinate_repo.get_coordinates_by_trip(db, "T-100", start=T0 + minutes(1), end=T0 + minutes(3))

    assert [r.timestamp.replace(tzinfo=None) for r in rows] == [
        (T0 + minutes(1)).replace(tzinfo=None),
        (T0 + minutes(2)).replace(tzinfo=None),
    ]
    assert rows[0].speed == 0.0
    assert len(coordinate_repo.get_coordinates_by_trip(db, "T-100")) == 4


# ==========================================================
# TRIP STORE
# ==========================================================

async def test_store_returns_detached_utc_schemas(session_factory, db):
    seed_trip(db, started=T0, customers=[("C-1", DEPOT, False)])
    store = TripStore(session_factory=session_factory, timeout_s=5)

    trip = await store.find_active_trip_for_vehicle("ABC123")
    assert trip.trip_id == "T-100"
    assert trip.actual_start_time == T0

    assert await store.mark_completed("T-100", "C-1", T0 + minutes(3)) is True
    assert await store.count_completed("T-100") == 1
    assert await store.complete_trip("T-100", T0 + minutes(20)) is True
    assert await store.complete_trip("T-100", T0 + minutes(21)) is False

    closed = await store.get_trip("T-100")
    assert closed.is_completed
    assert await store.find_active_trip_for_vehicle("ABC123") is None


async def test_store_coordinate_log_round_trip(session_factory):
    store = TripStore(session_factory=session_factory, timeout_s=5)

    await store.append_coordinate("T-100", "ABC123", DEPOT[0], DEPOT[1], 12.5, T0)
    coords = await store.get_coordinates("T-100")

    assert len(coords) == 1
    assert coords[0].timestamp == T0
    assert coords[0].speed == 12.5


async def test_store_timeout_is_reported_as_write_failure(session_factory):
    store = TripStore(session_factory=session_factory, timeout_s=0.05)

    with pytest.raises(ExternalWriteFailure) as exc:
        await store._run("slow_operation", lambda db: time.sleep(0.5))

    assert exc.value.timed_out
    assert exc.value.operation == "slow_operation"


async def test_store_errors_are_reported_as_write_failure(session_factory):
    store = TripStore(session_factory=session_factory, timeout_s=5)

    def broken(db):
        raise RuntimeError("connection reset")

    with pytest.raises(ExternalWriteFailure, match="connection reset") as exc:
        await store._run("broken_operation", broken)

    assert not exc.value.timed_out
    assert isinstance(exc.value.cause, RuntimeError)
