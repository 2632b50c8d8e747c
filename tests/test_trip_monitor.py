# tests/test_trip_monitor.py
import asyncio

from src.Schemas.telemetry import TelemetrySample

from helpers import DEPOT, FAR_FROM_DEPOT, NEAR_DEPOT, T0, minutes, record


async def created(monitor, trip_id="T-100", plate="ABC123"):
    return await monitor.on_trip_change({"type": "created", "trip_id": trip_id, "plate": plate})


# ==========================================================
# STARTUP RECONCILIATION
# ==========================================================

async def test_reconcile_registers_active_then_planned(store, monitor):
    store.add_trip("T-1", "AAA111", started=T0)
    store.add_trip("T-2", "BBB222", started=T0)
    store.add_trip("T-3", "CCC333")
    store.add_trip("T-4", "DDD444", started=T0, ended=T0 + minutes(30))
    store.add_trip("T-5", "AAA111")

    assert len(monitor.registry) == 0
    assert await monitor.reconcile() == 3

    assert monitor.registry.get("AAA111").trip_id == "T-1"
    assert monitor.registry.get("AAA111").is_started
    assert monitor.registry.get("CCC333").trip_id == "T-3"
    assert not monitor.registry.get("CCC333").is_started
    assert "DDD444" not in monitor.registry
    assert monitor.reconciled


async def test_reconcile_can_skip_planned_trips(store, monitor):
    store.add_trip("T-1", "AAA111", started=T0)
    store.add_trip("T-3", "CCC333")
    monitor.reconcile_planned = False

    assert await monitor.reconcile() == 1
    assert store.count("list_planned_trips") == 0


async def test_reconcile_again_adds_missed_trips_and_drops_closed_ones(store, monitor):
    store.add_trip("T-1", "AAA111", started=T0)
    store.add_trip("T-2", "BBB222")
    await monitor.reconcile()

    store.add_trip("T-1", "AAA111", started=T0, ended=T0 + minutes(30))
    store.trips.pop("T-2")
    store.add_trip("T-3", "CCC333", started=T0)

    assert await monitor.reconcile() == 1
    assert [t.trip_id for t in monitor.registry.snapshot()] == ["T-3"]
    assert await monitor.reconcile() == 0


async def test_reconcile_keeps_entries_the_store_still_has_open(store, monitor):
    monitor.reconcile_planned = False
    store.add_trip("T-2", "BBB222")
    await created(monitor, "T-2", "BBB222")

    assert await monitor.reconcile() == 0
    assert monitor.registry.get("BBB222").trip_id == "T-2"


# ==========================================================
# TELEMETRY PIPELINE
# ==========================================================

async def test_first_movement_starts_trip_and_logs_coordinate(store, monitor):
    store.add_trip("T-100", "ABC123")
    await created(monitor)

    await monitor.on_telemetry(record(speed=0, loc_time=T0))
    await monitor.drain()
    assert store.count("set_actual_start") == 0
    assert store.count("append_coordinate") == 0

    await monitor.on_telemetry(record(speed=40, loc_time=T0 + minutes(1)))
    await monitor.drain()

    assert store.trips["T-100"].is_started
    assert monitor.registry.get("ABC123").is_started
    assert len(store.coordinates) == 1
    assert store.coordinates[0]["timestamp"] == T0 + minutes(1)
    assert store.coordinates[0]["speed"] == 40


async def test_reaching_last_customer_closes_trip(store, monitor):
    store.add_trip("T-100", "ABC123", started=T0)
    store.add_customer("T-100", "C-1", FAR_FROM_DEPOT)
    await created(monitor)

    await monitor.on_telemetry(record(speed=30, position=DEPOT, loc_time=T0))
    await monitor.drain()
    assert not store.customers["T-100"]["C-1"].completed

    await monitor.on_telemetry(record(speed=12, position=FAR_FROM_DEPOT, loc_time=T0 + minutes(4)))
    await monitor.drain()

    assert store.customers["T-100"]["C-1"].completed
    assert store.trips["T-100"].is_completed
    assert monitor.registry.get("ABC123") is None

    # Trip-ended notification for the trip we just closed
    assert await monitor.on_trip_change({"type": "ended", "trip_id": "T-100"}) is False


async def test_samples_of_one_vehicle_are_processed_in_order(store, monitor):
    store.add_trip("T-100", "ABC123", started=T0)
    await created(monitor)

    for n in range(10):
        await monitor.on_telemetry(record(speed=20 + n, loc_time=T0 + minutes(n)))
    await monitor.drain("ABC123")

    assert [c["speed"] for c in store.coordinates] == [20 + n for n in range(10)]


async def test_long_stop_completes_customer_at_stop_location(store, monitor):
    store.add_trip("T-100", "ABC123")
    store.add_customer("T-100", "C-1", NEAR_DEPOT)
    await created(monitor)

    # Started by another writer; this process only sees the vehicle standing still
    store.add_trip("T-100", "ABC123", started=T0)

    for n in range(5):
        await monitor.on_telemetry(record(speed=0, position=DEPOT, loc_time=T0 + minutes(n)))
    await monitor.drain()
    assert not store.customers["T-100"]["C-1"].completed

    await monitor.on_telemetry(record(speed=0, position=DEPOT, loc_time=T0 + minutes(5)))
    await monitor.drain()

    assert store.customers["T-100"]["C-1"].completed
    assert store.trips["T-100"].is_completed
    assert monitor.vehicle_state("ABC123").stop is None


async def test_long_stop_of_unstarted_trip_completes_nothing(store, monitor):
    store.add_trip("T-100", "ABC123")
    store.add_customer("T-100", "C-1", DEPOT)
    await created(monitor)

    for n in range(7):
        await monitor.on_telemetry(record(speed=0, position=DEPOT, loc_time=T0 + minutes(n)))
    await monitor.drain()

    assert store.count("find_active_trip_for_vehicle") == 1
    assert store.count("mark_completed") == 0
    assert not store.trips["T-100"].is_started


async def test_unmonitored_vehicle_touches_no_store(store, monitor):
    sample = await monitor.on_telemetry(record(plate="ZZZ999", speed=50))
    await monitor.drain()

    assert sample.plate == "ZZZ999"
    assert store.calls == []
    assert monitor.vehicle_state("ZZZ999").speed == 50
    assert monitor.vehicle_state("ZZZ999").trip_id is None


async def test_invalid_record_is_rejected(store, monitor):
    assert await monitor.on_telemetry({"Speed": 30, "Latitude": 1, "Longitude": 2}) is None
    assert await monitor.on_telemetry({"Plate": "ABC123", "Speed": 30}) is None
    assert monitor.vehicle_states() == []


async def test_coordinate_log_failure_does_not_stop_completion(store, monitor):
    store.add_trip("T-100", "ABC123", started=T0)
    store.add_customer("T-100", "C-1", DEPOT)
    store.fail.add("append_coordinate")
    await created(monitor)

    await monitor.on_telemetry(record(speed=10, position=NEAR_DEPOT))
    await monitor.drain()

    assert store.coordinates == []
    assert store.customers["T-100"]["C-1"].completed


async def test_slow_vehicle_does_not_block_others(store, monitor):
    store.add_trip("T-A", "AAA111", started=T0)
    store.add_trip("T-B", "BBB222", started=T0)
    await created(monitor, "T-A", "AAA111")
    await created(monitor, "T-B", "BBB222")
    gate = asyncio.Event()
    store.gates["T-A"] = gate

    await monitor.on_telemetry(record(plate="AAA111", speed=10))
    await monitor.on_telemetry(record(plate="BBB222", speed=10))
    await asyncio.wait_for(monitor.drain("BBB222"), timeout=2)

    assert [c["plate"] for c in store.coordinates] == ["BBB222"]

    gate.set()
    await asyncio.wait_for(monitor.drain("AAA111"), timeout=2)
    assert sorted(c["plate"] for c in store.coordinates) == ["AAA111", "BBB222"]


async def test_sample_objects_are_accepted_directly(store, monitor):
    sample = TelemetrySample(
        plate="ABC123", speed=0, latitude=0.0, longitude=0.0, received_at=T0
    )
    assert await monitor.on_telemetry(sample) is sample
    await monitor.drain()

    state = monitor.vehicle_state("ABC123")
    assert (state.latitude, state.longitude) == (0.0, 0.0)
    assert state.stop is None


async def test_failed_closure_is_retried_by_next_sample(store, monitor):
    store.add_trip("T-100", "ABC123", started=T0)
    store.add_customer("T-100", "C-1", DEPOT)
    await created(monitor)
    store.fail.add("complete_trip")

    await monitor.on_telemetry(record(speed=10, position=NEAR_DEPOT, loc_time=T0))
    await monitor.drain()
    assert store.customers["T-100"]["C-1"].completed
    assert not store.trips["T-100"].is_completed
    assert "ABC123" in monitor.registry

    store.fail.clear()
    await monitor.on_telemetry(record(speed=25, position=FAR_FROM_DEPOT, loc_time=T0 + minutes(1)))
    await monitor.drain()

    assert store.trips["T-100"].is_completed
    assert "ABC123" not in monitor.registry


async def test_stop_interval_does_not_carry_into_next_trip(store, monitor):
    store.add_trip("T-1", "ABC123")
    await created(monitor, "T-1")
    for n in range(7):
        await monitor.on_telemetry(record(speed=0, position=DEPOT, loc_time=T0 + minutes(n)))
    await monitor.drain()
    assert monitor.vehicle_state("ABC123").stop.processed

    await monitor.on_trip_change({"type": "ended", "trip_id": "T-1"})
    assert monitor.vehicle_state("ABC123").stop is None

    store.add_trip("T-2", "ABC123")
    store.add_customer("T-2", "C-1", NEAR_DEPOT)
    await created(monitor, "T-2")
    store.add_trip("T-2", "ABC123", started=T0)

    for n in range(7, 13):
        await monitor.on_telemetry(record(speed=0, position=DEPOT, loc_time=T0 + minutes(n)))
    await monitor.drain()

    assert store.customers["T-2"]["C-1"].completed


async def test_idle_worker_of_unmonitored_vehicle_is_released(store, monitor):
    monitor.idle_evict_s = 0.05
    store.add_trip("T-100", "ABC123", started=T0)
    await created(monitor)

    await monitor.on_telemetry(record(plate="ABC123", speed=10))
    await monitor.on_telemetry(record(plate="ZZZ999", speed=10))
    await monitor.drain()
    await asyncio.sleep(0.3)

    assert "ZZZ999" not in monitor._mailboxes
    assert "ZZZ999" not in monitor._workers
    assert "ABC123" in monitor._mailboxes

    await monitor.on_telemetry(record(plate="ZZZ999", speed=20, loc_time=T0 + minutes(1)))
    await monitor.drain()
    assert monitor.vehicle_state("ZZZ999").speed == 20


async def test_ended_releases_close_bookkeeping(store, monitor):
    store.add_trip("T-100", "ABC123", started=T0)
    await created(monitor)
    await monitor.on_telemetry(record(speed=10))
    await monitor.drain()
    assert "T-100" in monitor.lifecycle._close_locks

    assert await monitor.on_trip_change({"type": "ended", "trip_id": "T-100"}) is True
    assert "T-100" not in monitor.lifecycle._close_locks


# ==========================================================
# TRIP-CHANGE NOTIFICATIONS
# ==========================================================

async def test_created_is_idempotent_and_conflicts_are_ignored(store, monitor):
    store.add_trip("T-100", "ABC123")
    store.add_trip("T-200", "ABC123")

    assert await created(monitor) is True
    assert await created(monitor) is False
    assert await created(monitor, trip_id="T-200") is False

    assert monitor.registry.get("ABC123").trip_id == "T-100"


async def test_redelivered_created_for_closed_trip_is_ignored(store, monitor):
    store.add_trip("T-1", "ABC123", started=T0)
    store.add_customer("T-1", "C-1", DEPOT)
    await created(monitor, "T-1")
    await monitor.on_telemetry(record(speed=10, position=NEAR_DEPOT))
    await monitor.drain()
    assert store.trips["T-1"].is_completed

    assert await created(monitor, "T-1") is False
    assert "ABC123" not in monitor.registry

    store.add_trip("T-2", "ABC123")
    assert await created(monitor, "T-2") is True
    assert monitor.registry.get("ABC123").trip_id == "T-2"


async def test_created_for_trip_completed_elsewhere_is_ignored(store, monitor):
    store.add_trip("T-1", "ABC123", started=T0, ended=T0 + minutes(30))

    assert await created(monitor, "T-1") is False
    assert len(monitor.registry) == 0


async def test_created_naming_another_vehicle_is_ignored(store, monitor):
    store.add_trip("T-1", "ABC123")

    assert await created(monitor, "T-1", plate="ZZZ999") is False
    assert len(monitor.registry) == 0


async def test_created_with_plate_is_registered_while_store_is_down(store, monitor):
    store.fail.add("get_trip")

    assert await created(monitor) is True
    assert await monitor.on_trip_change({"type": "created", "trip_id": "T-200"}) is False
    assert monitor.registry.get("ABC123").trip_id == "T-100"


async def test_created_without_plate_is_resolved_from_store(store, monitor):
    store.add_trip("T-100", "ABC123", started=T0)

    assert await monitor.on_trip_change({"type": "created", "trip_id": "T-100"}) is True
    assert monitor.registry.get("ABC123").actual_start_time == T0


async def test_created_without_plate_for_unknown_trip_is_ignored(monitor):
    assert await monitor.on_trip_change({"type": "created", "trip_id": "T-404"}) is False
    assert len(monitor.registry) == 0


async def test_ended_stops_monitoring(store, monitor):
    store.add_trip("T-100", "ABC123")
    await created(monitor)

    assert await monitor.on_trip_change({"type": "ended", "trip_id": "T-100"}) is True
    assert "ABC123" not in monitor.registry

    await monitor.on_telemetry(record(speed=40))
    await monitor.drain()
    assert store.count("set_actual_start") == 0


async def test_unknown_notification_type_is_ignored(monitor):
    assert await monitor.on_trip_change({"type": "deleted", "trip_id": "T-100"}) is False
    assert await monitor.on_trip_change({"trip_id": "T-100"}) is False


async def test_status_reports_registry_and_vehicles(store, monitor):
    store.add_trip("T-100", "ABC123", started=T0)
    await created(monitor)
    await monitor.on_telemetry(record(speed=0))
    await monitor.on_telemetry(record(plate="ZZZ999", speed=10))
    await monitor.drain()

    status = monitor.status()

    assert status.monitored_trips == 1
    assert status.tracked_vehicles == 2
    assert status.open_stops == 1
    assert status.trips[0].trip_id == "T-100"
