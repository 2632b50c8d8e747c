# src/Services/trip_monitor.py
"""
Trip Monitor - coordinator of the real-time trip monitoring engine.

Entry points (the only mutators of monitoring state):
- on_telemetry(record): one telemetry record from any transport
- on_trip_change(event): one trip-created / trip-ended notification

Per-vehicle pipeline (one mailbox + one worker task per plate):
1. Cache the latest sample (VehicleStateStore)
2. Skip vehicles without a monitored trip
3. Start the trip on first movement (TripLifecycleController)
4. Started trip: log the coordinate, complete stops within the live radius
5. Stop detection; a long stop re-runs the geofence check at the stop position

A worker whose vehicle has no monitored trip and stays silent for
idle_evict_s seconds is reclaimed; the next sample starts a fresh one.

Samples of one plate are processed strictly in arrival order. Different
plates run concurrently; a slow store call only delays its own vehicle.

Startup:
    await trip_monitor.reconcile()     # before any transport starts

reconcile() may run again at any time (the notification listener calls it
after every reconnect) to pick up trips whose notifications were missed.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from src.Core import log_ws
from src.Core.config import settings
from src.Core.errors import ExternalWriteFailure, InconsistentRegistry, TelemetryValidationError
from src.Schemas.monitor import MonitoredTrip_get, MonitorStatus_get, StopInterval_get, VehicleState_get
from src.Schemas.telemetry import TelemetrySample
from src.Schemas.trip import TripChangeEvent
from src.Services.geo_math import Position
from src.Services.geofence_completion import GeofenceCompletionEngine
from src.Services.stop_detector import LongStopEvent, StopDetector
from src.Services.trip_lifecycle import TripLifecycleController
from src.Services.trip_registry import TripRegistry
from src.Services.trip_store import TripStore
from src.Services.udp_core import normalize_telemetry_payload, validate_telemetry
from src.Services.vehicle_state import VehicleState, VehicleStateStore


class TripMonitor:
    """
    Owns the registry, the vehicle caches and the per-vehicle workers.

    Args:
        store: Persistence facade (default: TripStore on SessionLocal)
        live_radius_km: Completion radius for live telemetry
        mailbox_size: Max queued records per vehicle
        long_stop_minutes / reject_out_of_order: StopDetector policy
        reconcile_planned: Also register not-yet-started trips at startup
        idle_evict_s: Idle time after which an unmonitored vehicle's worker is reclaimed
    """

    def __init__(
        self,
        store: Optional[TripStore] = None,
        live_radius_km: Optional[float] = None,
        mailbox_size: Optional[int] = None,
        long_stop_minutes: Optional[float] = None,
        reject_out_of_order: Optional[bool] = None,
        reconcile_planned: Optional[bool] = None,
        idle_evict_s: Optional[float] = None
    ):
        self.store = store or TripStore()
        self.live_radius_km = settings.LIVE_COMPLETION_RADIUS_KM if live_radius_km is None else live_radius_km
        self.mailbox_size = settings.VEHICLE_MAILBOX_SIZE if mailbox_size is None else mailbox_size
        self.idle_evict_s = settings.VEHICLE_IDLE_EVICT_S if idle_evict_s is None else idle_evict_s
        self.reconcile_planned = (
            settings.RECONCILE_PLANNED_TRIPS if reconcile_planned is None else reconcile_planned
        )

        self.vehicles = VehicleStateStore()
        self.registry = TripRegistry(on_change=self.vehicles.clear_stop)
        self.stop_detector = StopDetector(
            self.vehicles,
            long_stop_minutes=long_stop_minutes,
            reject_out_of_order=reject_out_of_order
        )
        self.lifecycle = TripLifecycleController(self.store, self.registry)
        self.geofence = GeofenceCompletionEngine(self.store, self.lifecycle)

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.reconciled = False
        self._mailboxes: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}

    # ==========================================================
    # STARTUP RECONCILIATION
    # ==========================================================

    async def reconcile(self) -> int:
        """
        Rebuild the registry from the store.

        Runs once before ingestion and again whenever notifications may have
        been missed. ACTIVE trips are registered first; PLANNED trips (if
        enabled) only for plates that have no ACTIVE trip. Entries that were
        monitored before the call and that the store no longer reports as
        open are dropped.

        Returns:
            int: Number of trips registered

        Raises:
            ExternalWriteFailure: The store could not be read
        """
        self.loop = asyncio.get_running_loop()

        known = self.registry.snapshot()
        active = await self.store.list_active_trips()
        planned = await self.store.list_planned_trips() if self.reconcile_planned else []

        open_ids = {t.trip_id for t in active} | {t.trip_id for t in planned}
        dropped = 0
        for entry in known:
            if entry.trip_id not in open_ids and await self._drop_if_closed(entry.trip_id):
                dropped += 1

        registered = 0
        for trip in active:
            if self.lifecycle.is_closed(trip.trip_id):
                continue
            try:
                if self.registry.register(trip.vehicle_plate, trip.trip_id, trip.actual_start_time):
                    registered += 1
            except InconsistentRegistry as e:
                log_ws.log_from_thread(f"[MONITOR] Reconciliation: {e}", msg_type="warning")

        for trip in planned:
            if trip.vehicle_plate in self.registry:
                continue
            try:
                if self.registry.register(trip.vehicle_plate, trip.trip_id):
                    registered += 1
            except InconsistentRegistry as e:
                log_ws.log_from_thread(f"[MONITOR] Reconciliation: {e}", msg_type="warning")

        if self.reconciled:
            log_ws.log_from_thread(
                f"[MONITOR] Re-synced with store: {registered} trips added, {dropped} dropped",
                msg_type="log"
            )
        else:
            log_ws.log_from_thread(
                f"[MONITOR] Resumed monitoring {registered} trips",
                msg_type="log"
            )
        self.reconciled = True
        return registered

    async def _drop_if_closed(self, trip_id: str) -> bool:
        # Missing from both listings: either gone or it changed state meanwhile
        stored = await self.store.get_trip(trip_id)
        if stored is not None and not stored.is_completed:
            return False

        if self.registry.unregister(trip_id) is None:
            return False

        self.lifecycle.release(trip_id)
        log_ws.log_from_thread(
            f"[MONITOR] Reconciliation: trip {trip_id} is no longer open - stopped monitoring",
            msg_type="warning"
        )
        return True

    # ==========================================================
    # TELEMETRY INGESTION
    # ==========================================================

    async def on_telemetry(
        self,
        record: Union[Dict[str, Any], TelemetrySample],
        source: str = "api"
    ) -> Optional[TelemetrySample]:
        """
        Validate a telemetry record and queue it on its vehicle's mailbox.

        Returns:
            TelemetrySample: The queued sample
            None: The record was rejected (already logged)
        """
        if isinstance(record, TelemetrySample):
            sample = record
        else:
            sample = validate_telemetry(normalize_telemetry_payload(record), source)
            if sample is None:
                return None

        await self._mailbox(sample.plate).put(sample)
        return sample

    def submit_from_thread(self, record: Dict[str, Any], source: str) -> None:
        """
        Hand a raw record from a transport thread to the event loop.
        Fire and forget.
        """
        if self.loop is None or self.loop.is_closed():
            print(f"[MONITOR] Event loop not ready - dropping record from {source}")
            return

        asyncio.run_coroutine_threadsafe(self.on_telemetry(record, source), self.loop)

    def _mailbox(self, plate: str) -> asyncio.Queue:
        queue = self._mailboxes.get(plate)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.mailbox_size)
            self._mailboxes[plate] = queue
            self._workers[plate] = asyncio.create_task(
                self._vehicle_worker(plate, queue),
                name=f"vehicle-{plate}"
            )
        return queue

    async def _vehicle_worker(self, plate: str, queue: asyncio.Queue) -> None:
        while True:
            try:
                sample = await asyncio.wait_for(queue.get(), self.idle_evict_s)
            except asyncio.TimeoutError:
                if plate in self.registry or not queue.empty():
                    continue
                self._mailboxes.pop(plate, None)
                self._workers.pop(plate, None)
                print(f"[MONITOR] Released idle worker of unmonitored vehicle {plate}")
                return

            try:
                await self.process_sample(sample)
            except Exception as e:
                log_ws.log_from_thread(
                    f"[MONITOR] Error processing telemetry of {plate}: {type(e).__name__}: {e}",
                    msg_type="error"
                )
            finally:
                queue.task_done()

    # ==========================================================
    # PER-VEHICLE PIPELINE
    # ==========================================================

    async def process_sample(self, sample: TelemetrySample) -> None:
        """
        Run one sample through the pipeline. Called by the vehicle worker;
        never concurrently for the same plate.
        """
        plate = sample.plate
        position = Position(sample.latitude, sample.longitude)

        self.vehicles.update_latest(sample)

        trip = self.registry.get(plate)
        if trip is None:
            return

        trip = await self.lifecycle.maybe_start_trip(trip, sample)

        if trip.is_started:
            try:
                await self.store.append_coordinate(
                    trip.trip_id, plate, sample.latitude, sample.longitude, sample.speed, sample.log_time
                )
            except ExternalWriteFailure as e:
                log_ws.log_from_thread(f"[MONITOR] Coordinate not logged for {plate}: {e}", msg_type="error")

            try:
                await self.geofence.evaluate(trip.trip_id, position, self.live_radius_km)
            except ExternalWriteFailure as e:
                log_ws.log_from_thread(f"[MONITOR] Geofence check failed for {plate}: {e}", msg_type="error")

        # Closed or dropped by this sample
        if plate not in self.registry:
            return

        # ========================================
        # STOP DETECTION
        # ========================================
        try:
            event = self.stop_detector.observe(
                plate,
                sample.speed,
                position,
                sample.loc_time or sample.loc_time_raw
            )
        except TelemetryValidationError as e:
            log_ws.log_from_thread(f"[MONITOR] Stop tracking skipped: {e}", msg_type="warning")
            return

        if event is not None:
            await self._handle_long_stop(event)

    async def _handle_long_stop(self, event: LongStopEvent) -> None:
        trip = self.registry.get(event.plate)
        if trip is None:
            return

        if not trip.is_started:
            # Started by another writer while this process only saw zero speed
            try:
                active = await self.store.find_active_trip_for_vehicle(event.plate)
            except ExternalWriteFailure as e:
                log_ws.log_from_thread(f"[MONITOR] Long stop lookup failed for {event.plate}: {e}", msg_type="error")
                return

            if active is None or active.trip_id != trip.trip_id:
                return
            trip = self.registry.mark_started(trip.trip_id, active.actual_start_time) or trip

        log_ws.log_from_thread(
            f"[MONITOR] Long stop: vehicle {event.plate} stopped {event.dwell_minutes:.1f} min "
            f"at ({event.location.latitude:.5f}, {event.location.longitude:.5f})",
            msg_type="log"
        )

        try:
            await self.geofence.evaluate(
                trip.trip_id, event.location, self.live_radius_km, source="long-stop"
            )
        except ExternalWriteFailure as e:
            log_ws.log_from_thread(f"[MONITOR] Long-stop geofence check failed for {event.plate}: {e}", msg_type="error")

    # ==========================================================
    # TRIP-CHANGE NOTIFICATIONS
    # ==========================================================

    async def on_trip_change(self, event: Union[Dict[str, Any], TripChangeEvent]) -> bool:
        """
        Apply a trip-created / trip-ended notification to the registry.

        Idempotent: re-delivered notifications leave the registry unchanged.

        Returns:
            bool: True if the registry changed
        """
        if not isinstance(event, TripChangeEvent):
            try:
                event = TripChangeEvent.model_validate(event)
            except ValidationError as e:
                log_ws.log_from_thread(
                    f"[MONITOR] Invalid trip-change notification ignored: {e.error_count()} error(s)",
                    msg_type="warning"
                )
                return False

        if event.type == "created":
            return await self._on_trip_created(event)
        return self._on_trip_ended(event)

    async def _on_trip_created(self, event: TripChangeEvent) -> bool:
        if self.lifecycle.is_closed(event.trip_id):
            print(f"[MONITOR] Created notification for already completed trip {event.trip_id} ignored")
            return False

        plate = event.plate
        start_time: Optional[datetime] = None

        try:
            trip = await self.store.get_trip(event.trip_id)
        except ExternalWriteFailure as e:
            if not plate:
                log_ws.log_from_thread(
                    f"[MONITOR] Could not resolve trip {event.trip_id}: {e}",
                    msg_type="error"
                )
                return False
            log_ws.log_from_thread(
                f"[MONITOR] Could not verify trip {event.trip_id}: {e} - registering from notification",
                msg_type="warning"
            )
        else:
            if trip is None or trip.is_completed:
                log_ws.log_from_thread(
                    f"[MONITOR] Inconsistent registry: created notification for unknown or "
                    f"completed trip {event.trip_id} ignored",
                    msg_type="warning"
                )
                return False

            if plate and plate != trip.vehicle_plate:
                log_ws.log_from_thread(
                    f"[MONITOR] Inconsistent registry: created notification for trip {event.trip_id} "
                    f"names vehicle {plate}, store has {trip.vehicle_plate} - ignored",
                    msg_type="warning"
                )
                return False

            plate, start_time = trip.vehicle_plate, trip.actual_start_time

        try:
            return self.registry.register(plate, event.trip_id, start_time)
        except InconsistentRegistry as e:
            log_ws.log_from_thread(f"[MONITOR] Inconsistent registry: {e}", msg_type="warning")
            return False

    def _on_trip_ended(self, event: TripChangeEvent) -> bool:
        removed = self.registry.unregister(event.trip_id)
        if removed is not None:
            self.lifecycle.release(event.trip_id)
            return True

        if not self.lifecycle.is_closed(event.trip_id):
            log_ws.log_from_thread(
                f"[MONITOR] Inconsistent registry: ended notification for unmonitored trip "
                f"{event.trip_id} ignored",
                msg_type="warning"
            )
        return False

    # ==========================================================
    # LIFECYCLE / INTROSPECTION
    # ==========================================================

    async def drain(self, plate: Optional[str] = None) -> None:
        """Wait until every queued sample (of `plate`, or of all vehicles) has been processed."""
        if plate is not None:
            queue = self._mailboxes.get(plate)
            if queue is not None:
                await queue.join()
            return

        for queue in list(self._mailboxes.values()):
            await queue.join()

    async def shutdown(self) -> None:
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._mailboxes.clear()
        print("[MONITOR] Vehicle workers stopped")

    def status(self) -> MonitorStatus_get:
        trips = self.registry.snapshot()
        return MonitorStatus_get(
            monitored_trips=len(trips),
            tracked_vehicles=len(self.vehicles),
            open_stops=self.vehicles.open_stop_count(),
            trips=[
                MonitoredTrip_get(plate=t.plate, trip_id=t.trip_id, actual_start_time=t.actual_start_time)
                for t in trips
            ]
        )

    def vehicle_states(self) -> List[VehicleState_get]:
        return [
            self._to_vehicle_state(state)
            for _, state in sorted(self.vehicles.snapshot().items())
            if state.latest is not None
        ]

    def vehicle_state(self, plate: str) -> Optional[VehicleState_get]:
        state = self.vehicles.snapshot().get(plate)
        if state is None or state.latest is None:
            return None
        return self._to_vehicle_state(state)

    def _to_vehicle_state(self, state: VehicleState) -> VehicleState_get:
        sample = state.latest
        trip = self.registry.get(state.plate)
        stop = None
        if state.stop:
            stop = StopInterval_get(
                stop_start=state.stop.stop_start,
                last_loc_time=state.stop.last_loc_time,
                latitude=state.stop.location.latitude,
                longitude=state.stop.location.longitude,
                processed=state.stop.processed,
                dwell_minutes=state.stop.dwell_minutes
            )
        return VehicleState_get(
            plate=state.plate,
            speed=sample.speed,
            latitude=sample.latitude,
            longitude=sample.longitude,
            loc_time=sample.loc_time,
            received_at=sample.received_at,
            stop=stop,
            trip_id=trip.trip_id if trip else None
        )


# ============================================================
# GLOBAL TRIP MONITOR INSTANCE
# ============================================================
trip_monitor = TripMonitor()
