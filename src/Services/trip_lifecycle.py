# src/Services/trip_lifecycle.py
"""
Trip Lifecycle Controller - PLANNED → ACTIVE → COMPLETED.

Transitions:
- PLANNED → ACTIVE: first sample of the trip's vehicle with speed > 0.
  Persists actual_start_time = now and records it in the registry so the
  rest of the pipeline can continue without re-reading the trip.
- ACTIVE → COMPLETED: every customer stop of the trip is completed (and
  there is at least one). Persists end time, duration and audit record,
  then stops monitoring the trip.

check_and_maybe_close_trip() is the only way a trip gets closed. Concurrent
calls for the same trip (live telemetry and long-stop path) are serialized
by a per-trip asyncio.Lock and a trip that was closed once is never closed
again by this process. The closed-trip memory keeps the most recent
CLOSED_MEMORY_SIZE ids; older ones are already refused by the store.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict

from src.Core import log_ws
from src.Core.errors import ExternalWriteFailure
from src.Schemas.telemetry import TelemetrySample
from src.Services.trip_registry import MonitoredTrip, TripRegistry
from src.Services.trip_store import TripStore

CLOSED_MEMORY_SIZE = 4096


class TripLifecycleController:

    def __init__(self, store: TripStore, registry: TripRegistry):
        self.store = store
        self.registry = registry
        self._close_locks: Dict[str, asyncio.Lock] = {}
        self._closed: "OrderedDict[str, None]" = OrderedDict()

    # ==========================================================
    # PLANNED → ACTIVE
    # ==========================================================

    async def maybe_start_trip(self, trip: MonitoredTrip, sample: TelemetrySample) -> MonitoredTrip:
        """
        Start `trip` if it is not started yet and the vehicle is moving.

        Returns:
            MonitoredTrip: The (possibly updated) registry entry. Still not
            started when the vehicle is not moving or the write failed.
        """
        if trip.is_started or not sample.is_moving:
            return trip

        start_time = datetime.now(timezone.utc)

        try:
            started = await self.store.set_actual_start(trip.trip_id, start_time)
        except ExternalWriteFailure as e:
            log_ws.log_from_thread(
                f"[LIFECYCLE] Could not start trip {trip.trip_id}: {e}",
                msg_type="error"
            )
            return trip

        if started:
            updated = self.registry.mark_started(trip.trip_id, start_time) or trip
            log_ws.log_from_thread(
                f"[LIFECYCLE] Trip {trip.trip_id} started - vehicle {sample.plate} "
                f"moving at {sample.speed:g} km/h",
                msg_type="log"
            )
            return updated

        # Not started by this call: already started (or ended) elsewhere
        return await self._refresh_from_store(trip)

    async def _refresh_from_store(self, trip: MonitoredTrip) -> MonitoredTrip:
        try:
            stored = await self.store.get_trip(trip.trip_id)
        except ExternalWriteFailure as e:
            log_ws.log_from_thread(
                f"[LIFECYCLE] Could not re-read trip {trip.trip_id}: {e}",
                msg_type="error"
            )
            return trip

        if stored is None or stored.is_completed:
            print(f"[LIFECYCLE] Trip {trip.trip_id} is gone or already completed - no longer monitored")
            self.registry.unregister(trip.trip_id)
            self.release(trip.trip_id)
            return trip

        if stored.is_started:
            return self.registry.mark_started(trip.trip_id, stored.actual_start_time) or trip

        return trip

    # ==========================================================
    # ACTIVE → COMPLETED
    # ==========================================================

    async def check_and_maybe_close_trip(self, trip_id: str) -> bool:
        """
        Close `trip_id` when all of its customer stops are completed.

        Trips without customer stops are never closed here.

        Returns:
            bool: True if this call closed the trip
        """
        if trip_id in self._closed:
            return False

        lock = self._close_locks.setdefault(trip_id, asyncio.Lock())

        async with lock:
            if trip_id in self._closed:
                return False

            try:
                total = await self.store.count_total(trip_id)
                completed = await self.store.count_completed(trip_id)
            except ExternalWriteFailure as e:
                log_ws.log_from_thread(
                    f"[LIFECYCLE] Completion check failed for trip {trip_id}: {e}",
                    msg_type="error"
                )
                return False

            if total == 0:
                return False

            if completed < total:
                print(f"[LIFECYCLE] Trip {trip_id}: {completed}/{total} customers completed")
                return False

            try:
                closed = await self.store.complete_trip(trip_id, datetime.now(timezone.utc))
            except ExternalWriteFailure as e:
                log_ws.log_from_thread(
                    f"[LIFECYCLE] Could not complete trip {trip_id}: {e}",
                    msg_type="error"
                )
                return False

            self._remember_closed(trip_id)
            self._close_locks.pop(trip_id, None)
            self.registry.unregister(trip_id)

            if closed:
                log_ws.log_from_thread(
                    f"[LIFECYCLE] Trip {trip_id} completed - all {total} customers visited",
                    msg_type="log"
                )
            else:
                print(f"[LIFECYCLE] Trip {trip_id} was already completed")

            return closed

    def is_closed(self, trip_id: str) -> bool:
        return trip_id in self._closed

    def release(self, trip_id: str) -> None:
        """Drop the close lock of a trip that stopped being monitored elsewhere."""
        lock = self._close_locks.get(trip_id)
        if lock is not None and not lock.locked():
            del self._close_locks[trip_id]

    def _remember_closed(self, trip_id: str) -> None:
        self._closed[trip_id] = None
        self._closed.move_to_end(trip_id)
        while len(self._closed) > CLOSED_MEMORY_SIZE:
            self._closed.popitem(last=False)
