# src/Services/geofence_completion.py
"""
Geofence Completion Engine - marks customer stops the vehicle has reached.

A stop is completed when the vehicle position is within `radius_km` of the
stop's coordinates (haversine, inclusive). The radius is always passed by the
caller:
- Live telemetry and long-stop events: settings.LIVE_COMPLETION_RADIUS_KM
- Offline reconstruction from the coordinate log: settings.BACKFILL_COMPLETION_RADIUS_KM

Completion is idempotent: the store only flips stops that are still
incomplete, so re-evaluating an already completed stop has no effect.

Whenever a call marks at least one stop, the trip completion check runs,
whichever path did the marking. It also runs when no incomplete stop is left,
so a trip whose closing write failed is closed by a later sample.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set

from src.Core import log_ws
from src.Core.errors import ExternalWriteFailure
from src.Schemas.trip import TripCoordinate_get
from src.Services.geo_math import Position, distance_km
from src.Services.trip_lifecycle import TripLifecycleController
from src.Services.trip_store import TripStore


@dataclass(frozen=True)
class HistoricalMatch:
    """Nearest logged coordinate to an incomplete customer stop."""
    customer_code: str
    distance_km: float
    timestamp: datetime
    marked: bool


class GeofenceCompletionEngine:

    def __init__(self, store: TripStore, lifecycle: TripLifecycleController):
        self.store = store
        self.lifecycle = lifecycle

    async def evaluate(
        self,
        trip_id: str,
        position: Position,
        radius_km: float,
        completed_at: Optional[datetime] = None,
        source: str = "telemetry"
    ) -> Set[str]:
        """
        Mark every incomplete stop of `trip_id` within `radius_km` of `position`.

        Args:
            trip_id: Trip being evaluated
            position: Vehicle position
            radius_km: Completion radius
            completed_at: Completion time to persist (default: now)
            source: Label for logs ("telemetry", "long-stop")

        Returns:
            set[str]: Customer codes newly completed by this call

        Raises:
            ExternalWriteFailure: The incomplete stops could not be read
        """
        stops = await self.store.list_incomplete(trip_id)
        if not stops:
            await self.lifecycle.check_and_maybe_close_trip(trip_id)
            return set()

        completed_at = completed_at or datetime.now(timezone.utc)
        newly_completed: Set[str] = set()

        for stop in stops:
            d = distance_km(position, Position(stop.latitude, stop.longitude))
            if d > radius_km:
                continue

            try:
                marked = await self.store.mark_completed(trip_id, stop.customer_code, completed_at)
            except ExternalWriteFailure as e:
                log_ws.log_from_thread(
                    f"[GEOFENCE] Could not complete customer {stop.customer_code} "
                    f"on trip {trip_id}: {e}",
                    msg_type="error"
                )
                continue

            if marked:
                newly_completed.add(stop.customer_code)
                log_ws.log_from_thread(
                    f"[GEOFENCE] Customer {stop.customer_code} completed on trip {trip_id} "
                    f"({source}) - vehicle within {d:.2f}km",
                    msg_type="log"
                )

        if newly_completed:
            await self.lifecycle.check_and_maybe_close_trip(trip_id)

        return newly_completed

    async def evaluate_history(
        self,
        trip_id: str,
        samples: Iterable[TripCoordinate_get],
        radius_km: float,
        dry_run: bool = True
    ) -> List[HistoricalMatch]:
        """
        Reconstruct completions from logged coordinates.

        For every incomplete stop, finds the nearest logged coordinate. A stop
        whose nearest coordinate lies within `radius_km` is reported and,
        unless `dry_run`, completed at that coordinate's timestamp.

        Returns:
            list[HistoricalMatch]: One entry per stop within the radius
        """
        samples = list(samples)
        if not samples:
            return []

        stops = await self.store.list_incomplete(trip_id)
        matches: List[HistoricalMatch] = []

        for stop in stops:
            stop_position = Position(stop.latitude, stop.longitude)
            nearest = min(
                samples,
                key=lambda s: distance_km(Position(s.latitude, s.longitude), stop_position)
            )
            d = distance_km(Position(nearest.latitude, nearest.longitude), stop_position)

            if d > radius_km:
                continue

            marked = False
            if not dry_run:
                try:
                    marked = await self.store.mark_completed(trip_id, stop.customer_code, nearest.timestamp)
                except ExternalWriteFailure as e:
                    print(f"[GEOFENCE] Could not complete customer {stop.customer_code}: {e}")

            matches.append(HistoricalMatch(
                customer_code=stop.customer_code,
                distance_km=d,
                timestamp=nearest.timestamp,
                marked=marked
            ))

        if any(m.marked for m in matches):
            await self.lifecycle.check_and_maybe_close_trip(trip_id)

        return matches
