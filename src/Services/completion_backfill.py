# src/Services/completion_backfill.py
"""
Completion backfill tooling - offline reconstruction from the coordinate log.

Two jobs over the trips created on one day (UTC):

retime
    Completed customer stops get completed_at re-timed to the timestamp of
    the logged vehicle coordinate nearest to the stop, searched within a
    time window (default 11:11-15:00). Only applied when that coordinate is
    within the backfill radius.

late-check
    Incomplete customer stops are matched against coordinates logged after a
    cut-off (default 15:00). Stops whose nearest coordinate is within the
    backfill radius are reported; with --apply they are completed at that
    coordinate's timestamp (through GeofenceCompletionEngine, so a trip whose
    last stop gets completed is closed as usual).

Usage:
    python -m src.Services.completion_backfill retime --date 2025-12-01
    python -m src.Services.completion_backfill late-check --date 2025-12-01 --apply
"""

# Environment Configuration
from dotenv import load_dotenv
load_dotenv()

import argparse
import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from src.Core.config import settings
from src.Core.errors import ExternalWriteFailure
from src.Schemas.trip import TripCoordinate_get
from src.Services.geo_math import Position, distance_km
from src.Services.geofence_completion import GeofenceCompletionEngine
from src.Services.trip_lifecycle import TripLifecycleController
from src.Services.trip_registry import TripRegistry
from src.Services.trip_store import TripStore

DEFAULT_WINDOW_START = time(11, 11)
DEFAULT_WINDOW_END = time(15, 0)
DEFAULT_LATE_CUTOFF = time(15, 0)


@dataclass
class BackfillReport:
    trips: int = 0
    matched: int = 0
    updated: int = 0
    failed: int = 0
    lines: List[str] = field(default_factory=list)

    def add(self, line: str) -> None:
        print(line)
        self.lines.append(line)


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time(0, 0), tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def at(day: date, t: time) -> datetime:
    return datetime.combine(day, t, tzinfo=timezone.utc)


def nearest_coordinate(
    position: Position,
    coordinates: List[TripCoordinate_get]
) -> Optional[Tuple[TripCoordinate_get, float]]:
    """
    Nearest logged coordinate to `position` and its distance in km.
    Ties keep the earliest coordinate.
    """
    best: Optional[Tuple[TripCoordinate_get, float]] = None
    for coord in coordinates:
        d = distance_km(Position(coord.latitude, coord.longitude), position)
        if best is None or d < best[1]:
            best = (coord, d)
    return best


# ==========================================================
# RETIME COMPLETED STOPS
# ==========================================================

async def retime_completions(
    store: TripStore,
    day: date,
    window_start: time = DEFAULT_WINDOW_START,
    window_end: time = DEFAULT_WINDOW_END,
    radius_km: Optional[float] = None,
    dry_run: bool = False
) -> BackfillReport:
    radius_km = settings.BACKFILL_COMPLETION_RADIUS_KM if radius_km is None else radius_km
    report = BackfillReport()

    trips = await store.list_trips_created_between(*day_bounds(day))
    report.trips = len(trips)
    report.add(f"[BACKFILL] {len(trips)} trips created on {day.isoformat()}")

    for trip in trips:
        coordinates = await store.get_coordinates(
            trip.trip_id, start=at(day, window_start), end=at(day, window_end)
        )
        if not coordinates:
            report.add(f"[BACKFILL] {trip.trip_id}: no coordinates between "
                       f"{window_start:%H:%M} and {window_end:%H:%M}")
            continue

        for stop in await store.list_completed(trip.trip_id):
            match = nearest_coordinate(Position(stop.latitude, stop.longitude), coordinates)
            if match is None or match[1] > radius_km:
                continue

            coord, d = match
            report.matched += 1

            if dry_run:
                report.add(f"[BACKFILL] {trip.trip_id}/{stop.customer_code}: would set "
                           f"completed_at = {coord.timestamp.isoformat()} ({d:.3f}km away)")
                continue

            try:
                if await store.set_completed_at(trip.trip_id, stop.customer_code, coord.timestamp):
                    report.updated += 1
                    report.add(f"[BACKFILL] {trip.trip_id}/{stop.customer_code}: completed_at = "
                               f"{coord.timestamp.isoformat()} ({d:.3f}km away)")
            except ExternalWriteFailure as e:
                report.failed += 1
                report.add(f"[BACKFILL] {trip.trip_id}/{stop.customer_code}: update failed: {e}")

    report.add(f"[BACKFILL] Done: {report.updated} stops re-timed, {report.matched} matched, "
               f"{report.failed} failed")
    return report


# ==========================================================
# LATE COMPLETIONS
# ==========================================================

async def check_late_completions(
    store: TripStore,
    day: date,
    cutoff: time = DEFAULT_LATE_CUTOFF,
    radius_km: Optional[float] = None,
    dry_run: bool = True,
    engine: Optional[GeofenceCompletionEngine] = None
) -> BackfillReport:
    radius_km = settings.BACKFILL_COMPLETION_RADIUS_KM if radius_km is None else radius_km
    engine = engine or GeofenceCompletionEngine(store, TripLifecycleController(store, TripRegistry()))
    report = BackfillReport()

    trips = await store.list_trips_created_between(*day_bounds(day))
    report.trips = len(trips)
    report.add(f"[BACKFILL] {len(trips)} trips created on {day.isoformat()}")

    for trip in trips:
        coordinates = await store.get_coordinates(trip.trip_id, start=at(day, cutoff))
        if not coordinates:
            continue

        matches = await engine.evaluate_history(trip.trip_id, coordinates, radius_km, dry_run=dry_run)
        for m in matches:
            report.matched += 1
            if m.marked:
                report.updated += 1
            verb = "completed" if m.marked else "would complete"
            report.add(f"[BACKFILL] {trip.trip_id}/{m.customer_code}: {verb} at "
                       f"{m.timestamp.isoformat()} ({m.distance_km:.3f}km away)")

    report.add(f"[BACKFILL] Done: {report.matched} stops within {radius_km:g}km after "
               f"{cutoff:%H:%M}, {report.updated} completed")
    return report


# ==========================================================
# CLI
# ==========================================================

def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date (YYYY-MM-DD): {value}") from e


def _parse_time(value: str) -> time:
    try:
        return time.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid time (HH:MM): {value}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m src.Services.completion_backfill",
        description="Reconstruct customer stop completions from the trip coordinate log."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    retime = sub.add_parser("retime", help="Re-time completed stops to the nearest logged coordinate")
    retime.add_argument("--window-start", type=_parse_time, default=DEFAULT_WINDOW_START)
    retime.add_argument("--window-end", type=_parse_time, default=DEFAULT_WINDOW_END)
    retime.add_argument("--dry-run", action="store_true", help="Report only, write nothing")

    late = sub.add_parser("late-check", help="Find incomplete stops reached after the cut-off")
    late.add_argument("--after", type=_parse_time, default=DEFAULT_LATE_CUTOFF)
    late.add_argument("--apply", action="store_true", help="Complete the matched stops (default: report only)")

    for p in (retime, late):
        p.add_argument("--date", type=_parse_day, default=datetime.now(timezone.utc).date(),
                       help="Day the trips were created (UTC, default: today)")
        p.add_argument("--radius-km", type=float, default=settings.BACKFILL_COMPLETION_RADIUS_KM)

    return parser


async def run(args: argparse.Namespace, store: Optional[TripStore] = None) -> BackfillReport:
    store = store or TripStore()

    if args.command == "retime":
        return await retime_completions(
            store, args.date,
            window_start=args.window_start,
            window_end=args.window_end,
            radius_km=args.radius_km,
            dry_run=args.dry_run
        )

    return await check_late_completions(
        store, args.date,
        cutoff=args.after,
        radius_km=args.radius_km,
        dry_run=not args.apply
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        report = asyncio.run(run(args))
    except ExternalWriteFailure as e:
        print(f"[BACKFILL] Aborted: {e}")
        return 1
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
