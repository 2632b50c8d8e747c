# src/Controller/Routes/monitor.py
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
from src.Controller.deps import get_DB, get_monitor
from src.Repositories import assigned_customer as customer_repo
from src.Repositories import route_plan as route_plan_repo
from src.Repositories import trip_coordinate as coordinate_repo
from src.Schemas import monitor as monitor_schema
from src.Schemas import trip as trip_schema
from src.Services.trip_monitor import TripMonitor

router = APIRouter()

# ==========================================================
# ✅ MONITOR STATE (in-memory, no database access)
# ==========================================================

@router.get("/status", response_model=monitor_schema.MonitorStatus_get)
def get_status(monitor: TripMonitor = Depends(get_monitor)):
    """
    Snapshot of the monitoring engine.

    Returns:
        {
            "monitored_trips": 2,
            "tracked_vehicles": 5,
            "open_stops": 1,
            "trips": [{"plate": "ABC123", "trip_id": "T-100", "actual_start_time": "..."}]
        }
    """
    return monitor.status()


@router.get("/trips", response_model=List[monitor_schema.MonitoredTrip_get])
def get_monitored_trips(monitor: TripMonitor = Depends(get_monitor)):
    """
    Trips currently being monitored, one per vehicle plate.

    Example:
        GET /monitor/trips
    """
    return monitor.status().trips


@router.get("/vehicles", response_model=List[monitor_schema.VehicleState_get])
def get_vehicles(monitor: TripMonitor = Depends(get_monitor)):
    """
    Latest cached sample (and open stop interval, if any) of every vehicle.
    """
    return monitor.vehicle_states()


@router.get("/vehicles/{plate}", response_model=monitor_schema.VehicleState_get)
def get_vehicle(plate: str, monitor: TripMonitor = Depends(get_monitor)):
    """
    Raises:
        404: No telemetry received for this plate since startup
    """
    state = monitor.vehicle_state(plate)
    if state is None:
        raise HTTPException(
            status_code=404,
            detail=f"No telemetry received for vehicle '{plate}'"
        )
    return state


# ==========================================================
# ✅ TRIP DATA (database reads)
# ==========================================================

@router.get("/trips/{trip_id}", response_model=trip_schema.Trip_get)
def get_trip(trip_id: str, DB: Session = Depends(get_DB)):
    trip = route_plan_repo.get_trip_by_id(DB, trip_id)
    if trip is None:
        raise HTTPException(status_code=404, detail=f"Trip '{trip_id}' not found")
    return trip


@router.get("/trips/{trip_id}/customers", response_model=List[trip_schema.CustomerStop_get])
def get_trip_customers(
    trip_id: str,
    only_incomplete: bool = Query(False, description="Only stops not completed yet"),
    DB: Session = Depends(get_DB)
):
    """
    Customer stops of a trip in sequence order.

    Example:
        GET /monitor/trips/T-100/customers?only_incomplete=true
    """
    if route_plan_repo.get_trip_by_id(DB, trip_id) is None:
        raise HTTPException(status_code=404, detail=f"Trip '{trip_id}' not found")

    if only_incomplete:
        return customer_repo.list_incomplete(DB, trip_id)
    return customer_repo.list_by_trip(DB, trip_id)


@router.get("/trips/{trip_id}/coordinates", response_model=List[trip_schema.TripCoordinate_get])
def get_trip_coordinates(
    trip_id: str,
    start_time: Optional[datetime] = Query(None, description="Inclusive lower bound (ISO 8601)"),
    end_time: Optional[datetime] = Query(None, description="Exclusive upper bound (ISO 8601)"),
    DB: Session = Depends(get_DB)
):
    """
    Logged vehicle positions of a trip in chronological order.

    Raises:
        400: start_time is not before end_time
    """
    if start_time and end_time and start_time >= end_time:
        raise HTTPException(status_code=400, detail="start_time must be before end_time")

    return coordinate_repo.get_coordinates_by_trip(DB, trip_id, start=start_time, end=end_time)


# ==========================================================
# ✅ INJECTION (same path as the transports)
# ==========================================================

@router.post("/telemetry", status_code=202)
async def post_telemetry(
    record: Dict[str, Any],
    wait: bool = Query(False, description="Return only after the record went through the pipeline"),
    monitor: TripMonitor = Depends(get_monitor)
):
    """
    Inject one telemetry record (simulation / testing).

    Body:
        {"Plate": "ABC123", "Speed": 42, "Latitude": -26.144,
         "Longitude": 28.0436, "LocTime": "2025-12-01 10:30:00"}

    Raises:
        422: Record rejected (missing plate or coordinates)
    """
    sample = await monitor.on_telemetry(record, source="http")
    if sample is None:
        raise HTTPException(status_code=422, detail="Telemetry record rejected")

    if wait:
        await monitor.drain(sample.plate)

    return {
        "accepted": True,
        "plate": sample.plate,
        "loc_time": sample.loc_time
    }


@router.post("/trip_events", status_code=202)
async def post_trip_event(
    event: trip_schema.TripChangeEvent,
    monitor: TripMonitor = Depends(get_monitor)
):
    """
    Inject one trip-change notification.

    Body:
        {"type": "created", "trip_id": "T-100", "plate": "ABC123"}
    """
    changed = await monitor.on_trip_change(event)
    return {"applied": changed, "type": event.type, "trip_id": event.trip_id}
