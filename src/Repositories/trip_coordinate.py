# src/Repositories/trip_coordinate.py
"""
Trip Coordinate Repository - Append-only vehicle position log.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.Models.trip_coordinate import TripCoordinate


def append_coordinate(
    DB: Session,
    trip_id: str,
    vehicle_plate: str,
    latitude: float,
    longitude: float,
    speed: float,
    timestamp: datetime
) -> TripCoordinate:
    row = TripCoordinate(
        trip_id=trip_id,
        vehicle_plate=vehicle_plate,
        latitude=latitude,
        longitude=longitude,
        speed=speed or 0.0,
        timestamp=timestamp
    )
    DB.add(row)
    DB.commit()
    return row


def get_coordinates_by_trip(
    DB: Session,
    trip_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> list[TripCoordinate]:
    """
    Logged positions of a trip in chronological order, optionally limited to
    [start, end).
    """
    query = DB.query(TripCoordinate).filter(TripCoordinate.trip_id == trip_id)

    if start:
        query = query.filter(TripCoordinate.timestamp >= start)

    if end:
        query = query.filter(TripCoordinate.timestamp < end)

    return query.order_by(TripCoordinate.timestamp.asc(), TripCoordinate.id.asc()).all()
