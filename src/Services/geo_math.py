# src/Services/geo_math.py
"""
Great-circle distance helpers shared by live monitoring and the backfill tooling.
"""

from math import radians, sin, cos, sqrt, atan2
from typing import NamedTuple

# Mean Earth radius in kilometers (same value as turf.js / WGS84 mean radius)
EARTH_RADIUS_KM = 6371.0088


class Position(NamedTuple):
    latitude: float
    longitude: float


def calculate_haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points, in kilometers.

    Formula:
        a = sin²(Δlat/2) + cos(lat1) * cos(lat2) * sin²(Δlon/2)
        c = 2 * atan2(√a, √(1−a))
        d = R * c

    Examples:
        >>> calculate_haversine_distance(-26.1440, 28.0436, -26.1441, 28.0437)
        0.0149...
        >>> calculate_haversine_distance(10.5, -74.8, 10.5, -74.8)
        0.0

    Notes:
        - Symmetric: d(A, B) == d(B, A)
        - Never negative
    """
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = radians(lat2 - lat1)
    delta_lon = radians(lon2 - lon1)

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Float rounding can push a a hair outside [0, 1]
    a = min(1.0, max(0.0, a))
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_km(a: Position, b: Position) -> float:
    return calculate_haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)
