"""Geospatial helpers shared by the route optimizer and suggestion generator."""

import math
from collections.abc import Sequence

from logistics.models import RoutePoint

EARTH_RADIUS_KM = 6371
AVERAGE_SPEED_KMH = 30


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km between two (lat, lon) points given in degrees."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def point_distance_km(a: RoutePoint, b: RoutePoint) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def total_distance_km(points: Sequence[RoutePoint]) -> float:
    """Sum of leg distances along the given visiting order."""
    return sum(point_distance_km(points[i - 1], points[i]) for i in range(1, len(points)))


def estimate_duration_minutes(points: Sequence[RoutePoint], distance_km: float) -> int:
    """Travel time at 30 km/h plus every stop's service time, rounded to whole minutes."""
    travel = (distance_km / AVERAGE_SPEED_KMH) * 60
    service = sum(p.estimated_service_time_minutes for p in points)
    return round_half_up(travel + service)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (Python's round() is banker's rounding)."""
    return int(math.floor(value + 0.5))
