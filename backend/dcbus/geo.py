"""Distance math and nearest-stop search over the bus network."""

import math
from typing import Iterable, Optional, Sequence

from dcbus.config import AVG_BUS_SPEED_KMH, WALKING_SPEED_KMH
from dcbus.models import Coordinate, Stop, StopDistance

EARTH_RADIUS_KM = 6371.0


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in km."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    a = min(a, 1.0)  # float drift on antipodal points
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_distance(a: Coordinate, b: Coordinate) -> float:
    return haversine(a.lat, a.lng, b.lat, b.lng)


def find_nearest_stop(location: Coordinate, stops: Iterable[Stop]) -> Optional[StopDistance]:
    """Linear scan for the closest stop. The first stop wins ties.

    Returns None only when `stops` is empty.
    """
    nearest: Optional[Stop] = None
    min_dist = float("inf")

    for stop in stops:
        dist = haversine_distance(location, stop.coordinate)
        if nearest is None or dist < min_dist:
            nearest = stop
            min_dist = dist

    if nearest is None:
        return None
    return StopDistance(stop=nearest, distance_km=min_dist)


def find_stops_within_radius(
    location: Coordinate, stops: Iterable[Stop], radius_km: float
) -> list[StopDistance]:
    """All stops within `radius_km` (inclusive), closest first."""
    results = []
    for stop in stops:
        dist = haversine_distance(location, stop.coordinate)
        if dist <= radius_km:
            results.append(StopDistance(stop=stop, distance_km=dist))

    results.sort(key=lambda x: x.distance_km)
    return results


def route_distance(stops: Sequence[Stop]) -> float:
    """Distance along an ordered stop list, summing consecutive legs."""
    if len(stops) < 2:
        return 0.0

    total = 0.0
    for k in range(len(stops) - 1):
        total += haversine_distance(stops[k].coordinate, stops[k + 1].coordinate)
    return total


def estimate_duration(distance_km: float) -> int:
    """Bus travel minutes at a flat average city speed (20 km/h by default)."""
    return round(distance_km / AVG_BUS_SPEED_KMH * 60)


def estimate_walking_duration(distance_km: float) -> int:
    return math.ceil(distance_km / WALKING_SPEED_KMH * 60)


def format_distance(distance_km: float) -> str:
    if distance_km < 1:
        return f"{round(distance_km * 1000)} m"
    return f"{distance_km:.1f} km"


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    return f"{hours} hr {mins} min" if mins > 0 else f"{hours} hr"


def to_geojson(coord: Coordinate) -> list[float]:
    """Coordinate -> GeoJSON [lng, lat]."""
    return [coord.lng, coord.lat]


def from_geojson(pair: Sequence[float]) -> Coordinate:
    """GeoJSON [lng, lat] -> Coordinate."""
    return Coordinate(lat=pair[1], lng=pair[0])
