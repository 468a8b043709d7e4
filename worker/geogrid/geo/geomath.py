"""Coordinate arithmetic used to lay out and inspect scan grids."""

import math
from dataclasses import dataclass
from typing import Sequence

from geogrid.core.errors import DegenerateCoordinateError
from geogrid.models import GeoPoint

EARTH_RADIUS_METERS = 6371000.0
METERS_PER_DEGREE = 111320.0

# cos(lat) below this means we are at (or numerically at) a pole.
_MIN_COS_LATITUDE = 1e-12


@dataclass(frozen=True)
class GridBounds:
    north: float
    south: float
    east: float
    west: float


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points using the haversine formula."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def meters_to_lat_degrees(meters: float) -> float:
    return meters / METERS_PER_DEGREE


def meters_to_lng_degrees(meters: float, at_latitude: float) -> float:
    """Convert an east-west distance to degrees of longitude at the given latitude.

    Meridians converge towards the poles, so the same distance spans more
    degrees the further we are from the equator.
    """
    cos_lat = math.cos(math.radians(at_latitude))
    if abs(cos_lat) < _MIN_COS_LATITUDE:
        raise DegenerateCoordinateError(f"cannot convert meters to longitude degrees at latitude {at_latitude}")
    return meters / (METERS_PER_DEGREE * cos_lat)


def wrap_longitude(longitude: float) -> float:
    """Bring a longitude back into [-180, 180] after crossing the antimeridian."""
    if -180.0 <= longitude <= 180.0:
        return longitude
    return (longitude + 180.0) % 360.0 - 180.0


def grid_center(points: Sequence[GeoPoint]) -> GeoPoint:
    if not points:
        raise ValueError("Cannot calculate center of empty grid")
    latitude = sum(p.latitude for p in points) / len(points)
    longitude = sum(p.longitude for p in points) / len(points)
    return GeoPoint(latitude=latitude, longitude=longitude)


def grid_bounds(points: Sequence[GeoPoint]) -> GridBounds:
    if not points:
        raise ValueError("Cannot calculate bounds of empty grid")
    lats = [p.latitude for p in points]
    lngs = [p.longitude for p in points]
    return GridBounds(north=max(lats), south=min(lats), east=max(lngs), west=min(lngs))


def is_point_in_radius(point: GeoPoint, center: GeoPoint, radius_meters: float) -> bool:
    return distance_meters(point, center) <= radius_meters


def format_coordinates(point: GeoPoint) -> str:
    lat_dir = "N" if point.latitude >= 0 else "S"
    lng_dir = "E" if point.longitude >= 0 else "W"
    return f"{abs(point.latitude):.6f}°{lat_dir}, {abs(point.longitude):.6f}°{lng_dir}"
