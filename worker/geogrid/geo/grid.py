"""Square lattice of search points around a tracked location."""

import logging
from typing import Iterable, List, Optional

from geogrid.geo.geomath import meters_to_lat_degrees, meters_to_lng_degrees, wrap_longitude
from geogrid.models import GeoPoint, GridPoint

logger = logging.getLogger(__name__)

LARGE_CITY_RADIUS_METERS = 5000
DEFAULT_CITY_RADIUS_METERS = 2000
LARGE_CITIES = ("roma", "milano", "napoli", "torino", "palermo")


def generate_grid(center: GeoPoint, radius_meters: float, grid_size: int) -> List[GridPoint]:
    """Build ``grid_size`` x ``grid_size`` points covering a square of side ``2 * radius_meters``.

    Points are enumerated row by row starting from the north-west corner, so
    index 0 is the top-left point and ``index // grid_size`` / ``index % grid_size``
    give the map row and column.

    Longitudes past the antimeridian are wrapped back into [-180, 180]. A
    lattice that would reach beyond a pole raises ValueError.

    Example with grid_size=3::

        0 1 2
        3 4 5
        6 7 8
    """
    if grid_size < 1:
        raise ValueError(f"grid_size must be at least 1, got {grid_size}")
    if radius_meters < 0:
        raise ValueError(f"radius_meters must not be negative, got {radius_meters}")

    if grid_size == 1:
        return [GridPoint(latitude=center.latitude, longitude=center.longitude, index=0)]

    step = (2 * radius_meters) / (grid_size - 1)
    top_lat = center.latitude + meters_to_lat_degrees(radius_meters)
    left_lng = center.longitude - meters_to_lng_degrees(radius_meters, center.latitude)

    points: List[GridPoint] = []
    for row in range(grid_size):
        latitude = top_lat - meters_to_lat_degrees(step * row)
        for col in range(grid_size):
            longitude = wrap_longitude(left_lng + meters_to_lng_degrees(step * col, center.latitude))
            points.append(GridPoint(latitude=latitude, longitude=longitude, index=len(points)))

    logger.debug("Generated %dx%d grid around %s with radius=%sm", grid_size, grid_size, center, radius_meters)
    return points


def recommended_radius(city: Optional[str], large_cities: Iterable[str] = LARGE_CITIES) -> int:
    """Suggest a scan radius: wider for metropolitan areas, tighter elsewhere."""
    if city:
        normalized = city.casefold()
        if any(name in normalized for name in large_cities):
            return LARGE_CITY_RADIUS_METERS
    return DEFAULT_CITY_RADIUS_METERS
