import math

import pytest

from geogrid.core.errors import DegenerateCoordinateError
from geogrid.geo import geomath
from geogrid.models import GeoPoint


ROME = GeoPoint(latitude=41.9028, longitude=12.4964)


def test_distance_is_zero_for_same_point():
    assert geomath.distance_meters(ROME, ROME) == 0


def test_distance_one_degree_of_latitude():
    north = GeoPoint(latitude=ROME.latitude + 1, longitude=ROME.longitude)
    # 2 * pi * R / 360
    assert geomath.distance_meters(ROME, north) == pytest.approx(111194.93, abs=1)


def test_distance_known_city_pair():
    milan = GeoPoint(latitude=45.4642, longitude=9.19)
    assert geomath.distance_meters(ROME, milan) == pytest.approx(477_000, rel=0.01)
    assert geomath.distance_meters(ROME, milan) == pytest.approx(geomath.distance_meters(milan, ROME))


def test_meter_degree_conversions():
    assert geomath.meters_to_lat_degrees(111320) == pytest.approx(1.0)
    assert geomath.meters_to_lng_degrees(111320, 0) == pytest.approx(1.0)
    assert geomath.meters_to_lng_degrees(111320, 60) == pytest.approx(2.0)


def test_meters_to_lng_degrees_rejects_poles():
    with pytest.raises(DegenerateCoordinateError):
        geomath.meters_to_lng_degrees(1000, 90)
    with pytest.raises(ValueError):
        geomath.meters_to_lng_degrees(1000, -90)


def test_grid_center_and_bounds():
    points = [GeoPoint(1, 2), GeoPoint(3, 6), GeoPoint(2, 4)]
    center = geomath.grid_center(points)
    assert center.latitude == pytest.approx(2)
    assert center.longitude == pytest.approx(4)

    bounds = geomath.grid_bounds(points)
    assert (bounds.north, bounds.south, bounds.east, bounds.west) == (3, 1, 6, 2)

    with pytest.raises(ValueError):
        geomath.grid_center([])
    with pytest.raises(ValueError):
        geomath.grid_bounds([])


def test_is_point_in_radius():
    nearby = GeoPoint(latitude=ROME.latitude + geomath.meters_to_lat_degrees(400), longitude=ROME.longitude)
    assert geomath.is_point_in_radius(nearby, ROME, 500)
    assert not geomath.is_point_in_radius(nearby, ROME, 300)


def test_format_coordinates():
    assert geomath.format_coordinates(ROME) == "41.902800°N, 12.496400°E"
    assert geomath.format_coordinates(GeoPoint(-33.8688, -70.5)) == "33.868800°S, 70.500000°W"


def test_geo_point_rejects_out_of_range_values():
    with pytest.raises(ValueError):
        GeoPoint(latitude=91, longitude=0)
    with pytest.raises(ValueError):
        GeoPoint(latitude=0, longitude=-180.5)
    assert not math.isnan(GeoPoint(latitude=-90, longitude=180).latitude)


def test_wrap_longitude():
    assert geomath.wrap_longitude(12.5) == 12.5
    assert geomath.wrap_longitude(180.0) == 180.0
    assert geomath.wrap_longitude(180.5) == pytest.approx(-179.5)
    assert geomath.wrap_longitude(-181.0) == pytest.approx(179.0)
