import pytest

from database.schemas import Coordinate
from services.geo import distance_between, encode_geohash, query_bounds, wrap_longitude


def covered(ranges, latitude, longitude):
    geohash = encode_geohash(latitude, longitude, 10)
    return any(r.contains(geohash) for r in ranges)


def test_encode_geohash_known_value():
    assert encode_geohash(57.64911, 10.40744, 10) == "u4pruydqqv"
    assert encode_geohash(57.64911, 10.40744, 5) == "u4pru"


def test_encode_geohash_rejects_bad_precision():
    with pytest.raises(ValueError):
        encode_geohash(0, 0, 0)


def test_distance_one_degree_of_longitude_on_equator():
    a = Coordinate(latitude=0, longitude=0)
    b = Coordinate(latitude=0, longitude=1)
    assert abs(distance_between(a, b) - 111195) < 1
    assert distance_between(a, a) == 0


def test_wrap_longitude():
    assert wrap_longitude(190) == -170
    assert wrap_longitude(-190) == 170
    assert wrap_longitude(45) == 45


def test_bounds_cover_points_inside_radius():
    center = Coordinate(latitude=0, longitude=0)
    ranges = query_bounds(center, 100_000)
    assert ranges
    assert len(ranges) == len(set(ranges))
    for lat, lon in [(0, 0), (0.89, 0), (-0.89, 0), (0, 0.89), (0, -0.89),
                     (0.6, 0.6), (-0.6, 0.6), (0.6, -0.6), (-0.6, -0.6)]:
        assert covered(ranges, lat, lon), (lat, lon)


def test_bounds_cover_across_antimeridian():
    center = Coordinate(latitude=10, longitude=179.9)
    ranges = query_bounds(center, 50_000)
    assert covered(ranges, 10, 179.95)
    assert covered(ranges, 10, -179.8)


def test_bounds_are_deterministic():
    center = Coordinate(latitude=45.42, longitude=-75.69)
    assert query_bounds(center, 5_000) == query_bounds(center, 5_000)


def test_bounds_reject_non_positive_radius():
    with pytest.raises(ValueError):
        query_bounds(Coordinate(latitude=0, longitude=0), 0)
