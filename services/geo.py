"""
Geohash proximity index.

A circle (center + radius) is turned into a small set of geohash ranges whose
union covers it. Each range is an independent, orderable slice of the quests
collection: query it with `start <= geohash <= end` ordered by geohash.
Boxes over-cover the circle, so callers see some results slightly outside the
radius (use `distance_between` to tell); nothing inside is ever left out.
"""
import math
from typing import List, NamedTuple

from database.schemas import Coordinate

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"

MAX_PRECISION = 22
MAX_BITS = MAX_PRECISION * 5

EARTH_MERIDIONAL_CIRCUMFERENCE = 40007860.0  # meters
METERS_PER_DEGREE_LATITUDE = 110574.0
EARTH_EQ_RADIUS = 6378137.0
EARTH_RADIUS = 6371000.0  # mean radius, for great-circle distance
E2 = 0.00669447819799  # eccentricity squared of the WGS84 ellipsoid
EPSILON = 1e-12


class GeohashRange(NamedTuple):
    start: str
    end: str

    def contains(self, geohash: str) -> bool:
        return self.start <= geohash <= self.end


def encode_geohash(latitude: float, longitude: float, precision: int = 10) -> str:
    if not 0 < precision <= MAX_PRECISION:
        raise ValueError(f"precision must be between 1 and {MAX_PRECISION}")
    lat_range = [-90.0, 90.0]
    lon_range = [-180.0, 180.0]
    chars = []
    value = 0
    bits = 0
    even = True  # longitude first
    while len(chars) < precision:
        rng, coord = (lon_range, longitude) if even else (lat_range, latitude)
        mid = (rng[0] + rng[1]) / 2
        if coord > mid:
            value = (value << 1) + 1
            rng[0] = mid
        else:
            value = value << 1
            rng[1] = mid
        even = not even
        bits += 1
        if bits == 5:
            chars.append(BASE32[value])
            value = 0
            bits = 0
    return "".join(chars)


def distance_between(a: Coordinate, b: Coordinate) -> float:
    """Great-circle (haversine) distance in meters."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def meters_to_longitude_degrees(distance: float, latitude: float) -> float:
    radians = math.radians(latitude)
    numerator = math.cos(radians) * EARTH_EQ_RADIUS * math.pi / 180
    denominator = 1 / math.sqrt(1 - E2 * math.sin(radians) ** 2)
    delta_degrees = numerator * denominator
    if delta_degrees < EPSILON:
        return 360.0 if distance > 0 else 0.0
    return min(360.0, distance / delta_degrees)


def wrap_longitude(longitude: float) -> float:
    if -180 <= longitude <= 180:
        return longitude
    adjusted = longitude + 180
    if adjusted > 0:
        return (adjusted % 360) - 180
    return 180 - (-adjusted % 360)


def _longitude_bits_for_resolution(resolution: float, latitude: float) -> float:
    degrees = meters_to_longitude_degrees(resolution, latitude)
    return max(1.0, math.log2(360 / degrees)) if abs(degrees) > 0.000001 else 1.0


def _latitude_bits_for_resolution(resolution: float) -> float:
    return min(math.log2(EARTH_MERIDIONAL_CIRCUMFERENCE / 2 / resolution), MAX_BITS)


def bounding_box_bits(center: Coordinate, size: float) -> int:
    """Number of geohash bits whose cells are at least `size` meters across."""
    lat_delta = size / METERS_PER_DEGREE_LATITUDE
    latitude_north = min(90.0, center.latitude + lat_delta)
    latitude_south = max(-90.0, center.latitude - lat_delta)
    bits_lat = math.floor(_latitude_bits_for_resolution(size)) * 2
    bits_long_north = math.floor(_longitude_bits_for_resolution(size, latitude_north)) * 2 - 1
    bits_long_south = math.floor(_longitude_bits_for_resolution(size, latitude_south)) * 2 - 1
    return min(bits_lat, bits_long_north, bits_long_south, MAX_BITS)


def bounding_box_coordinates(center: Coordinate, radius: float) -> List[Coordinate]:
    """The center plus the eight compass corners/edges of the circle's bounding box."""
    lat_degrees = radius / METERS_PER_DEGREE_LATITUDE
    latitude_north = min(90.0, center.latitude + lat_degrees)
    latitude_south = max(-90.0, center.latitude - lat_degrees)
    long_degs = max(
        meters_to_longitude_degrees(radius, latitude_north),
        meters_to_longitude_degrees(radius, latitude_south),
    )
    west = wrap_longitude(center.longitude - long_degs)
    east = wrap_longitude(center.longitude + long_degs)
    points = []
    for latitude in (center.latitude, latitude_north, latitude_south):
        for longitude in (center.longitude, west, east):
            points.append(Coordinate(latitude=latitude, longitude=longitude))
    return points


def _query_for_geohash(geohash: str, bits: int) -> GeohashRange:
    precision = math.ceil(bits / 5)
    if len(geohash) < precision:
        return GeohashRange(geohash, geohash + "~")
    geohash = geohash[:precision]
    base = geohash[:-1]
    last_value = BASE32.index(geohash[-1])
    significant_bits = bits - len(base) * 5
    unused_bits = 5 - significant_bits
    start_value = (last_value >> unused_bits) << unused_bits
    end_value = start_value + (1 << unused_bits)
    if end_value > 31:
        return GeohashRange(base + BASE32[start_value], base + "~")
    return GeohashRange(base + BASE32[start_value], base + BASE32[end_value])


def query_bounds(center: Coordinate, radius_m: float) -> List[GeohashRange]:
    """
    Geohash ranges covering the circle of `radius_m` meters around `center`.
    Pure function; duplicates are removed and input order is kept.
    """
    if radius_m <= 0:
        raise ValueError("radius must be positive")
    query_bits = max(1, bounding_box_bits(center, radius_m))
    precision = math.ceil(query_bits / 5)
    ranges = []
    for point in bounding_box_coordinates(center, radius_m):
        rng = _query_for_geohash(encode_geohash(point.latitude, point.longitude, precision), query_bits)
        if rng not in ranges:
            ranges.append(rng)
    return ranges
