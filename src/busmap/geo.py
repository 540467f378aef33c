"""Planar geometry helpers for boundary filtering and distance matching.

Geometries follow GeoJSON: coordinates are ``[lon, lat]`` and polygons are
lists of rings where ring 0 is the outer boundary and later rings are holes.
Line coordinates elsewhere in the package are ``(lat, lon)`` pairs.

Distances use an equirectangular approximation (longitude scaled by the
cosine of the mean latitude), which is accurate enough at city scale.
"""

import math
import sys
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

METERS_PER_DEGREE = 111320.0
INFINITE_DISTANCE = math.inf

Point = Sequence[float]  # (lon, lat)


@dataclass(frozen=True)
class BBox:
    """Axis-aligned bounding box in degrees."""
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def contains(self, point: Point) -> bool:
        return bbox_contains(self, point)

    def expanded(self, dlat: float, dlon: Optional[float] = None) -> "BBox":
        if dlon is None:
            dlon = dlat
        return BBox(
            min_lon=self.min_lon - dlon,
            min_lat=self.min_lat - dlat,
            max_lon=self.max_lon + dlon,
            max_lat=self.max_lat + dlat,
        )

    def intersects(self, other: "BBox") -> bool:
        return not (
            other.min_lon > self.max_lon
            or other.max_lon < self.min_lon
            or other.min_lat > self.max_lat
            or other.max_lat < self.min_lat
        )

    def is_empty(self) -> bool:
        return self.min_lon > self.max_lon or self.min_lat > self.max_lat


def point_in_ring(point: Point, ring: Sequence[Point]) -> bool:
    """Even-odd ray casting test against a single ring."""
    x, y = point[0], point[1]
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi + sys.float_info.epsilon) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def point_in_polygon(point: Point, rings: Sequence[Sequence[Point]]) -> bool:
    """Inside ring 0 and outside every hole ring."""
    if not rings or not point_in_ring(point, rings[0]):
        return False
    for hole in rings[1:]:
        if point_in_ring(point, hole):
            return False
    return True


def point_in_geometry(point: Point, geometry: Optional[dict]) -> bool:
    """Polygon / MultiPolygon containment. Other geometry types never contain."""
    if not geometry:
        return False
    geometry_type = geometry.get("type")
    coordinates = geometry.get("coordinates") or []
    if geometry_type == "Polygon":
        return point_in_polygon(point, coordinates)
    if geometry_type == "MultiPolygon":
        return any(point_in_polygon(point, polygon) for polygon in coordinates)
    return False


def _walk_positions(coords) -> Iterable[Tuple[float, float]]:
    if coords and isinstance(coords[0], (int, float)):
        yield coords[0], coords[1]
        return
    for child in coords:
        yield from _walk_positions(child)


def compute_bbox(geometry: dict) -> BBox:
    """Bounding box of any nested GeoJSON coordinate array."""
    min_lon = min_lat = math.inf
    max_lon = max_lat = -math.inf
    for lon, lat in _walk_positions(geometry.get("coordinates") or []):
        min_lon = min(min_lon, lon)
        min_lat = min(min_lat, lat)
        max_lon = max(max_lon, lon)
        max_lat = max(max_lat, lat)
    return BBox(min_lon, min_lat, max_lon, max_lat)


def compute_bbox_from_coords(coords: Iterable[Tuple[float, float]]) -> BBox:
    """Bounding box of ``(lat, lon)`` pairs, skipping non-finite points."""
    min_lon = min_lat = math.inf
    max_lon = max_lat = -math.inf
    for lat, lon in coords:
        if not (math.isfinite(lat) and math.isfinite(lon)):
            continue
        min_lon = min(min_lon, lon)
        min_lat = min(min_lat, lat)
        max_lon = max(max_lon, lon)
        max_lat = max(max_lat, lat)
    return BBox(min_lon, min_lat, max_lon, max_lat)


def bbox_contains(bbox: BBox, point: Point) -> bool:
    return (
        bbox.min_lon <= point[0] <= bbox.max_lon
        and bbox.min_lat <= point[1] <= bbox.max_lat
    )


def is_likely_wgs84(geometry: Optional[dict]) -> bool:
    """Polygon or MultiPolygon with every coordinate in lon/lat degree range."""
    if not geometry or geometry.get("type") not in ("Polygon", "MultiPolygon"):
        return False
    bbox = compute_bbox(geometry)
    return (
        not bbox.is_empty()
        and bbox.min_lon >= -180
        and bbox.max_lon <= 180
        and bbox.min_lat >= -90
        and bbox.max_lat <= 90
    )


def meters_to_degrees(meters: float, latitude: Optional[float] = None) -> Tuple[float, float]:
    """Return ``(dlat, dlon)`` covering ``meters`` around ``latitude``.

    Without a latitude the longitude delta equals the latitude delta.
    """
    dlat = meters / METERS_PER_DEGREE
    if latitude is None:
        return dlat, dlat
    cos_lat = math.cos(math.radians(latitude))
    if cos_lat <= 1e-9:
        return dlat, 360.0
    return dlat, meters / (METERS_PER_DEGREE * cos_lat)


def distance_point_to_segment(
    lat: float, lon: float, lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """Distance in meters from a point to the segment (lat1, lon1)-(lat2, lon2)."""
    cos_lat = math.cos(math.radians((lat1 + lat2) / 2))
    ax = (lon - lon1) * cos_lat
    ay = lat - lat1
    bx = (lon2 - lon1) * cos_lat
    by = lat2 - lat1
    length_sq = bx * bx + by * by
    t = (ax * bx + ay * by) / length_sq if length_sq > 0 else 0.0
    t = max(0.0, min(1.0, t))
    dx = ax - bx * t
    dy = ay - by * t
    return math.hypot(dx, dy) * METERS_PER_DEGREE


def distance_point_to_polyline(lat: float, lon: float, coords: Sequence[Tuple[float, float]]) -> float:
    if not coords or len(coords) < 2:
        return INFINITE_DISTANCE
    best = INFINITE_DISTANCE
    for (lat1, lon1), (lat2, lon2) in zip(coords, coords[1:]):
        d = distance_point_to_segment(lat, lon, lat1, lon1, lat2, lon2)
        if d < best:
            best = d
    return best


def distance_between_points(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    if not all(math.isfinite(v) for v in (lat1, lon1, lat2, lon2)):
        return INFINITE_DISTANCE
    cos_lat = math.cos(math.radians((lat1 + lat2) / 2))
    dx = (lon2 - lon1) * cos_lat
    dy = lat2 - lat1
    return math.hypot(dx, dy) * METERS_PER_DEGREE
