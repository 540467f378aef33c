"""Spatial inference of a vehicle's line when the feed does not name it."""

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from .cache import KeyedCache
from .geo import BBox, compute_bbox_from_coords, distance_point_to_polyline, meters_to_degrees
from .models import Boundary, Line, LineSet, Vehicle
from .normalize import normalize_line_number

logger = logging.getLogger(__name__)


@dataclass
class IndexedLine:
    line: Line
    bbox: BBox


def build_line_index(line_set: LineSet) -> List[IndexedLine]:
    return [
        IndexedLine(line=line, bbox=compute_bbox_from_coords(line.coords))
        for line in line_set.lines
        if len(line.coords) >= 2
    ]


def nearest_line(lat: float, lon: float, index: List[IndexedLine],
                 max_distance_m: float) -> Optional[Tuple[Line, float]]:
    """Closest line within ``max_distance_m`` of the point, if any."""
    dlat, dlon = meters_to_degrees(max_distance_m, lat)
    search = BBox(lon, lat, lon, lat).expanded(dlat, dlon)

    best: Optional[Line] = None
    best_distance = float("inf")
    for entry in index:
        if not search.intersects(entry.bbox):
            continue
        distance = distance_point_to_polyline(lat, lon, entry.line.coords)
        if distance < best_distance:
            best, best_distance = entry.line, distance
    if best is None or best_distance > max_distance_m:
        return None
    return best, best_distance


class LineInferenceEngine:
    """Assigns the nearest clipped line to vehicles without line identity."""

    def __init__(
        self,
        line_source: Callable[[Boundary], LineSet],
        cache: KeyedCache,
        max_distance_m: float = 60.0,
        ttl: float = 600,
        cache_key: str = "line-index",
    ):
        self.line_source = line_source
        self.cache = cache
        self.max_distance_m = max_distance_m
        self.ttl = ttl
        self.cache_key = cache_key

    def index(self, boundary: Boundary) -> List[IndexedLine]:
        return self.cache.get_or_populate(
            self.cache_key, self.ttl, lambda: build_line_index(self.line_source(boundary))
        )

    def infer(self, vehicle: Vehicle, index: List[IndexedLine]) -> Vehicle:
        if vehicle.line_number:
            return vehicle
        match = nearest_line(vehicle.latitude, vehicle.longitude, index, self.max_distance_m)
        if match is None:
            return vehicle
        line, distance = match
        return replace(
            vehicle,
            line_number=normalize_line_number(line.short_name) or line.short_name or line.route_id,
            line_name=line.long_name or line.name or None,
            route_id=vehicle.route_id or line.route_id,
            line_inferred=True,
            inference_distance_m=round(distance, 1),
        )

    def apply(self, vehicles: List[Vehicle], boundary: Boundary) -> List[Vehicle]:
        """Return ``vehicles`` with line identity inferred where it is missing."""
        if all(v.line_number for v in vehicles):
            return vehicles
        index = self.index(boundary)
        result = [self.infer(v, index) for v in vehicles]
        inferred = sum(1 for v in result if v.line_inferred)
        if inferred:
            logger.debug(f"Inferred lines for {inferred} vehicles")
        return result
