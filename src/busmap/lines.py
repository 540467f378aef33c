"""Bus line geometries clipped to the boundary.

Two sources are supported: OpenStreetMap route relations queried through
Overpass, and the shapes of the GTFS static bundle. Whichever produced the
result is recorded in ``LineSet.source``.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Set, Tuple

from .cache import KeyedCache
from .color import color_from_id
from .errors import DataMissing
from .fallback import first_success
from .geo import BBox, point_in_geometry
from .gtfs_loader import GTFSLoader, require_columns
from .models import Boundary, Line, LineSet
from .normalize import normalize_line_number
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

SOURCE_OVERPASS = "overpass"
SOURCE_GTFS = "gtfs"

DEFAULT_TEXT_COLOR = "#ffffff"

LatLon = Tuple[float, float]


def clip_polyline(points: Iterable[LatLon], geometry: dict, bbox: BBox) -> List[List[LatLon]]:
    """Split a path into maximal runs of at least two points inside the boundary.

    A path that leaves and re-enters the boundary yields separate segments;
    no segment bridges the gap outside.
    """
    segments: List[List[LatLon]] = []
    current: List[LatLon] = []
    for lat, lon in points:
        point = (lon, lat)
        if bbox.contains(point) and point_in_geometry(point, geometry):
            current.append((lat, lon))
            continue
        if len(current) >= 2:
            segments.append(current)
        current = []
    if len(current) >= 2:
        segments.append(current)
    return segments


def build_overpass_query(bbox: BBox, timeout: int = 25) -> str:
    area = f"{bbox.min_lat},{bbox.min_lon},{bbox.max_lat},{bbox.max_lon}"
    return (
        f"[out:json][timeout:{timeout}];\n"
        f"(\n  relation[\"route\"=\"bus\"]({area});\n);\n"
        "out body;\n>;\nout geom;\n"
    )


def lines_from_overpass(data: dict, boundary: Boundary) -> List[Line]:
    """Clip every member way of every bus route relation in an Overpass response."""
    if not isinstance(data, dict) or not isinstance(data.get("elements"), list):
        raise DataMissing("Overpass response has no elements")

    ways: Dict[int, dict] = {}
    relations: List[dict] = []
    for element in data["elements"]:
        if not isinstance(element, dict):
            continue
        if element.get("type") == "way" and isinstance(element.get("geometry"), list):
            ways[element.get("id")] = element
        elif element.get("type") == "relation":
            relations.append(element)

    bbox = boundary.bbox()
    lines: List[Line] = []
    for relation in relations:
        tags = relation.get("tags") or {}
        color = tags.get("colour") or tags.get("colour:line") or tags.get("route:colour")
        route_id = str(tags.get("ref") or relation.get("id"))
        for member in relation.get("members") or []:
            if not isinstance(member, dict) or member.get("type") != "way":
                continue
            way = ways.get(member.get("ref"))
            if way is None:
                continue
            points = [
                (p["lat"], p["lon"]) for p in way["geometry"]
                if isinstance(p, dict) and "lat" in p and "lon" in p
            ]
            for index, segment in enumerate(clip_polyline(points, boundary.geometry, bbox)):
                lines.append(Line(
                    route_id=route_id,
                    relation_id=str(relation.get("id")),
                    segment_index=index,
                    short_name=tags.get("ref") or "",
                    long_name=tags.get("name") or "",
                    color=color or color_from_id(route_id),
                    name=tags.get("name") or tags.get("ref") or "Bus line",
                    coords=segment,
                ))
    return lines


class LineBuilder:
    """Builds and caches the boundary's line geometries."""

    def __init__(
        self,
        upstream: UpstreamClient,
        gtfs_loader: GTFSLoader,
        cache: KeyedCache,
        preferred_source: str = SOURCE_OVERPASS,
        overpass_url: str = "https://overpass-api.de/api/interpreter",
        cache_key: str = "lines",
        ttl: float = 7 * 24 * 3600,
    ):
        self.upstream = upstream
        self.gtfs_loader = gtfs_loader
        self.cache = cache
        self.preferred_source = preferred_source
        self.overpass_url = overpass_url
        self.cache_key = cache_key
        self.ttl = ttl

    def get_lines(self, boundary: Boundary) -> LineSet:
        """Bus line geometry clipped to the boundary.

        Args:
            boundary: Municipality the lines are clipped to.

        Returns:
            Cached line set, rebuilt once the cache entry is stale.

        Raises:
            DataMissing: If every line source fails.
        """
        payload = self.cache.get_or_populate(self.cache_key, self.ttl, lambda: self.build(boundary).to_dict())
        return LineSet.from_dict(payload)

    def build(self, boundary: Boundary) -> LineSet:
        """Build lines from the preferred source, falling back to GTFS shapes.

        Args:
            boundary: Municipality the lines are clipped to.

        Returns:
            Line set tagged with the source that produced it.

        Raises:
            DataMissing: If every line source fails.
        """
        strategies = [(SOURCE_GTFS, lambda: self.lines_from_gtfs(boundary))]
        if self.preferred_source == SOURCE_OVERPASS:
            strategies.insert(0, (SOURCE_OVERPASS, lambda: self.lines_from_overpass(boundary)))
        result = first_success(strategies, what="Lines")
        logger.info(f"Built {len(result.value)} line segments for {boundary.name} ({result.source})")
        return LineSet(lines=result.value, source=result.source)

    def lines_from_overpass(self, boundary: Boundary) -> List[Line]:
        query = build_overpass_query(boundary.bbox())
        logger.info(f"Querying Overpass for bus relations at {self.overpass_url}")
        data = self.upstream.post_form_json(self.overpass_url, data={"data": query})
        return lines_from_overpass(data, boundary)

    def lines_from_gtfs(self, boundary: Boundary) -> List[Line]:
        routes = self.gtfs_loader.load_routes()
        trips_table = self.gtfs_loader.read_table("trips.txt")
        require_columns(trips_table, "trips.txt", ["route_id", "shape_id"])

        shape_to_routes: Dict[str, Set[str]] = defaultdict(set)
        for route_id, shape_id in zip(trips_table["route_id"], trips_table["shape_id"]):
            if shape_id and route_id in routes:
                shape_to_routes[shape_id].add(route_id)

        shapes = self.gtfs_loader.load_shapes(shape_to_routes.keys())
        bbox = boundary.bbox()
        lines: List[Line] = []
        for shape_id, points in shapes.items():
            segments = clip_polyline(points, boundary.geometry, bbox)
            if not segments:
                continue
            for route_id in sorted(shape_to_routes[shape_id]):
                route = routes[route_id]
                for index, segment in enumerate(segments):
                    lines.append(Line(
                        route_id=route_id,
                        shape_id=shape_id,
                        segment_index=index,
                        short_name=route.short_name,
                        long_name=route.long_name,
                        color=route.color or color_from_id(route_id),
                        text_color=route.text_color or DEFAULT_TEXT_COLOR,
                        coords=list(segment),
                    ))
        return lines


def local_line_numbers(line_set: LineSet) -> Set[str]:
    """Normalized public numbers of the lines running inside the boundary.

    Falls back to a purely numeric route id when the short name is unusable.
    """
    numbers: Set[str] = set()
    for line in line_set.lines:
        primary = normalize_line_number(line.short_name)
        if primary:
            numbers.add(primary)
            continue
        fallback = normalize_line_number(line.route_id)
        if fallback and fallback.isdigit():
            numbers.add(fallback)
    return numbers
