"""Data models for the BusMap pipeline."""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

from . import geo

LatLon = Tuple[float, float]


@dataclass
class Boundary:
    """The administrative polygon every other entity is filtered against."""
    name: str
    code: str
    version: Optional[int]
    geometry: dict  # GeoJSON Polygon or MultiPolygon, [lon, lat]
    properties: dict = field(default_factory=dict)

    def __post_init__(self):
        self._bbox: Optional[geo.BBox] = None

    def bbox(self) -> geo.BBox:
        if self._bbox is None:
            self._bbox = geo.compute_bbox(self.geometry)
        return self._bbox

    def contains(self, lat: float, lon: float) -> bool:
        """Bounding-box pre-filter followed by the exact polygon test."""
        point = (lon, lat)
        if not self.bbox().contains(point):
            return False
        return geo.point_in_geometry(point, self.geometry)

    def to_feature(self) -> dict:
        return {"type": "Feature", "properties": dict(self.properties), "geometry": self.geometry}

    @classmethod
    def from_feature(cls, feature: dict, name_key: str = "statnaam", code_key: str = "statcode",
                     version_key: str = "jaarcode") -> "Boundary":
        properties = feature.get("properties") or {}
        version = properties.get(version_key)
        try:
            version = int(version) if version not in (None, "") else None
        except (TypeError, ValueError):
            version = None
        return cls(
            name=str(properties.get(name_key) or ""),
            code=str(properties.get(code_key) or ""),
            version=version,
            geometry=feature.get("geometry") or {},
            properties=properties,
        )


@dataclass
class Stop:
    """A physical stop inside the boundary."""
    stop_id: str
    name: str
    latitude: float
    longitude: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Stop":
        return cls(**data)


@dataclass
class StopSet:
    stops: List[Stop]
    source: str

    def find(self, stop_id: str) -> Optional[Stop]:
        for stop in self.stops:
            if str(stop.stop_id) == stop_id:
                return stop
        return None

    def to_dict(self) -> dict:
        return {"source": self.source, "count": len(self.stops), "stops": [s.to_dict() for s in self.stops]}

    @classmethod
    def from_dict(cls, data: dict) -> "StopSet":
        return cls(stops=[Stop.from_dict(s) for s in data.get("stops", [])], source=data.get("source", ""))


@dataclass
class RouteInfo:
    """A bus route from the static bundle."""
    route_id: str
    short_name: str
    long_name: str
    color: Optional[str] = None
    text_color: Optional[str] = None
    route_type: int = 3


@dataclass
class TripInfo:
    """A trip, carrying its route's names for consumers that only know the trip."""
    trip_id: str
    route_id: str
    short_name: str
    long_name: str
    shape_id: Optional[str] = None


@dataclass
class Line:
    """One boundary-clipped segment of a route's path."""
    route_id: str
    short_name: str
    long_name: str
    color: str
    coords: List[LatLon]  # at least two points
    shape_id: Optional[str] = None
    relation_id: Optional[str] = None
    segment_index: int = 0
    text_color: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["coords"] = [list(p) for p in self.coords]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Line":
        data = dict(data)
        data["coords"] = [(float(p[0]), float(p[1])) for p in data.get("coords", [])]
        return cls(**data)


@dataclass
class LineSet:
    lines: List[Line]
    source: str  # "overpass" or "gtfs"

    def to_dict(self) -> dict:
        return {"source": self.source, "count": len(self.lines), "lines": [l.to_dict() for l in self.lines]}

    @classmethod
    def from_dict(cls, data: dict) -> "LineSet":
        return cls(lines=[Line.from_dict(l) for l in data.get("lines", [])], source=data.get("source", ""))


@dataclass
class Vehicle:
    """A live vehicle position, rebuilt on every poll."""
    vehicle_id: str
    latitude: float
    longitude: float
    label: Optional[str] = None
    line_number: Optional[str] = None
    line_name: Optional[str] = None
    trip_id: Optional[str] = None
    route_id: Optional[str] = None
    bearing: Optional[float] = None
    timestamp: Optional[int] = None
    line_inferred: bool = False
    inference_distance_m: Optional[float] = None

    @property
    def provenance(self) -> str:
        return "inferred" if self.line_inferred else "feed"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["provenance"] = self.provenance
        return data


@dataclass
class VehicleSnapshot:
    vehicles: List[Vehicle]
    feed_timestamp: Optional[int]
    source: str

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "feed_timestamp": self.feed_timestamp,
            "count": len(self.vehicles),
            "vehicles": [v.to_dict() for v in self.vehicles],
        }


@dataclass
class StopAreaCandidate:
    """An entry of the external stop-area directory."""
    code: str
    latitude: float
    longitude: float
    name: Optional[str] = None
    town: Optional[str] = None


@dataclass
class StopAreaIndexData:
    by_stop_id: Dict[str, str]
    candidates: List[StopAreaCandidate]
    mapping_updated_at: float = 0.0
    candidates_updated_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "by_stop_id": self.by_stop_id,
            "candidates": [asdict(c) for c in self.candidates],
            "mapping_updated_at": self.mapping_updated_at,
            "candidates_updated_at": self.candidates_updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StopAreaIndexData":
        if not isinstance(data, dict) or not isinstance(data.get("by_stop_id"), dict) \
                or not isinstance(data.get("candidates"), list):
            raise ValueError("Malformed stop area index")
        return cls(
            by_stop_id=data["by_stop_id"],
            candidates=[StopAreaCandidate(**c) for c in data["candidates"]],
            mapping_updated_at=float(data.get("mapping_updated_at") or 0.0),
            candidates_updated_at=float(data.get("candidates_updated_at") or 0.0),
        )


@dataclass
class StopAreaMatch:
    code: str
    distance_m: int
    approximate: bool


@dataclass
class Departure:
    """One upcoming pass at a timing point of a stop area."""
    line_number: Optional[str]
    destination: Optional[str]
    timing_point_name: Optional[str]
    journey_number: Optional[str] = None
    stop_status: Optional[str] = None
    actual_time: Optional[int] = None
    expected_time: Optional[int] = None
    target_time: Optional[int] = None

    @property
    def time(self) -> Optional[int]:
        """Best available time: actual, then expected, then target."""
        return self.actual_time or self.expected_time or self.target_time

    def to_dict(self) -> dict:
        data = asdict(self)
        data["time"] = self.time
        return data


@dataclass
class StopAreaDepartures:
    stop_area_code: str
    departures: List[Departure]

    def to_dict(self) -> dict:
        return {"stop_area_code": self.stop_area_code, "departures": [d.to_dict() for d in self.departures]}


@dataclass
class StopDepartures:
    """Departures for a stop, with how its stop area was resolved."""
    stop_id: str
    stop_area_code: str
    approximate: bool
    distance_m: Optional[int]
    departures: List[Departure]

    def to_dict(self) -> dict:
        return {
            "stop_id": self.stop_id,
            "stop_area_code": self.stop_area_code,
            "approximate": self.approximate,
            "distance_m": self.distance_m,
            "departures": [d.to_dict() for d in self.departures],
        }
