"""Stop to stop-area resolution.

An exact mapping comes from the GTFS ``parent_station`` column; stops
missing from it are matched to the nearest entry of the OVapi stop-area
directory. The two parts are persisted together but refresh on separate
TTLs, and refreshing the directory keeps the persisted exact mapping.
"""

import logging
import math
from typing import Dict, List, Optional

import pandas as pd

from .cache import KeyedCache
from .errors import TransitDataError
from .geo import BBox, distance_between_points, meters_to_degrees
from .gtfs_loader import GTFSLoader
from .models import Boundary, StopAreaCandidate, StopAreaIndexData, StopAreaMatch
from .normalize import to_float
from .ovapi_client import OvapiClient

logger = logging.getLogger(__name__)

STOP_AREA_PREFIX = "stoparea:"


def normalize_stop_area(value) -> Optional[str]:
    raw = str(value if value is not None else "").strip()
    if not raw:
        return None
    if raw.lower().startswith(STOP_AREA_PREFIX):
        return raw[len(STOP_AREA_PREFIX):] or None
    return raw


def build_exact_mapping(stops: pd.DataFrame) -> Dict[str, str]:
    if "parent_station" not in stops.columns:
        return {}
    mapping: Dict[str, str] = {}
    for stop_id, parent in zip(stops["stop_id"], stops["parent_station"]):
        code = normalize_stop_area(parent)
        if stop_id and code:
            mapping[stop_id] = code
    return mapping


def parse_stop_area_directory(data: dict) -> List[StopAreaCandidate]:
    """Project directory entries; entries without finite coordinates are dropped."""
    candidates: List[StopAreaCandidate] = []
    for code, info in (data or {}).items():
        if not isinstance(info, dict):
            continue
        lat = to_float(info.get("Latitude", info.get("latitude")))
        lon = to_float(info.get("Longitude", info.get("longitude")))
        if lat is None or lon is None:
            continue
        candidates.append(StopAreaCandidate(
            code=str(code),
            latitude=lat,
            longitude=lon,
            name=info.get("TimingPointName") or None,
            town=info.get("TimingPointTown") or None,
        ))
    return candidates


def filter_candidates(candidates: List[StopAreaCandidate], bbox: BBox, radius_m: float) -> List[StopAreaCandidate]:
    """Keep candidates inside ``bbox`` grown by the match radius."""
    dlat, dlon = meters_to_degrees(radius_m)
    expanded = bbox.expanded(dlat, dlon)
    return [c for c in candidates if expanded.contains((c.longitude, c.latitude))]


def find_nearest_stop_area(lat: float, lon: float, candidates: List[StopAreaCandidate],
                           radius_m: float) -> Optional[StopAreaMatch]:
    """Nearest candidate by planar distance; approximate when beyond ``radius_m``."""
    best = None
    best_distance = math.inf
    for candidate in candidates:
        distance = distance_between_points(lat, lon, candidate.latitude, candidate.longitude)
        if distance < best_distance:
            best, best_distance = candidate, distance
    if best is None or not best.code:
        return None
    return StopAreaMatch(
        code=best.code,
        distance_m=int(round(best_distance)),
        approximate=best_distance > radius_m,
    )


class StopAreaIndex:
    """Persisted stop-area index for one boundary."""

    def __init__(
        self,
        gtfs_loader: GTFSLoader,
        ovapi: OvapiClient,
        cache: KeyedCache,
        cache_key: str = "stopareas",
        radius_m: float = 150.0,
        ttl: float = 7 * 24 * 3600,
        candidates_ttl: float = 24 * 3600,
    ):
        self.gtfs_loader = gtfs_loader
        self.ovapi = ovapi
        self.cache = cache
        self.cache_key = cache_key
        self.radius_m = radius_m
        self.ttl = ttl
        self.candidates_ttl = candidates_ttl

    def load(self, boundary: Boundary) -> StopAreaIndexData:
        """Return the stop area index, refreshing the stale parts.

        The exact mapping is rebuilt after ``ttl``; the candidate list alone
        is refreshed after ``candidates_ttl``.

        Args:
            boundary: Municipality the candidates are filtered to.

        Returns:
            Exact mapping and nearby candidates.

        Raises:
            DataMissing: If the GTFS stops cannot be read on rebuild.
        """
        with self.cache.locked(self.cache_key):
            now = self.cache.now()
            cached = self._cached_index()
            if cached is None or now - cached.mapping_updated_at >= self.ttl:
                index = self.build(boundary)
            elif now - cached.candidates_updated_at >= self.candidates_ttl:
                index = StopAreaIndexData(
                    by_stop_id=cached.by_stop_id,
                    candidates=self.fetch_candidates(boundary, previous=cached.candidates),
                    mapping_updated_at=cached.mapping_updated_at,
                    candidates_updated_at=now,
                )
            else:
                return cached
            self.cache.store(self.cache_key, index.to_dict(), self.ttl)
            return index

    def _cached_index(self) -> Optional[StopAreaIndexData]:
        entry = self.cache.get_entry(self.cache_key)
        if entry is None:
            return None
        try:
            return StopAreaIndexData.from_dict(entry.payload)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Discarding malformed stop area index: {e}")
            return None

    def build(self, boundary: Boundary) -> StopAreaIndexData:
        by_stop_id = build_exact_mapping(self.gtfs_loader.load_stops())
        logger.info(f"Mapped {len(by_stop_id)} stops to stop areas")
        now = self.cache.now()
        return StopAreaIndexData(
            by_stop_id=by_stop_id,
            candidates=self.fetch_candidates(boundary),
            mapping_updated_at=now,
            candidates_updated_at=now,
        )

    def fetch_candidates(self, boundary: Boundary,
                         previous: Optional[List[StopAreaCandidate]] = None) -> List[StopAreaCandidate]:
        """Load the OVapi stop area directory near the boundary.

        Args:
            boundary: Municipality whose bounding box filters the directory.
            previous: Candidates to keep when the directory is unavailable.

        Returns:
            Candidates within the bounding box widened by the match radius.
        """
        try:
            candidates = parse_stop_area_directory(self.ovapi.stop_area_directory())
        except TransitDataError as e:
            logger.warning(f"Stop area directory unavailable ({e}), keeping previous list")
            return list(previous or [])
        candidates = filter_candidates(candidates, boundary.bbox(), self.radius_m)
        logger.info(f"Loaded {len(candidates)} stop area candidates near {boundary.name}")
        return candidates

    def resolve(self, stop_id: str, lat: Optional[float], lon: Optional[float],
                boundary: Boundary) -> Optional[StopAreaMatch]:
        """Find the stop area for a stop.

        Args:
            stop_id: GTFS stop id.
            lat: Stop latitude, used when there is no exact mapping.
            lon: Stop longitude, used when there is no exact mapping.
            boundary: Municipality the index is built for.

        Returns:
            Exact mapping first, nearest candidate otherwise, None when
            neither applies.
        """
        if not stop_id:
            return None
        index = self.load(boundary)
        code = index.by_stop_id.get(stop_id)
        if code:
            return StopAreaMatch(code=code, distance_m=0, approximate=False)
        if to_float(lat) is None or to_float(lon) is None:
            return None
        return find_nearest_stop_area(float(lat), float(lon), index.candidates, self.radius_m)
