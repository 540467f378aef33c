"""Stops inside the boundary, from the national stop registry or the GTFS bundle."""

import gzip
import io
import logging
from typing import List

import pandas as pd

from .cache import KeyedCache
from .errors import DataMissing
from .fallback import first_success
from .gtfs_loader import GTFSLoader, require_columns
from .models import Boundary, Stop, StopSet
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

SOURCE_REGISTRY = "registry"
SOURCE_GTFS = "gtfs"

GZIP_MAGIC = b"\x1f\x8b"


def is_primary_stop(location_type) -> bool:
    """Location type 0 (or blank) is a stop/platform; stations and entrances are not."""
    value = str(location_type if location_type is not None else "").strip()
    return value in ("", "0")


def parse_stops(table: pd.DataFrame, boundary: Boundary) -> List[Stop]:
    """Primary stops with finite coordinates inside the boundary."""
    require_columns(table, "stops", ["stop_id", "stop_lat", "stop_lon"])
    if "location_type" in table.columns:
        table = table[table["location_type"].map(is_primary_stop)]
    table = table.assign(
        lat=pd.to_numeric(table["stop_lat"], errors="coerce"),
        lon=pd.to_numeric(table["stop_lon"], errors="coerce"),
    )
    table = table.replace([float("inf"), float("-inf")], float("nan")).dropna(subset=["lat", "lon"])

    stops: List[Stop] = []
    for row in table.to_dict("records"):
        lat, lon = float(row["lat"]), float(row["lon"])
        if not boundary.contains(lat, lon):
            continue
        stops.append(Stop(
            stop_id=row["stop_id"],
            name=row.get("stop_name", ""),
            latitude=lat,
            longitude=lon,
        ))
    return stops


def read_registry(data: bytes) -> pd.DataFrame:
    """Parse the stop registry CSV, gunzipping it when compressed."""
    try:
        if data[:2] == GZIP_MAGIC:
            data = gzip.decompress(data)
        return pd.read_csv(io.BytesIO(data), dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except (OSError, EOFError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise DataMissing(f"Stop registry could not be parsed: {e}") from e


class StopResolver:
    """Builds the boundary's stop list, preferring the stop registry."""

    def __init__(
        self,
        registry_url: str,
        upstream: UpstreamClient,
        gtfs_loader: GTFSLoader,
        cache: KeyedCache,
        cache_key: str = "stops",
        ttl: float = 7 * 24 * 3600,
    ):
        self.registry_url = registry_url
        self.upstream = upstream
        self.gtfs_loader = gtfs_loader
        self.cache = cache
        self.cache_key = cache_key
        self.ttl = ttl

    def get_stops(self, boundary: Boundary) -> StopSet:
        """Stops inside the boundary, from the registry or GTFS.

        Args:
            boundary: Municipality the stops must be inside.

        Returns:
            Cached stop set, rebuilt once the cache entry is stale.

        Raises:
            DataMissing: If both stop sources fail.
        """
        payload = self.cache.get_or_populate(self.cache_key, self.ttl, lambda: self.build(boundary).to_dict())
        return StopSet.from_dict(payload)

    def build(self, boundary: Boundary) -> StopSet:
        result = first_success(
            [
                (SOURCE_REGISTRY, lambda: self.stops_from_registry(boundary)),
                (SOURCE_GTFS, lambda: self.stops_from_gtfs(boundary)),
            ],
            what="Stops",
        )
        logger.info(f"Found {len(result.value)} stops inside {boundary.name} ({result.source})")
        return StopSet(stops=result.value, source=result.source)

    def stops_from_registry(self, boundary: Boundary) -> List[Stop]:
        logger.info(f"Downloading stop registry from {self.registry_url}")
        table = read_registry(self.upstream.get_bytes(self.registry_url))
        return parse_stops(table, boundary)

    def stops_from_gtfs(self, boundary: Boundary) -> List[Stop]:
        return parse_stops(self.gtfs_loader.load_stops(), boundary)
