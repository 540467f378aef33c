"""GTFS static bundle loader."""

import io
import logging
import zipfile
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from .cache import BlobFileCache, KeyedCache
from .errors import DataMissing
from .models import RouteInfo, TripInfo
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

ARCHIVE_KEY = "gtfs-static.zip"
ROUTES_KEY = "routes_map"
TRIPS_KEY = "trips_map"


def is_bus_route_type(value) -> bool:
    """Basic GTFS bus (3) or the extended bus range 700-799."""
    try:
        route_type = int(float(value))
    except (TypeError, ValueError):
        return False
    return route_type == 3 or 700 <= route_type < 800


def read_csv_text(csv_content: str) -> pd.DataFrame:
    """Parse GTFS CSV text with every column kept as a string."""
    return pd.read_csv(io.StringIO(csv_content), dtype=str, keep_default_na=False)


def require_columns(table: pd.DataFrame, name: str, columns: Iterable[str]) -> None:
    missing = [c for c in columns if c not in table.columns]
    if missing:
        raise DataMissing(f"GTFS table {name} is missing columns: {', '.join(missing)}")


def _color(value: str) -> Optional[str]:
    value = (value or "").strip().lstrip("#")
    return f"#{value}" if value else None


def parse_routes(routes: pd.DataFrame) -> Dict[str, RouteInfo]:
    """Index bus routes by route_id."""
    require_columns(routes, "routes.txt", ["route_id", "route_type"])
    result: Dict[str, RouteInfo] = {}
    for row in routes.to_dict("records"):
        route_id = row["route_id"]
        if not route_id or not is_bus_route_type(row["route_type"]):
            continue
        result[route_id] = RouteInfo(
            route_id=route_id,
            short_name=row.get("route_short_name", ""),
            long_name=row.get("route_long_name", ""),
            color=_color(row.get("route_color", "")),
            text_color=_color(row.get("route_text_color", "")),
            route_type=int(float(row["route_type"])),
        )
    return result


def parse_trips(trips: pd.DataFrame, routes: Dict[str, RouteInfo]) -> Dict[str, TripInfo]:
    """Index trips of bus routes by trip_id, carrying the route names along."""
    require_columns(trips, "trips.txt", ["trip_id", "route_id"])
    result: Dict[str, TripInfo] = {}
    for row in trips.to_dict("records"):
        trip_id = row["trip_id"]
        route = routes.get(row["route_id"])
        if not trip_id or route is None:
            continue
        result[trip_id] = TripInfo(
            trip_id=trip_id,
            route_id=route.route_id,
            short_name=route.short_name,
            long_name=route.long_name,
            shape_id=row.get("shape_id") or None,
        )
    return result


def parse_shapes(shapes: pd.DataFrame, shape_ids: Optional[Iterable[str]] = None) -> Dict[str, List[Tuple[float, float]]]:
    """Group shape points by shape_id in sequence order as (lat, lon) pairs."""
    require_columns(shapes, "shapes.txt", ["shape_id", "shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"])
    if shape_ids is not None:
        shapes = shapes[shapes["shape_id"].isin(set(shape_ids))]

    points = shapes.assign(
        lat=pd.to_numeric(shapes["shape_pt_lat"], errors="coerce"),
        lon=pd.to_numeric(shapes["shape_pt_lon"], errors="coerce"),
        seq=pd.to_numeric(shapes["shape_pt_sequence"], errors="coerce"),
    )
    points = points.replace([float("inf"), float("-inf")], float("nan"))
    points = points.dropna(subset=["lat", "lon"])
    points = points.sort_values(["shape_id", "seq"], kind="stable")

    result: Dict[str, List[Tuple[float, float]]] = {}
    for shape_id, group in points.groupby("shape_id", sort=False):
        result[shape_id] = list(zip(group["lat"].astype(float), group["lon"].astype(float)))
    return result


class GTFSLoader:
    """Loads and indexes the GTFS static bundle.

    The archive is downloaded through a ``BlobFileCache`` (or read from a
    local path) and tables are parsed on demand. Route and trip indexes are
    persisted as JSON so later runs skip the archive entirely.
    """

    def __init__(
        self,
        source_url: str,
        upstream: UpstreamClient,
        archive_cache: BlobFileCache,
        index_cache: KeyedCache,
        ttl: float = 7 * 24 * 3600,
        local_path: Optional[Path] = None,
    ):
        self.source_url = source_url
        self.upstream = upstream
        self.archive_cache = archive_cache
        self.index_cache = index_cache
        self.ttl = ttl
        self.local_path = Path(local_path) if local_path else None

    def archive_path(self) -> Path:
        """Path to a fresh copy of the archive, downloading it if needed."""
        if self.local_path is not None:
            if not self.local_path.exists():
                raise DataMissing(f"GTFS archive not found at {self.local_path}")
            return self.local_path
        return self.archive_cache.get_or_populate(ARCHIVE_KEY, self.ttl, self._download)

    def _download(self) -> bytes:
        logger.info(f"Downloading GTFS data from {self.source_url}")
        data = self.upstream.get_bytes(self.source_url)
        logger.info(f"Downloaded {len(data) / 1e6:.1f} MB of GTFS data")
        return data

    def read_table(self, name: str) -> pd.DataFrame:
        """Parse one table (e.g. "stops.txt") from the archive."""
        path = self.archive_path()
        try:
            with zipfile.ZipFile(path) as zip_file:
                member = self._find_member(zip_file, name)
                if member is None:
                    raise DataMissing(f"Missing required GTFS file ({name}).")
                with zip_file.open(member) as fh:
                    return pd.read_csv(fh, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        except zipfile.BadZipFile as e:
            raise DataMissing(f"GTFS archive {path} is not a valid zip file: {e}") from e
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise DataMissing(f"GTFS file {name} could not be parsed: {e}") from e

    @staticmethod
    def _find_member(zip_file: zipfile.ZipFile, name: str) -> Optional[str]:
        names = zip_file.namelist()
        if name in names:
            return name
        for member in names:
            if member.rsplit("/", 1)[-1] == name:
                return member
        return None

    def load_routes(self) -> Dict[str, RouteInfo]:
        payload = self.index_cache.get_or_populate(ROUTES_KEY, self.ttl, self._build_routes_payload)
        return {route_id: RouteInfo(**info) for route_id, info in payload.items()}

    def _build_routes_payload(self) -> dict:
        routes = parse_routes(self.read_table("routes.txt"))
        logger.info(f"Indexed {len(routes)} bus routes")
        return {route_id: asdict(info) for route_id, info in routes.items()}

    def load_trips(self) -> Dict[str, TripInfo]:
        payload = self.index_cache.get_or_populate(TRIPS_KEY, self.ttl, self._build_trips_payload)
        return {trip_id: TripInfo(**info) for trip_id, info in payload.items()}

    def _build_trips_payload(self) -> dict:
        trips = parse_trips(self.read_table("trips.txt"), self.load_routes())
        logger.info(f"Indexed {len(trips)} bus trips")
        return {trip_id: asdict(info) for trip_id, info in trips.items()}

    def load_shapes(self, shape_ids: Optional[Iterable[str]] = None) -> Dict[str, List[Tuple[float, float]]]:
        return parse_shapes(self.read_table("shapes.txt"), shape_ids)

    def load_stops(self) -> pd.DataFrame:
        table = self.read_table("stops.txt")
        require_columns(table, "stops.txt", ["stop_id"])
        return table
