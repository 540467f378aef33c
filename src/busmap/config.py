"""Configuration for the BusMap pipeline.

Defaults target the municipality of Enschede with Dutch open-data sources.
Every value can be overridden through ``Settings.from_env``.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR

DEFAULT_CACHE_DIR = Path("data")

BOUNDARY_SOURCE = "https://api.pdok.nl/cbs/gebiedsindelingen/ogc/v1/collections/gemeente_gegeneraliseerd/items"
STOPS_SOURCE = "https://data.openov.nl/haltes/stops.csv.gz"
GTFS_STATIC_SOURCE = "https://gtfs.openov.nl/gtfs-rt/gtfs-openov-nl.zip"
VEHICLE_POS_SOURCE = "https://gtfs.openov.nl/gtfs-rt/vehiclePositions.pb"
TRIP_UPDATES_SOURCE = "https://gtfs.openov.nl/gtfs-rt/tripUpdates.pb"
OVERPASS_URL = "https://overpass-api.de/api/interpreter"
OVAPI_BASE_URL = "http://v0.ovapi.nl"
OVAPI_USER_AGENT = "busmap/0.1"

LINES_SOURCES = ("overpass", "gtfs")
VEHICLE_PROVIDERS = ("ovapi", "gtfs-rt")


@dataclass
class Settings:
    """All tunables of one pipeline instance. TTLs are in seconds."""
    cache_dir: Path = DEFAULT_CACHE_DIR

    boundary_source: str = BOUNDARY_SOURCE
    boundary_name: str = "enschede"
    boundary_code: str = ""
    boundary_versions: Tuple[int, ...] = (2026, 2025, 2024, 2023)
    boundary_page_size: int = 1000
    boundary_max_scan: int = 20000

    stops_source: str = STOPS_SOURCE
    gtfs_static_source: str = GTFS_STATIC_SOURCE
    gtfs_static_path: Optional[Path] = None  # local archive instead of downloading
    vehicle_positions_source: str = VEHICLE_POS_SOURCE
    trip_updates_source: str = TRIP_UPDATES_SOURCE
    overpass_url: str = OVERPASS_URL
    ovapi_base_url: str = OVAPI_BASE_URL
    ovapi_user_agent: str = OVAPI_USER_AGENT

    lines_source: str = "overpass"
    vehicle_provider: str = "ovapi"

    cache_ttl: float = 7 * DAY  # boundary, stops, lines, static bundle
    stop_area_candidates_ttl: float = DAY
    line_list_ttl: float = 6 * HOUR
    line_index_ttl: float = 10 * MINUTE
    actuals_ttl: float = 15
    departures_ttl: float = 20
    trip_updates_ttl: float = 20

    stop_area_match_radius_m: float = 150.0
    line_inference_max_distance_m: float = 60.0
    ovapi_batch_size: int = 20
    http_timeout: Optional[float] = 30

    def __post_init__(self):
        self.cache_dir = Path(self.cache_dir)
        if self.lines_source not in LINES_SOURCES:
            raise ValueError(f"Unknown lines source '{self.lines_source}', expected one of {LINES_SOURCES}")
        if self.vehicle_provider not in VEHICLE_PROVIDERS:
            raise ValueError(
                f"Unknown vehicle provider '{self.vehicle_provider}', expected one of {VEHICLE_PROVIDERS}"
            )
        if self.ovapi_batch_size <= 0:
            raise ValueError("ovapi_batch_size must be > 0")
        if self.stop_area_match_radius_m < 0:
            raise ValueError("stop_area_match_radius_m must be >= 0")

    @property
    def boundary_slug(self) -> str:
        """Stable fragment used in persisted cache names."""
        raw = (self.boundary_code or self.boundary_name or "boundary").strip().lower()
        return re.sub(r"[^0-9a-z]+", "_", raw).strip("_") or "boundary"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        kwargs = {}

        strings = {
            "CACHE_DIR": "cache_dir",
            "BOUNDARY_SOURCE": "boundary_source",
            "BOUNDARY_NAME": "boundary_name",
            "BOUNDARY_STATCODE": "boundary_code",
            "STOPS_SOURCE": "stops_source",
            "GTFS_STATIC_SOURCE": "gtfs_static_source",
            "GTFS_STATIC_PATH": "gtfs_static_path",
            "VEHICLE_POS_SOURCE": "vehicle_positions_source",
            "TRIP_UPDATES_SOURCE": "trip_updates_source",
            "OVERPASS_URL": "overpass_url",
            "OVAPI_BASE_URL": "ovapi_base_url",
            "OVAPI_USER_AGENT": "ovapi_user_agent",
            "LINES_SOURCE": "lines_source",
            "VEHICLE_PROVIDER": "vehicle_provider",
        }
        for env_name, attr in strings.items():
            if env.get(env_name):
                kwargs[attr] = env[env_name].strip()
        if "gtfs_static_path" in kwargs:
            kwargs["gtfs_static_path"] = Path(kwargs["gtfs_static_path"])

        # Durations are given in milliseconds, like the upstream server's env.
        durations = {
            "CACHE_TTL_MS": "cache_ttl",
            "OVAPI_STOPAREAS_TTL_MS": "stop_area_candidates_ttl",
            "OVAPI_LINE_LIST_TTL_MS": "line_list_ttl",
            "LINE_INDEX_TTL_MS": "line_index_ttl",
            "OVAPI_ACTUALS_TTL_MS": "actuals_ttl",
            "OVAPI_DEPARTURES_TTL_MS": "departures_ttl",
            "TRIP_UPDATES_TTL_MS": "trip_updates_ttl",
        }
        for env_name, attr in durations.items():
            if env.get(env_name):
                kwargs[attr] = _parse_number(env_name, env[env_name]) / 1000.0

        numbers = {
            "STOPAREA_MATCH_RADIUS_M": ("stop_area_match_radius_m", float),
            "LINE_MATCH_MAX_DISTANCE_M": ("line_inference_max_distance_m", float),
            "OVAPI_BATCH_SIZE": ("ovapi_batch_size", int),
            "HTTP_TIMEOUT_S": ("http_timeout", float),
        }
        for env_name, (attr, cast) in numbers.items():
            if env.get(env_name):
                kwargs[attr] = cast(_parse_number(env_name, env[env_name]))

        if env.get("BOUNDARY_VERSIONS"):
            kwargs["boundary_versions"] = tuple(
                int(v) for v in env["BOUNDARY_VERSIONS"].split(",") if v.strip()
            )

        return cls(**kwargs)


def _parse_number(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{value}'")
