"""Main BusMap pipeline class."""

import logging
from typing import Optional

from .boundary import BoundaryResolver
from .cache import BlobFileCache, JsonFileCache, MemoryCache
from .config import Settings
from .departures import DeparturesProvider
from .errors import DataMissing
from .gtfs_loader import GTFSLoader
from .line_inference import LineInferenceEngine
from .lines import LineBuilder
from .models import Boundary, LineSet, StopAreaDepartures, StopAreaMatch, StopDepartures, StopSet, VehicleSnapshot
from .ovapi_client import OvapiClient
from .realtime_client import RealtimeClient
from .stop_areas import StopAreaIndex
from .stops import StopResolver
from .upstream import UpstreamClient
from .vehicles import PROVIDER_GTFS_RT, GtfsRtVehicleProvider, OvapiVehicleProvider, VehicleProvider

logger = logging.getLogger(__name__)


class TransitPipeline:
    """
    Serves boundary-filtered transit data for one municipality.

    This class owns every cache and component, and provides methods to:
    - Resolve the boundary polygon
    - List stops and clipped line geometries inside it
    - Poll live vehicle positions
    - Resolve a stop's stop area and fetch its departures
    """

    def __init__(self, settings: Optional[Settings] = None, upstream: Optional[UpstreamClient] = None):
        """
        Initialize the pipeline.

        Args:
            settings: Pipeline configuration. Defaults to ``Settings()``.
            upstream: HTTP client shared by all components. Built from the
                      settings when omitted.
        """
        self.settings = settings or Settings()
        s = self.settings
        slug = s.boundary_slug

        self.upstream = upstream or UpstreamClient(timeout=s.http_timeout)
        self.persistent_cache = JsonFileCache(s.cache_dir)
        self.download_cache = BlobFileCache(s.cache_dir / "downloads")
        self.memory_cache = MemoryCache()

        self.boundary_resolver = BoundaryResolver(
            source_url=s.boundary_source,
            upstream=self.upstream,
            cache=self.persistent_cache,
            name=s.boundary_name,
            code=s.boundary_code,
            versions=s.boundary_versions,
            cache_key=f"boundary_{slug}",
            ttl=s.cache_ttl,
            page_size=s.boundary_page_size,
            max_scan=s.boundary_max_scan,
        )
        self.gtfs_loader = GTFSLoader(
            source_url=s.gtfs_static_source,
            upstream=self.upstream,
            archive_cache=self.download_cache,
            index_cache=self.persistent_cache,
            ttl=s.cache_ttl,
            local_path=s.gtfs_static_path,
        )
        self.ovapi = OvapiClient(s.ovapi_base_url, self.upstream, user_agent=s.ovapi_user_agent)
        self.stop_resolver = StopResolver(
            registry_url=s.stops_source,
            upstream=self.upstream,
            gtfs_loader=self.gtfs_loader,
            cache=self.persistent_cache,
            cache_key=f"stops_{slug}",
            ttl=s.cache_ttl,
        )
        self.line_builder = LineBuilder(
            upstream=self.upstream,
            gtfs_loader=self.gtfs_loader,
            cache=self.persistent_cache,
            preferred_source=s.lines_source,
            overpass_url=s.overpass_url,
            cache_key=f"lines_{slug}_{s.lines_source}",
            ttl=s.cache_ttl,
        )
        self.stop_area_index = StopAreaIndex(
            gtfs_loader=self.gtfs_loader,
            ovapi=self.ovapi,
            cache=self.persistent_cache,
            cache_key=f"stopareas_{slug}",
            radius_m=s.stop_area_match_radius_m,
            ttl=s.cache_ttl,
            candidates_ttl=s.stop_area_candidates_ttl,
        )
        self.line_inference = LineInferenceEngine(
            line_source=self.line_builder.get_lines,
            cache=self.memory_cache,
            max_distance_m=s.line_inference_max_distance_m,
            ttl=s.line_index_ttl,
            cache_key=f"line-index_{slug}",
        )
        self.vehicle_provider = self._build_vehicle_provider()
        self.departures = DeparturesProvider(self.ovapi, self.memory_cache, ttl=s.departures_ttl)

    def _build_vehicle_provider(self) -> VehicleProvider:
        s = self.settings
        if s.vehicle_provider == PROVIDER_GTFS_RT:
            realtime = RealtimeClient(
                vehicle_positions_url=s.vehicle_positions_source,
                trip_updates_url=s.trip_updates_source,
                upstream=self.upstream,
                cache=self.memory_cache,
                trip_updates_ttl=s.trip_updates_ttl,
            )
            return GtfsRtVehicleProvider(realtime, self.gtfs_loader, line_inference=self.line_inference)
        return OvapiVehicleProvider(
            self.ovapi,
            self.memory_cache,
            line_source=self.line_builder.get_lines,
            line_inference=self.line_inference,
            line_list_ttl=s.line_list_ttl,
            actuals_ttl=s.actuals_ttl,
            batch_size=s.ovapi_batch_size,
        )

    def get_boundary(self) -> Boundary:
        return self.boundary_resolver.get_boundary()

    def get_stops(self) -> StopSet:
        return self.stop_resolver.get_stops(self.get_boundary())

    def get_lines(self) -> LineSet:
        return self.line_builder.get_lines(self.get_boundary())

    def get_vehicles(self) -> VehicleSnapshot:
        return self.vehicle_provider.fetch(self.get_boundary())

    def resolve_stop_area(self, stop_id: str) -> Optional[StopAreaMatch]:
        """
        Resolve the stop area of a stop inside the boundary.

        Args:
            stop_id: Stop identifier as listed by ``get_stops()``.

        Returns:
            StopAreaMatch, or None when neither the exact mapping nor the
            stop-area directory yields a match.

        Raises:
            DataMissing: If the stop is not inside the boundary.
        """
        boundary = self.get_boundary()
        stop = self.stop_resolver.get_stops(boundary).find(stop_id)
        if stop is None:
            raise DataMissing(f"Stop not found: {stop_id}")
        return self.stop_area_index.resolve(stop.stop_id, stop.latitude, stop.longitude, boundary)

    def get_stop_area_departures(self, stop_area_code: str) -> StopAreaDepartures:
        return self.departures.get_departures(stop_area_code)

    def get_stop_departures(self, stop_id: str) -> StopDepartures:
        """
        Get upcoming departures for a stop via its stop area.

        Raises:
            DataMissing: If the stop or its stop area cannot be found.
        """
        stop_id = str(stop_id or "").strip()
        if not stop_id:
            raise DataMissing("Missing stop ID.")
        match = self.resolve_stop_area(stop_id)
        if match is None or not match.code:
            raise DataMissing(f"Stop area code not found for stop {stop_id}")
        result = self.departures.get_departures(match.code)
        return StopDepartures(
            stop_id=stop_id,
            stop_area_code=match.code,
            approximate=match.approximate,
            distance_m=match.distance_m,
            departures=result.departures,
        )

    def clear_live_caches(self) -> None:
        """Drop all in-memory caches (vehicles, departures, line list and index)."""
        self.memory_cache.clear()
        logger.info("Cleared in-memory caches")

    def close(self) -> None:
        self.upstream.close()
