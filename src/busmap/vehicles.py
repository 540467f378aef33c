"""Live vehicle positions from GTFS-Realtime or the OVapi polling API.

Both providers share boundary filtering, de-duplication by vehicle id and
line inference; they differ only in how raw positions are collected.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Set

from .cache import KeyedCache
from .errors import TransitDataError
from .gtfs_loader import GTFSLoader
from .line_inference import LineInferenceEngine
from .lines import local_line_numbers
from .models import Boundary, LineSet, Vehicle, VehicleSnapshot
from .normalize import normalize_line_number, parse_timestamp, to_float
from .ovapi_client import OvapiClient
from .realtime_client import RealtimeClient, TripRef, TripUpdateIndex

logger = logging.getLogger(__name__)

PROVIDER_GTFS_RT = "gtfs-rt"
PROVIDER_OVAPI = "ovapi"

LINE_LIST_KEY = "ovapi-line-list"
ACTUALS_KEY = "ovapi-actuals"


def collect_vehicles(vehicles: Iterable[Vehicle], boundary: Boundary) -> List[Vehicle]:
    """Vehicles inside the boundary, first record per id, id-less records dropped."""
    seen: Set[str] = set()
    result: List[Vehicle] = []
    for vehicle in vehicles:
        if not vehicle.vehicle_id or vehicle.vehicle_id in seen:
            continue
        if not boundary.contains(vehicle.latitude, vehicle.longitude):
            continue
        seen.add(vehicle.vehicle_id)
        result.append(vehicle)
    return result


class VehicleProvider(ABC):
    """Produces a boundary-filtered vehicle snapshot."""

    source = ""

    def __init__(self, line_inference: Optional[LineInferenceEngine] = None):
        self.line_inference = line_inference

    def fetch(self, boundary: Boundary) -> VehicleSnapshot:
        """Collect the current vehicles and filter them to the boundary.

        Args:
            boundary: Municipality vehicles must be inside.

        Returns:
            Deduplicated vehicles inside the boundary, with inferred lines
            where an inference engine is configured.

        Raises:
            UpstreamUnavailable: If the vehicle feed cannot be fetched or decoded.
        """
        vehicles, feed_timestamp = self.collect(boundary)
        vehicles = collect_vehicles(vehicles, boundary)
        if self.line_inference is not None:
            vehicles = self.line_inference.apply(vehicles, boundary)
        logger.debug(f"{self.source}: {len(vehicles)} vehicles inside {boundary.name}")
        return VehicleSnapshot(vehicles=vehicles, feed_timestamp=feed_timestamp, source=self.source)

    @abstractmethod
    def collect(self, boundary: Boundary):
        """Return ``(vehicles, feed_timestamp)`` before filtering."""


class GtfsRtVehicleProvider(VehicleProvider):
    """Vehicle positions decoded from a GTFS-Realtime feed."""

    source = PROVIDER_GTFS_RT

    def __init__(self, realtime: RealtimeClient, gtfs_loader: GTFSLoader,
                 line_inference: Optional[LineInferenceEngine] = None):
        super().__init__(line_inference)
        self.realtime = realtime
        self.gtfs_loader = gtfs_loader

    def collect(self, boundary: Boundary):
        routes = self.gtfs_loader.load_routes()
        trips = self.gtfs_loader.load_trips()
        try:
            trip_updates = self.realtime.trip_updates()
        except TransitDataError as e:
            logger.warning(f"Trip updates unavailable ({e})")
            trip_updates = TripUpdateIndex()

        positions = self.realtime.vehicle_positions()
        vehicles: List[Vehicle] = []
        for report in positions.reports:
            vehicle_id = report.vehicle_id or report.entity_id or None
            fallback = trip_updates.by_vehicle_id.get(vehicle_id, TripRef()) if vehicle_id else TripRef()
            trip_id = report.trip.trip_id or fallback.trip_id
            route_id = report.trip.route_id or fallback.route_id

            trip = trips.get(trip_id) if trip_id else None
            route_id = route_id or (trip.route_id if trip else None)
            route = routes.get(route_id) if route_id else None

            vehicles.append(Vehicle(
                vehicle_id=vehicle_id,
                label=report.label,
                line_number=(route.short_name if route else None) or (trip.short_name if trip else None) or None,
                line_name=(route.long_name if route else None) or (trip.long_name if trip else None) or None,
                trip_id=trip_id,
                route_id=route_id,
                latitude=report.latitude,
                longitude=report.longitude,
                bearing=report.bearing,
                timestamp=report.timestamp,
            ))
        return vehicles, positions.feed_timestamp


def select_line_keys(line_directory: Dict[str, dict], local_numbers: Set[str]) -> List[str]:
    """Directory keys of bus lines whose public number runs inside the boundary."""
    keys = []
    for key, info in (line_directory or {}).items():
        if not isinstance(info, dict):
            continue
        transport_type = info.get("TransportType")
        if transport_type and transport_type != "BUS":
            continue
        number = normalize_line_number(info.get("LinePublicNumber"))
        if number and number in local_numbers:
            keys.append(key)
    return sorted(keys)


def parse_actuals(actuals_by_line: Dict[str, dict]):
    """Project OVapi actuals into vehicles; returns ``(vehicles, latest_timestamp)``."""
    vehicles: List[Vehicle] = []
    latest = 0
    for line_data in (actuals_by_line or {}).values():
        if not isinstance(line_data, dict):
            continue
        actuals = line_data.get("Actuals") or {}
        if not isinstance(actuals, dict):
            continue
        for actual_key, actual in actuals.items():
            if not isinstance(actual, dict):
                continue
            lat = to_float(actual.get("latitude", actual.get("Latitude")))
            lon = to_float(actual.get("longitude", actual.get("Longitude")))
            if lat is None or lon is None:
                continue

            vehicle_id = actual_key or "_".join(
                str(part) for part in (
                    actual.get("DataOwnerCode"), actual.get("JourneyNumber"), actual.get("OperationDate")
                ) if part
            )
            timestamp = parse_timestamp(
                actual.get("LastUpdateTimeStamp")
                or actual.get("ExpectedDepartureTime")
                or actual.get("ExpectedArrivalTime")
            )
            if timestamp and timestamp > latest:
                latest = timestamp

            journey = actual.get("JourneyNumber")
            planning = actual.get("LinePlanningNumber")
            vehicles.append(Vehicle(
                vehicle_id=vehicle_id,
                line_number=normalize_line_number(actual.get("LinePublicNumber"))
                or normalize_line_number(planning),
                line_name=actual.get("LineName") or actual.get("DestinationName50") or None,
                trip_id=str(journey) if journey is not None else None,
                route_id=str(planning) if planning is not None else None,
                latitude=lat,
                longitude=lon,
                timestamp=timestamp,
            ))
    return vehicles, latest or None


class OvapiVehicleProvider(VehicleProvider):
    """Vehicle positions polled from OVapi for the lines running in the boundary."""

    source = PROVIDER_OVAPI

    def __init__(
        self,
        ovapi: OvapiClient,
        cache: KeyedCache,
        line_source: Callable[[Boundary], LineSet],
        line_inference: Optional[LineInferenceEngine] = None,
        line_list_ttl: float = 6 * 3600,
        actuals_ttl: float = 15,
        batch_size: int = 20,
    ):
        super().__init__(line_inference)
        self.ovapi = ovapi
        self.cache = cache
        self.line_source = line_source
        self.line_list_ttl = line_list_ttl
        self.actuals_ttl = actuals_ttl
        self.batch_size = batch_size

    def collect(self, boundary: Boundary):
        local_numbers = local_line_numbers(self.line_source(boundary))
        if not local_numbers:
            logger.warning("OVapi: no local line numbers found. Returning no vehicles.")
            return [], None

        directory = self.cache.get_or_populate(LINE_LIST_KEY, self.line_list_ttl, self.ovapi.line_directory)
        keys = select_line_keys(directory, local_numbers)
        if not keys:
            logger.warning("OVapi: no matching lines found. Returning no vehicles.")
            return [], None

        actuals = self._actuals(keys)
        return parse_actuals(actuals)

    def _actuals(self, keys: List[str]) -> Dict[str, dict]:
        """Actuals for ``keys``; one cached entry, reused only for the same key set."""
        with self.cache.locked(ACTUALS_KEY):
            entry = self.cache.get_fresh(ACTUALS_KEY, self.actuals_ttl)
            if entry is not None and entry.payload["keys"] == keys:
                return entry.payload["actuals"]
            actuals = self.ovapi.line_actuals(keys, self.batch_size)
            self.cache.store(ACTUALS_KEY, {"keys": keys, "actuals": actuals}, self.actuals_ttl)
            return actuals
