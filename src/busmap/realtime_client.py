"""GTFS-Realtime vehicle position and trip update fetcher and parser."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .cache import KeyedCache
from .errors import UpstreamUnavailable
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

TRIP_UPDATES_KEY = "trip-updates"


@dataclass
class TripRef:
    """Trip and route ids referenced by a realtime entity."""
    trip_id: Optional[str] = None
    route_id: Optional[str] = None


@dataclass
class TripUpdateIndex:
    """Trip references from the trip-updates feed, keyed by vehicle id."""
    by_vehicle_id: Dict[str, TripRef] = field(default_factory=dict)
    feed_timestamp: Optional[int] = None


@dataclass
class VehicleReport:
    """One vehicle position as it appears in the realtime feed."""
    entity_id: str
    vehicle_id: Optional[str]
    label: Optional[str]
    latitude: float
    longitude: float
    trip: TripRef
    bearing: Optional[float] = None
    timestamp: Optional[int] = None


@dataclass
class VehiclePositions:
    reports: List[VehicleReport]
    feed_timestamp: Optional[int] = None


def decode_feed(data: bytes, url: str = "") -> gtfs_realtime_pb2.FeedMessage:
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(data)
    except DecodeError as e:
        raise UpstreamUnavailable(f"Could not decode GTFS-Realtime feed {url}: {e}", url=url) from e
    return feed


def _header_timestamp(feed: gtfs_realtime_pb2.FeedMessage) -> Optional[int]:
    if feed.HasField("header") and feed.header.timestamp:
        return int(feed.header.timestamp)
    return None


def parse_trip_updates(feed: gtfs_realtime_pb2.FeedMessage) -> TripUpdateIndex:
    """Map vehicle ids to the trip they are serving."""
    by_vehicle_id: Dict[str, TripRef] = {}
    for entity in feed.entity:
        if not entity.HasField("trip_update"):
            continue
        trip_update = entity.trip_update
        vehicle_id = trip_update.vehicle.id if trip_update.HasField("vehicle") else ""
        if not vehicle_id:
            continue
        by_vehicle_id[vehicle_id] = TripRef(
            trip_id=trip_update.trip.trip_id or None,
            route_id=trip_update.trip.route_id or None,
        )
    return TripUpdateIndex(by_vehicle_id=by_vehicle_id, feed_timestamp=_header_timestamp(feed))


def parse_vehicle_positions(feed: gtfs_realtime_pb2.FeedMessage) -> VehiclePositions:
    """Vehicle entities that carry a position."""
    reports: List[VehicleReport] = []
    for entity in feed.entity:
        if not entity.HasField("vehicle"):
            continue
        vehicle = entity.vehicle
        if not vehicle.HasField("position"):
            continue

        descriptor = vehicle.vehicle if vehicle.HasField("vehicle") else None
        trip = vehicle.trip if vehicle.HasField("trip") else None
        position = vehicle.position

        reports.append(VehicleReport(
            entity_id=entity.id,
            vehicle_id=(descriptor.id if descriptor else "") or None,
            label=(descriptor.label if descriptor else "") or None,
            latitude=float(position.latitude),
            longitude=float(position.longitude),
            trip=TripRef(
                trip_id=(trip.trip_id if trip else "") or None,
                route_id=(trip.route_id if trip else "") or None,
            ),
            bearing=float(position.bearing) if position.HasField("bearing") else None,
            timestamp=int(vehicle.timestamp) if vehicle.timestamp else None,
        ))
    return VehiclePositions(reports=reports, feed_timestamp=_header_timestamp(feed))


class RealtimeClient:
    """Fetches the vehicle positions and trip updates feeds."""

    def __init__(
        self,
        vehicle_positions_url: str,
        trip_updates_url: str,
        upstream: UpstreamClient,
        cache: KeyedCache,
        trip_updates_ttl: float = 20,
    ):
        self.vehicle_positions_url = vehicle_positions_url
        self.trip_updates_url = trip_updates_url
        self.upstream = upstream
        self.cache = cache
        self.trip_updates_ttl = trip_updates_ttl

    def fetch_feed(self, url: str) -> gtfs_realtime_pb2.FeedMessage:
        logger.debug(f"Fetching {url}")
        return decode_feed(self.upstream.get_bytes(url), url)

    def vehicle_positions(self) -> VehiclePositions:
        positions = parse_vehicle_positions(self.fetch_feed(self.vehicle_positions_url))
        logger.debug(f"Parsed {len(positions.reports)} vehicle positions")
        return positions

    def trip_updates(self) -> TripUpdateIndex:
        """Trip updates index, cached for ``trip_updates_ttl`` seconds."""
        return self.cache.get_or_populate(
            TRIP_UPDATES_KEY,
            self.trip_updates_ttl,
            lambda: parse_trip_updates(self.fetch_feed(self.trip_updates_url)),
        )
