"""Upcoming departures of a stop area from OVapi."""

import logging
from typing import Any, List, Optional

from .cache import KeyedCache
from .errors import DataMissing
from .models import Departure, StopAreaDepartures
from .normalize import normalize_line_number, parse_timestamp
from .ovapi_client import OvapiClient

logger = logging.getLogger(__name__)

DEPARTURES_KEY_PREFIX = "departures:"


def pick_stop_area_payload(data: Any, code: str) -> Optional[dict]:
    """The entry for ``code``: exact key, lower-case key, else the first entry."""
    if not isinstance(data, dict) or not data:
        return None
    if data.get(code):
        return data[code]
    lower = code.lower()
    if data.get(lower):
        return data[lower]
    return next(iter(data.values()))


def _first(mapping: dict, *keys: str) -> Any:
    for key in keys:
        if mapping.get(key):
            return mapping[key]
    return None


def parse_pass(passing: dict, timing_point_name: Optional[str]) -> Departure:
    journey = passing.get("JourneyNumber")
    return Departure(
        line_number=normalize_line_number(_first(passing, "LinePublicNumber", "LinePlanningNumber")),
        destination=_first(passing, "DestinationName50", "DestinationName", "LineName"),
        timing_point_name=timing_point_name,
        journey_number=str(journey) if journey else None,
        stop_status=passing.get("TripStopStatus") or None,
        actual_time=parse_timestamp(_first(passing, "ActualDepartureTime", "ActualArrivalTime")),
        expected_time=parse_timestamp(_first(passing, "ExpectedDepartureTime", "ExpectedArrivalTime")),
        target_time=parse_timestamp(_first(passing, "TargetDepartureTime", "TargetArrivalTime")),
    )


def sort_departures(departures: List[Departure]) -> List[Departure]:
    """Ascending by best available time; untimed entries go last."""
    return sorted(departures, key=lambda d: (d.time is None, d.time or 0))


def parse_departures(data: Any, code: str) -> StopAreaDepartures:
    payload = pick_stop_area_payload(data, code)
    departures: List[Departure] = []
    if isinstance(payload, dict):
        for timing_point in payload.values():
            if not isinstance(timing_point, dict):
                continue
            stop = timing_point.get("Stop") if isinstance(timing_point.get("Stop"), dict) else {}
            name = (
                _first(timing_point, "TimingPointName", "TimingPointName50", "TimingPointCode")
                or _first(stop, "TimingPointName", "TimingPointName50", "TimingPointCode")
            )
            passes = timing_point.get("Passes") or timing_point.get("Departures") or {}
            if not isinstance(passes, dict):
                continue
            for passing in passes.values():
                if isinstance(passing, dict):
                    departures.append(parse_pass(passing, name))
    return StopAreaDepartures(stop_area_code=code, departures=sort_departures(departures))


class DeparturesProvider:
    """Per stop-area departure boards, cached for a short time."""

    def __init__(self, ovapi: OvapiClient, cache: KeyedCache, ttl: float = 20):
        self.ovapi = ovapi
        self.cache = cache
        self.ttl = ttl

    def get_departures(self, stop_area_code: str) -> StopAreaDepartures:
        """Departure board for one stop area.

        Boards of other stop areas that outlived the TTL are evicted whenever
        a new board is fetched, so the cache stays bounded by recent traffic.

        Args:
            stop_area_code: OVapi stop area code.

        Returns:
            The board with departures sorted by best available time.

        Raises:
            DataMissing: If the code is empty.
            UpstreamUnavailable: If OVapi cannot be reached.
        """
        code = str(stop_area_code or "").strip()
        if not code:
            raise DataMissing("Missing stop area code.")
        return self.cache.get_or_populate(DEPARTURES_KEY_PREFIX + code, self.ttl, lambda: self._fetch(code))

    def _fetch(self, code: str) -> StopAreaDepartures:
        self.cache.evict_expired(DEPARTURES_KEY_PREFIX, self.ttl)
        return parse_departures(self.ovapi.stop_area_departures(code), code)
