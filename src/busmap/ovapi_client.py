"""Client for the OVapi polling JSON API (v0.ovapi.nl).

Only transport lives here; the consumers project the loosely typed payloads
into models.
"""

import logging
from typing import Any, Dict, Iterable, List
from urllib.parse import quote

from .upstream import UpstreamClient

logger = logging.getLogger(__name__)


def batched(items: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class OvapiClient:
    """Fetches line, actuals, stop area and departure payloads."""

    def __init__(self, base_url: str, upstream: UpstreamClient, user_agent: str = "busmap/0.1"):
        self.base_url = str(base_url or "").rstrip("/")
        self.upstream = upstream
        self.headers = {
            "User-Agent": user_agent,
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
        }

    def _get(self, path: str) -> Any:
        return self.upstream.get_json(f"{self.base_url}{path}", headers=self.headers)

    def line_directory(self) -> Dict[str, Any]:
        """All lines keyed by line key (``OWNER_PLANNINGNUMBER_DIRECTION``)."""
        data = self._get("/line/")
        return data if isinstance(data, dict) else {}

    def line_actuals(self, line_keys: List[str], batch_size: int = 20) -> Dict[str, Any]:
        """Live journeys for ``line_keys``, requested ``batch_size`` keys at a time."""
        merged: Dict[str, Any] = {}
        for batch in batched(list(line_keys), batch_size):
            joined = ",".join(quote(key, safe="") for key in batch)
            data = self._get(f"/line/{joined}")
            if isinstance(data, dict):
                merged.update(data)
        logger.debug(f"Fetched actuals for {len(line_keys)} lines")
        return merged

    def stop_area_directory(self) -> Dict[str, Any]:
        data = self._get("/stopareacode/")
        return data if isinstance(data, dict) else {}

    def stop_area_departures(self, code: str) -> Any:
        return self._get(f"/stopareacode/{quote(code, safe='')}/departures")
