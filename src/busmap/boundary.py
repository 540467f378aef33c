"""Resolves the configured municipality boundary from the PDOK directory."""

import logging
from typing import Iterable, List, Optional, Sequence

from .cache import KeyedCache
from .errors import BoundaryNotFound, GeometryMismatch, UpstreamUnavailable
from .geo import is_likely_wgs84
from .models import Boundary
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)


class BoundaryResolver:
    """Finds one named administrative polygon in a versioned, paginated source.

    Version-scoped queries are tried newest first; when none of them yields a
    match the whole collection is paged through by offset, up to
    ``max_scan`` records.
    """

    def __init__(
        self,
        source_url: str,
        upstream: UpstreamClient,
        cache: KeyedCache,
        name: str = "",
        code: str = "",
        versions: Sequence[int] = (2026, 2025, 2024, 2023),
        cache_key: str = "boundary",
        ttl: float = 7 * 24 * 3600,
        page_size: int = 1000,
        max_scan: int = 20000,
        name_key: str = "statnaam",
        code_key: str = "statcode",
        version_key: str = "jaarcode",
    ):
        self.source_url = source_url
        self.upstream = upstream
        self.cache = cache
        self.name = (name or "").strip().lower()
        self.code = (code or "").strip().upper()
        self.versions = list(versions)
        self.cache_key = cache_key
        self.ttl = ttl
        self.page_size = page_size
        self.max_scan = max_scan
        self.name_key = name_key
        self.code_key = code_key
        self.version_key = version_key

    def get_boundary(self) -> Boundary:
        """Return the cached boundary, resolving it when the cache is stale.

        Returns:
            Boundary built from the selected feature.

        Raises:
            BoundaryNotFound: If no feature matches the configured name or code.
            GeometryMismatch: If the matched geometry is missing or projected.
        """
        feature = self.cache.get_or_populate(self.cache_key, self.ttl, self.resolve_feature)
        return Boundary.from_feature(feature, self.name_key, self.code_key, self.version_key)

    def resolve_feature(self) -> dict:
        """Fetch the matching feature and check its coordinates are degrees.

        Returns:
            GeoJSON feature with a Polygon or MultiPolygon geometry.

        Raises:
            BoundaryNotFound: If no feature matches.
            GeometryMismatch: If the geometry is missing or not in EPSG:4326.
        """
        feature = self.fetch_feature()
        if not is_likely_wgs84(feature.get("geometry")):
            logger.error("Boundary geometry is missing or not in EPSG:4326")
            raise GeometryMismatch("Boundary geometry is missing or not in EPSG:4326.")
        properties = feature.get("properties") or {}
        logger.info(
            f"Resolved boundary {properties.get(self.name_key)} "
            f"({properties.get(self.code_key)}, version {properties.get(self.version_key)})"
        )
        return feature

    def matches(self, feature: dict) -> bool:
        """Check a feature against the configured code and name.

        Args:
            feature: GeoJSON feature from the boundary collection.

        Returns:
            True on an exact code match, an exact name or a name containing
            the configured name, case-insensitively.
        """
        properties = feature.get("properties") or {}
        feature_name = str(properties.get(self.name_key) or "").strip().lower()
        feature_code = str(properties.get(self.code_key) or "").strip().upper()

        if self.code and feature_code == self.code:
            return True
        if not self.name:
            return False
        return feature_name == self.name or self.name in feature_name

    def select_best(self, features: Iterable[dict]) -> Optional[dict]:
        """Highest version among matching features, first one on ties."""
        best = None
        best_version = None
        for feature in features:
            if not self.matches(feature):
                continue
            version = self._version_of(feature)
            if best is None or version > best_version:
                best, best_version = feature, version
        return best

    def fetch_feature(self) -> dict:
        """Query each configured version, then scan the whole collection.

        Returns:
            Best matching feature.

        Raises:
            BoundaryNotFound: If neither the version queries nor the scan match.
        """
        base_params = {"f": "json", "limit": self.page_size, "crs": "EPSG:4326"}

        for version in self.versions:
            try:
                data = self.upstream.get_json(self.source_url, params={**base_params, "jaarcode": version})
            except UpstreamUnavailable as e:
                logger.warning(f"Boundary query for version {version} failed: {e}")
                continue
            best = self.select_best(self._features(data))
            if best is not None:
                return best

        logger.info("No version-scoped boundary match, scanning the full collection")
        start_index = 0
        while start_index < self.max_scan:
            try:
                data = self.upstream.get_json(
                    self.source_url, params={**base_params, "startindex": start_index}
                )
            except UpstreamUnavailable as e:
                logger.warning(f"Boundary page at offset {start_index} failed: {e}")
                break
            features = self._features(data)
            best = self.select_best(features)
            if best is not None:
                return best
            if not features:
                break
            start_index += len(features)

        raise BoundaryNotFound(
            f"Unable to find boundary matching name '{self.name}' or code '{self.code}'."
        )

    @staticmethod
    def _features(data) -> List[dict]:
        if not isinstance(data, dict):
            return []
        return [f for f in data.get("features") or [] if isinstance(f, dict)]

    def _version_of(self, feature: dict) -> float:
        value = (feature.get("properties") or {}).get(self.version_key)
        try:
            return float(value or 0)
        except (TypeError, ValueError):
            return 0.0
