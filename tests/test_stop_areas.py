"""Tests for stop-area resolution."""

import unittest
import sys
from pathlib import Path
from unittest.mock import MagicMock

# Add src to path so we can import busmap
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from busmap.cache import MemoryCache
from busmap.errors import UpstreamUnavailable
from busmap.geo import BBox, distance_between_points
from busmap.gtfs_loader import GTFSLoader, read_csv_text
from busmap.models import Boundary, StopAreaCandidate
from busmap.ovapi_client import OvapiClient
from busmap.stop_areas import (
    StopAreaIndex,
    build_exact_mapping,
    filter_candidates,
    find_nearest_stop_area,
    normalize_stop_area,
    parse_stop_area_directory,
)

BOUNDARY = Boundary(
    name="Enschede",
    code="GM0153",
    version=2025,
    geometry={"type": "Polygon", "coordinates": [[[6.8, 52.1], [7.0, 52.1], [7.0, 52.3], [6.8, 52.3], [6.8, 52.1]]]},
)

STOPS_TXT = """stop_id,stop_name,stop_lat,stop_lon,location_type,parent_station
s1,Centraal,52.2220,6.8900,0,stoparea:ESD001
s2,Markt,52.2200,6.8950,0,ESD002
s3,Zonder,52.2100,6.8800,0,
"""

DIRECTORY = {
    "NEAR": {"Latitude": 52.2101, "Longitude": 6.8801, "TimingPointName": "Zonder", "TimingPointTown": "Enschede"},
    "CLOSER_TO_S1": {"Latitude": "52.2220", "Longitude": "6.8900"},
    "FAR_AWAY": {"Latitude": 53.5, "Longitude": 5.0},
    "BROKEN": {"Latitude": "n/a", "Longitude": 6.88},
}


class FakeClock:

    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestStopAreaHelpers(unittest.TestCase):
    """Test mapping and nearest-neighbor helpers."""

    def test_normalize_stop_area(self):
        """Test stripping the stoparea prefix."""
        self.assertEqual(normalize_stop_area("stoparea:ESD001"), "ESD001")
        self.assertEqual(normalize_stop_area("StopArea:ESD001"), "ESD001")
        self.assertEqual(normalize_stop_area("ESD002"), "ESD002")
        self.assertIsNone(normalize_stop_area(""))
        self.assertIsNone(normalize_stop_area("stoparea:"))

    def test_exact_mapping_from_parent_station(self):
        """Test mapping stops through parent_station."""
        mapping = build_exact_mapping(read_csv_text(STOPS_TXT))
        self.assertEqual(mapping, {"s1": "ESD001", "s2": "ESD002"})

    def test_exact_mapping_without_parent_column(self):
        """Test a stops table without parent_station."""
        self.assertEqual(build_exact_mapping(read_csv_text("stop_id,stop_name\ns1,x\n")), {})

    def test_directory_drops_non_finite_entries(self):
        """Test that candidates without coordinates are dropped."""
        codes = [c.code for c in parse_stop_area_directory(DIRECTORY)]
        self.assertEqual(codes, ["NEAR", "CLOSER_TO_S1", "FAR_AWAY"])

    def test_filter_candidates_to_expanded_bbox(self):
        """Test filtering candidates to the boundary box."""
        candidates = parse_stop_area_directory(DIRECTORY)
        kept = filter_candidates(candidates, BOUNDARY.bbox(), 150)
        self.assertEqual({c.code for c in kept}, {"NEAR", "CLOSER_TO_S1"})

    def test_filter_candidates_includes_radius_margin(self):
        """Test that the match radius widens the box."""
        just_outside = StopAreaCandidate(code="EDGE", latitude=52.3005, longitude=6.9)
        kept = filter_candidates([just_outside], BBox(6.8, 52.1, 7.0, 52.3), 150)
        self.assertEqual(len(kept), 1)

    def test_nearest_candidate(self):
        """Test picking the nearest candidate."""
        candidates = parse_stop_area_directory(DIRECTORY)
        match = find_nearest_stop_area(52.2100, 6.8800, candidates, 150)
        self.assertEqual(match.code, "NEAR")
        self.assertFalse(match.approximate)
        self.assertLess(match.distance_m, 20)

    def test_far_candidate_is_approximate(self):
        """Test flagging matches beyond the radius."""
        candidates = [StopAreaCandidate(code="A", latitude=52.22, longitude=6.89)]
        match = find_nearest_stop_area(52.21, 6.89, candidates, 150)
        self.assertTrue(match.approximate)
        self.assertGreater(match.distance_m, 150)

    def test_distance_equal_to_radius_is_not_approximate(self):
        """Test the radius boundary itself."""
        candidates = [StopAreaCandidate(code="A", latitude=52.2, longitude=6.9)]
        radius = distance_between_points(52.201, 6.9, 52.2, 6.9)
        match = find_nearest_stop_area(52.201, 6.9, candidates, radius)
        self.assertFalse(match.approximate)

    def test_empty_candidates(self):
        """Test nearest lookup with no candidates."""
        self.assertIsNone(find_nearest_stop_area(52.2, 6.9, [], 150))


class TestStopAreaIndex(unittest.TestCase):
    """Test the persisted index and its refresh policy."""

    def setUp(self):
        self.clock = FakeClock()
        self.cache = MemoryCache(clock=self.clock)
        self.gtfs_loader = MagicMock(spec=GTFSLoader)
        self.gtfs_loader.load_stops.return_value = read_csv_text(STOPS_TXT)
        self.ovapi = MagicMock(spec=OvapiClient)
        self.ovapi.stop_area_directory.return_value = DIRECTORY
        self.index = StopAreaIndex(
            self.gtfs_loader,
            self.ovapi,
            self.cache,
            radius_m=150,
            ttl=7 * 86400,
            candidates_ttl=86400,
        )

    def test_exact_mapping_wins_over_closer_candidate(self):
        """Test that an exact mapping beats proximity."""
        match = self.index.resolve("s1", 52.2220, 6.8900, BOUNDARY)
        self.assertEqual(match.code, "ESD001")
        self.assertEqual(match.distance_m, 0)
        self.assertFalse(match.approximate)

    def test_unmapped_stop_uses_nearest_candidate(self):
        """Test proximity matching for unmapped stops."""
        match = self.index.resolve("s3", 52.2100, 6.8800, BOUNDARY)
        self.assertEqual(match.code, "NEAR")

    def test_unmapped_stop_without_coordinates(self):
        """Test an unmapped stop with no position."""
        self.assertIsNone(self.index.resolve("s3", None, None, BOUNDARY))

    def test_index_is_reused_within_ttl(self):
        """Test that the index is reused while fresh."""
        self.index.resolve("s1", 52.2220, 6.8900, BOUNDARY)
        self.clock.now += 3600
        self.index.resolve("s3", 52.2100, 6.8800, BOUNDARY)
        self.gtfs_loader.load_stops.assert_called_once()
        self.ovapi.stop_area_directory.assert_called_once()

    def test_candidate_refresh_keeps_exact_mapping(self):
        """Test refreshing candidates without losing mappings."""
        self.index.load(BOUNDARY)
        self.gtfs_loader.load_stops.side_effect = AssertionError("mapping must not be rebuilt")
        self.ovapi.stop_area_directory.return_value = {"NEW": {"Latitude": 52.21, "Longitude": 6.88}}
        self.clock.now += 86400 + 1

        data = self.index.load(BOUNDARY)

        self.assertEqual(data.by_stop_id["s1"], "ESD001")
        self.assertEqual([c.code for c in data.candidates], ["NEW"])
        self.assertEqual(data.mapping_updated_at, 1_000_000.0)
        self.assertEqual(data.candidates_updated_at, self.clock.now)

    def test_directory_failure_keeps_previous_candidates(self):
        """Test keeping old candidates when OVapi fails."""
        self.index.load(BOUNDARY)
        self.ovapi.stop_area_directory.side_effect = UpstreamUnavailable("down")
        self.clock.now += 86400 + 1

        with self.assertLogs("busmap.stop_areas", level="WARNING"):
            data = self.index.load(BOUNDARY)

        self.assertEqual({c.code for c in data.candidates}, {"NEAR", "CLOSER_TO_S1"})

    def test_mapping_rebuilt_after_ttl(self):
        """Test rebuilding the mapping after the TTL."""
        self.index.load(BOUNDARY)
        self.clock.now += 7 * 86400
        self.index.load(BOUNDARY)
        self.assertEqual(self.gtfs_loader.load_stops.call_count, 2)

    def test_malformed_cache_is_rebuilt(self):
        """Test rebuilding from a malformed cache file."""
        self.cache.store(self.index.cache_key, {"by_stop_id": "oops"})
        with self.assertLogs("busmap.stop_areas", level="WARNING"):
            data = self.index.load(BOUNDARY)
        self.assertIn("s1", data.by_stop_id)


if __name__ == "__main__":
    unittest.main()
