"""Tests for geometry helpers and boundary containment."""

import unittest
import sys
from pathlib import Path

# Add src to path so we can import busmap
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from busmap import geo
from busmap.color import color_from_id, hash_string
from busmap.models import Boundary

UNIT_SQUARE = [[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]


def square(min_lon, min_lat, max_lon, max_lat):
    return [
        [min_lon, min_lat],
        [max_lon, min_lat],
        [max_lon, max_lat],
        [min_lon, max_lat],
        [min_lon, min_lat],
    ]


class TestPointInGeometry(unittest.TestCase):
    """Test polygon and multipolygon containment."""

    def test_polygon_interior_and_exterior(self):
        """Test points inside and outside a polygon."""
        geometry = {"type": "Polygon", "coordinates": [UNIT_SQUARE]}
        self.assertTrue(geo.point_in_geometry((0.5, 0.5), geometry))
        self.assertFalse(geo.point_in_geometry((1.5, 0.5), geometry))
        self.assertFalse(geo.point_in_geometry((0.5, -0.1), geometry))

    def test_winding_order_does_not_matter(self):
        """Test containment with a clockwise ring."""
        clockwise = list(reversed(UNIT_SQUARE))
        geometry = {"type": "Polygon", "coordinates": [clockwise]}
        self.assertTrue(geo.point_in_geometry((0.5, 0.5), geometry))

    def test_hole_excludes_points(self):
        """Test that points in a hole are outside."""
        geometry = {
            "type": "Polygon",
            "coordinates": [square(0, 0, 10, 10), square(4, 4, 6, 6)],
        }
        self.assertFalse(geo.point_in_geometry((5, 5), geometry))
        self.assertTrue(geo.point_in_geometry((2, 2), geometry))

    def test_multipolygon_any_member(self):
        """Test containment in any member of a multipolygon."""
        geometry = {
            "type": "MultiPolygon",
            "coordinates": [[square(0, 0, 1, 1)], [square(5, 5, 6, 6)]],
        }
        self.assertTrue(geo.point_in_geometry((5.5, 5.5), geometry))
        self.assertTrue(geo.point_in_geometry((0.5, 0.5), geometry))
        self.assertFalse(geo.point_in_geometry((3, 3), geometry))

    def test_unsupported_geometry_never_contains(self):
        """Test that other geometry types contain nothing."""
        self.assertFalse(geo.point_in_geometry((0, 0), {"type": "Point", "coordinates": [0, 0]}))
        self.assertFalse(geo.point_in_geometry((0, 0), None))
        self.assertFalse(geo.point_in_geometry((0, 0), {}))


class TestBoundingBoxes(unittest.TestCase):
    """Test bounding box computation and checks."""

    def test_compute_bbox_multipolygon(self):
        """Test the bounding box of a multipolygon."""
        geometry = {
            "type": "MultiPolygon",
            "coordinates": [[square(0, 0, 1, 1)], [square(5, 5, 6, 7)]],
        }
        bbox = geo.compute_bbox(geometry)
        self.assertEqual(bbox, geo.BBox(0, 0, 6, 7))

    def test_bbox_is_superset_of_polygon(self):
        """Test that the bounding box covers every contained point."""
        geometry = {"type": "Polygon", "coordinates": [[[0, 0], [4, 0], [2, 3], [0, 0]]]}
        bbox = geo.compute_bbox(geometry)
        for point in [(1, 1), (2, 2.5), (3, 0.5)]:
            if geo.point_in_geometry(point, geometry):
                self.assertTrue(bbox.contains(point))

    def test_compute_bbox_from_coords_skips_non_finite(self):
        """Test that NaN coordinates are ignored."""
        bbox = geo.compute_bbox_from_coords([(52.0, 6.0), (float("nan"), 7.0), (52.5, 6.5)])
        self.assertEqual(bbox, geo.BBox(6.0, 52.0, 6.5, 52.5))

    def test_empty_coords_give_empty_bbox(self):
        """Test the bounding box of no coordinates."""
        self.assertTrue(geo.compute_bbox_from_coords([]).is_empty())

    def test_intersects(self):
        """Test bounding box intersection including touching edges."""
        a = geo.BBox(0, 0, 1, 1)
        self.assertTrue(a.intersects(geo.BBox(0.5, 0.5, 2, 2)))
        self.assertTrue(a.intersects(geo.BBox(1, 1, 2, 2)))
        self.assertFalse(a.intersects(geo.BBox(1.1, 0, 2, 1)))

    def test_expanded(self):
        """Test growing a bounding box by separate margins."""
        bbox = geo.BBox(0, 0, 1, 1).expanded(0.5, 0.25)
        self.assertEqual(bbox, geo.BBox(-0.25, -0.5, 1.25, 1.5))

    def test_is_likely_wgs84(self):
        """Test detection of degree and projected coordinates."""
        self.assertTrue(geo.is_likely_wgs84({"type": "Polygon", "coordinates": [square(6.7, 52.1, 7.0, 52.3)]}))
        projected = {"type": "Polygon", "coordinates": [square(250000, 470000, 260000, 480000)]}
        self.assertFalse(geo.is_likely_wgs84(projected))

    def test_empty_geometry_is_not_wgs84(self):
        """Test that missing or non-polygon geometry is not WGS84."""
        self.assertFalse(geo.is_likely_wgs84(None))
        self.assertFalse(geo.is_likely_wgs84({}))
        self.assertFalse(geo.is_likely_wgs84({"type": "Polygon", "coordinates": []}))
        self.assertFalse(geo.is_likely_wgs84({"type": "Point", "coordinates": [6.9, 52.2]}))


class TestDistances(unittest.TestCase):
    """Test point, segment and polyline distances."""

    def test_point_to_segment_perpendicular(self):
        """Test distance to the interior of a segment."""
        # 0.001 degree of latitude north of an east-west segment at the equator
        d = geo.distance_point_to_segment(0.001, 0.5, 0.0, 0.0, 0.0, 1.0)
        self.assertAlmostEqual(d, 0.001 * geo.METERS_PER_DEGREE, places=3)

    def test_point_to_segment_clamps_to_endpoint(self):
        """Test distance past the end of a segment."""
        d = geo.distance_point_to_segment(0.0, 2.0, 0.0, 0.0, 0.0, 1.0)
        self.assertAlmostEqual(d, geo.METERS_PER_DEGREE, delta=1.0)

    def test_degenerate_segment(self):
        """Test distance to a zero-length segment."""
        d = geo.distance_point_to_segment(0.001, 0.0, 0.0, 0.0, 0.0, 0.0)
        self.assertAlmostEqual(d, 0.001 * geo.METERS_PER_DEGREE, places=3)

    def test_polyline_too_short_is_infinite(self):
        """Test polylines with fewer than two points."""
        self.assertEqual(geo.distance_point_to_polyline(0, 0, []), geo.INFINITE_DISTANCE)
        self.assertEqual(geo.distance_point_to_polyline(0, 0, [(0, 0)]), geo.INFINITE_DISTANCE)

    def test_polyline_takes_minimum_over_segments(self):
        """Test distance to the nearest segment of a polyline."""
        coords = [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0)]
        d = geo.distance_point_to_polyline(0.5, 1.0005, coords)
        self.assertLess(d, 100)

    def test_distance_between_points(self):
        """Test the distance between two points."""
        self.assertAlmostEqual(geo.distance_between_points(0, 0, 0.001, 0), 111.32, places=2)

    def test_distance_to_same_point_is_zero(self):
        """Test that a point is zero meters from itself."""
        self.assertEqual(geo.distance_between_points(52.22, 6.89, 52.22, 6.89), 0.0)

    def test_distance_is_symmetric(self):
        """Test that distance does not depend on argument order."""
        a = (52.2215, 6.8937)
        b = (52.2389, 6.8501)
        self.assertEqual(
            geo.distance_between_points(a[0], a[1], b[0], b[1]),
            geo.distance_between_points(b[0], b[1], a[0], a[1]),
        )

    def test_non_finite_input_is_infinitely_far(self):
        """Test NaN and infinite inputs."""
        for bad in (float("nan"), float("inf"), float("-inf")):
            self.assertEqual(geo.distance_between_points(bad, 0, 0, 0), geo.INFINITE_DISTANCE)
            self.assertEqual(geo.distance_between_points(0, 0, 0, bad), geo.INFINITE_DISTANCE)

    def test_meters_to_degrees(self):
        """Test meter to degree conversion with and without latitude."""
        dlat, dlon = geo.meters_to_degrees(geo.METERS_PER_DEGREE)
        self.assertAlmostEqual(dlat, 1.0)
        self.assertAlmostEqual(dlon, 1.0)
        dlat, dlon = geo.meters_to_degrees(geo.METERS_PER_DEGREE, latitude=60.0)
        self.assertAlmostEqual(dlat, 1.0)
        self.assertAlmostEqual(dlon, 2.0, places=6)


class TestBoundary(unittest.TestCase):
    """Test Boundary model containment against a unit square."""

    def setUp(self):
        self.boundary = Boundary.from_feature({
            "type": "Feature",
            "properties": {"statnaam": "Square", "statcode": "GM0001", "jaarcode": "2025"},
            "geometry": {"type": "Polygon", "coordinates": [UNIT_SQUARE]},
        })

    def test_from_feature(self):
        """Test building a Boundary from a GeoJSON feature."""
        self.assertEqual(self.boundary.name, "Square")
        self.assertEqual(self.boundary.code, "GM0001")
        self.assertEqual(self.boundary.version, 2025)

    def test_contains_uses_lat_lon_order(self):
        """Test that contains takes latitude first."""
        self.assertTrue(self.boundary.contains(0.5, 0.5))
        self.assertFalse(self.boundary.contains(0.5, 2.0))
        self.assertFalse(self.boundary.contains(2.0, 0.5))

    def test_lower_left_corner_is_inside(self):
        """Test containment of a polygon vertex."""
        self.assertTrue(self.boundary.contains(0.0, 0.0))

    def test_to_feature_round_trips_properties(self):
        """Test serializing a Boundary back to a feature."""
        feature = self.boundary.to_feature()
        self.assertEqual(feature["properties"]["statcode"], "GM0001")
        self.assertEqual(feature["geometry"]["type"], "Polygon")


class TestColor(unittest.TestCase):
    """Test deterministic route colors."""

    def test_color_is_deterministic(self):
        """Test that a route id always gets the same color."""
        self.assertEqual(color_from_id("R1"), color_from_id("R1"))
        self.assertRegex(color_from_id("R1"), r"^hsl\(\d{1,3}, 70%, 45%\)$")

    def test_hash_matches_java_string_hash(self):
        """Test the 31-multiplier string hash."""
        # "a" -> 97, "ab" -> 97 * 31 + 98
        self.assertEqual(hash_string("a"), 97)
        self.assertEqual(hash_string("ab"), 3105)
        self.assertEqual(color_from_id("ab"), f"hsl({3105 % 360}, 70%, 45%)")

    def test_hash_wraps_to_32_bits(self):
        """Test that the hash stays within 32 bits."""
        self.assertLess(hash_string("a much longer route identifier 12345"), 2 ** 31 + 1)


if __name__ == "__main__":
    unittest.main()
