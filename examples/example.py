"""Example usage of TransitPipeline."""

import logging
import sys
from datetime import datetime
from pathlib import Path

# Add src to path so we can import busmap
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from busmap import DataMissing, Settings, TransitDataError, TransitPipeline

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def _fmt_time(timestamp):
    if not timestamp:
        return "--:--"
    return datetime.fromtimestamp(timestamp).strftime("%H:%M")


def print_overview(pipeline: TransitPipeline):
    """Print the boundary, stop and line counts and the live vehicles."""
    boundary = pipeline.get_boundary()
    stops = pipeline.get_stops()
    lines = pipeline.get_lines()
    snapshot = pipeline.get_vehicles()

    print(f"\n{'='*70}")
    print(f"Boundary: {boundary.name} ({boundary.code}, {boundary.version})")
    print(f"{'='*70}\n")
    print(f"Stops: {len(stops.stops)} (source: {stops.source})")
    print(f"Line segments: {len(lines.lines)} (source: {lines.source})")
    print(f"Vehicles: {len(snapshot.vehicles)} (source: {snapshot.source}, feed time {_fmt_time(snapshot.feed_timestamp)})")
    print("-" * 70)
    for vehicle in snapshot.vehicles:
        marker = "~" if vehicle.line_inferred else " "
        print(f" {marker}{vehicle.line_number or '?':>5}  {vehicle.vehicle_id:<30} {vehicle.latitude:.5f}, {vehicle.longitude:.5f}")
    print()


def print_departures(pipeline: TransitPipeline, stop_id: str):
    """Fetch and display departures for a stop."""
    try:
        board = pipeline.get_stop_departures(stop_id)
    except DataMissing as e:
        print(f"Error: {e}")
        return

    note = f" (approximate, {board.distance_m} m)" if board.approximate else ""
    print(f"\nStop {board.stop_id} -> stop area {board.stop_area_code}{note}")
    print("-" * 70)
    if not board.departures:
        print("  No departures found")
    for departure in board.departures[:15]:
        print(f"  {_fmt_time(departure.time)}  {departure.line_number or '?':>4}  {departure.destination or ''}")
    print()


if __name__ == "__main__":
    try:
        pipeline = TransitPipeline(Settings.from_env())
        if len(sys.argv) > 1:
            print_departures(pipeline, sys.argv[1])
        else:
            print_overview(pipeline)
    except TransitDataError as e:
        logger.error(f"Failed to fetch data: {e}", exc_info=True)
        print(f"Error: {e}")
        sys.exit(1)
