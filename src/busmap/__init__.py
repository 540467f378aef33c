"""BusMap - boundary-constrained bus stops, lines, vehicles and departures."""

__version__ = "0.1.0"

from .config import Settings
from .errors import BoundaryNotFound, DataMissing, GeometryMismatch, TransitDataError, UpstreamUnavailable
from .models import Boundary, Departure, Line, LineSet, Stop, StopAreaMatch, StopSet, Vehicle, VehicleSnapshot
from .pipeline import TransitPipeline

__all__ = [
    "TransitPipeline",
    "Settings",
    "Boundary",
    "Stop",
    "StopSet",
    "Line",
    "LineSet",
    "Vehicle",
    "VehicleSnapshot",
    "StopAreaMatch",
    "Departure",
    "TransitDataError",
    "UpstreamUnavailable",
    "DataMissing",
    "GeometryMismatch",
    "BoundaryNotFound",
]
