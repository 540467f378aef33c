"""Exceptions raised by the BusMap pipeline."""

from typing import Optional


class TransitDataError(Exception):
    """Base class for every pipeline failure."""


class UpstreamUnavailable(TransitDataError):
    """An external fetch failed or returned a non-success status."""

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class DataMissing(TransitDataError):
    """A required table, field or record is absent from an otherwise valid response."""


class GeometryMismatch(TransitDataError):
    """The resolved boundary geometry is not in WGS84 coordinates."""


class BoundaryNotFound(TransitDataError):
    """No boundary matched the configured name or code."""
