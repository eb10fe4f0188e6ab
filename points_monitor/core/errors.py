"""
Error taxonomy for points monitoring.

Every failure the engine can surface is one of these types, so callers can
handle each category on its own terms.
"""

from typing import Optional


class PointsMonitorError(Exception):
    """Base class for all points monitor failures."""


class InvalidInput(PointsMonitorError, ValueError):
    """Malformed caller input, rejected before any I/O."""


class TransportFailure(PointsMonitorError):
    """The remote feed was unreachable or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseFailure(PointsMonitorError):
    """The remote feed answered with a body that does not match the expected shape."""


class StoreFailure(PointsMonitorError):
    """A persistence operation failed."""
