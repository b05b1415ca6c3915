"""Exception hierarchy shared by the dashboard layers."""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for every failure the dashboard reports to a caller."""


class DataSourceConnectionError(DashboardError, ConnectionError):
    """Raised when the ERP database cannot be reached."""


class QueryError(DashboardError):
    """Raised when the ERP database rejects or fails a query."""


class PersistenceError(DashboardError):
    """Raised when the inventory snapshot file cannot be written or read."""


class SnapshotParseError(PersistenceError):
    """Raised when the inventory snapshot file exists but is not a valid snapshot."""


class InvalidFilterError(DashboardError, ValueError):
    """Raised when a report filter supplied by a request is malformed."""


__all__ = [
    "DashboardError",
    "DataSourceConnectionError",
    "QueryError",
    "PersistenceError",
    "SnapshotParseError",
    "InvalidFilterError",
]
