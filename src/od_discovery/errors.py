"""Exception hierarchy shared across adapters and services."""

from __future__ import annotations


class DiscoveryError(Exception):
    """Base class for all od_discovery failures."""


class DatastoreError(DiscoveryError):
    """A read or write against the persistent store failed."""


class IndexSyncError(DiscoveryError):
    """A bulk request against the search index was rejected or never completed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LivenessCheckError(DiscoveryError):
    """Collecting probe outcomes failed as a whole; none of the batch is usable."""
