"""Open-directory discovery: liveness reconciliation and search index sync."""

__version__ = "0.4.0"
