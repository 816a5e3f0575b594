"""Adapters layer - store and search index implementations.

Abstracts persistence and the downstream index behind small contracts so the
reconciler can run against fakes in tests.
"""

from .datastore import AbstractDatastore, FakeDatastore
from .elastic_index import ElasticsearchIndex
from .search_index import AbstractSearchIndex, BulkAction, FakeSearchIndex
from .sqlite_datastore import SqliteDatastore


__all__ = [
    "AbstractDatastore",
    "AbstractSearchIndex",
    "BulkAction",
    "ElasticsearchIndex",
    "FakeDatastore",
    "FakeSearchIndex",
    "SqliteDatastore",
]
