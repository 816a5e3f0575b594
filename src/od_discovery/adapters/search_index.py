"""Search index abstraction.

A search index accepts one bulk request at a time. Each request carries many
add/delete actions and either succeeds as a whole or raises
``IndexSyncError``; chunking and failure isolation live in ``IndexSync``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from ..domain.model import IndexEntry
from ..errors import IndexSyncError


class BulkOp(str, Enum):
    INDEX = "index"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class BulkAction:
    """One add or delete line inside a bulk request."""

    op: BulkOp
    id: str
    entry: IndexEntry | None = None

    @classmethod
    def index(cls, entry: IndexEntry) -> BulkAction:
        return cls(op=BulkOp.INDEX, id=entry.id, entry=entry)

    @classmethod
    def delete(cls, entry_id: str) -> BulkAction:
        return cls(op=BulkOp.DELETE, id=entry_id)


class AbstractSearchIndex(ABC):
    @abstractmethod
    async def bulk(self, actions: Sequence[BulkAction]) -> None:
        """Submit ``actions`` as a single wire request.

        Raises:
            IndexSyncError: the request was rejected or never completed
        """
        raise NotImplementedError

    async def close(self) -> None:
        return


class FakeSearchIndex(AbstractSearchIndex):
    """In-memory index for testing.

    Keeps the visible documents in ``documents`` and every submitted request in
    ``requests``. Request numbers listed in ``fail_requests`` (1-based) raise.
    """

    def __init__(self, *, fail_requests: set[int] | None = None):
        self.documents: dict[str, dict[str, str | None]] = {}
        self.requests: list[list[BulkAction]] = []
        self.fail_requests = set(fail_requests or ())

    async def bulk(self, actions: Sequence[BulkAction]) -> None:
        self.requests.append(list(actions))
        if len(self.requests) in self.fail_requests:
            raise IndexSyncError(f"Simulated bulk failure on request {len(self.requests)}", status_code=503)
        for action in actions:
            if action.op is BulkOp.INDEX and action.entry is not None:
                self.documents[action.id] = action.entry.to_document()
            elif action.op is BulkOp.DELETE:
                self.documents.pop(action.id, None)

    def requests_for(self, op: BulkOp) -> list[list[BulkAction]]:
        return [request for request in self.requests if request and request[0].op is op]
