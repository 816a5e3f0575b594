"""Elasticsearch bulk adapter.

Each call to ``bulk`` becomes exactly one ``PUT /{index}/_bulk`` request with
an NDJSON body:

    {"index": {"_id": "42"}}
    {"url": "...", "filename": "...", "extension": "..."}
    {"delete": {"_id": "43"}}

Indexing by ``_id`` overwrites and deleting a missing id is a no-op, so
replaying a request leaves the index unchanged.
"""

from __future__ import annotations

from collections.abc import Sequence
import logging

import httpx
import orjson

from ..errors import IndexSyncError
from .search_index import AbstractSearchIndex, BulkAction, BulkOp


logger = logging.getLogger(__name__)

MAX_LOGGED_BODY = 2000


def encode_bulk_body(actions: Sequence[BulkAction]) -> bytes:
    """Serialize actions into the newline-delimited bulk format."""
    lines: list[bytes] = []
    for action in actions:
        if action.op is BulkOp.DELETE:
            lines.append(orjson.dumps({"delete": {"_id": action.id}}))
        else:
            if action.entry is None:
                raise ValueError(f"Index action for {action.id} carries no entry")
            lines.append(orjson.dumps({"index": {"_id": action.id}}))
            lines.append(orjson.dumps(action.entry.to_document()))
    return b"\n".join(lines) + b"\n"


class ElasticsearchIndex(AbstractSearchIndex):
    """Search index backed by an Elasticsearch ``links`` index."""

    def __init__(
        self,
        base_url: str,
        *,
        index_name: str = "links",
        username: str = "elastic",
        password: str = "",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.index_name = index_name
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            auth=httpx.BasicAuth(username, password) if password else None,
        )

    @property
    def bulk_url(self) -> str:
        return f"{self.base_url}/{self.index_name}/_bulk"

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def bulk(self, actions: Sequence[BulkAction]) -> None:
        if not actions:
            return
        body = encode_bulk_body(actions)
        try:
            response = await self.client.put(
                self.bulk_url,
                content=body,
                headers={"Content-Type": "application/x-ndjson"},
            )
        except httpx.HTTPError as exc:
            raise IndexSyncError(f"Bulk request to {self.bulk_url} failed: {exc}") from exc

        if not response.is_success:
            logger.error(
                "Got non-success status code %d, response was\n %s",
                response.status_code,
                response.text[:MAX_LOGGED_BODY],
            )
            raise IndexSyncError(
                f"Bulk request rejected with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = orjson.loads(response.content) if response.content else {}
        except orjson.JSONDecodeError as exc:
            raise IndexSyncError(f"Bulk response was not JSON: {exc}", status_code=response.status_code) from exc

        if isinstance(payload, dict) and payload.get("errors"):
            failed = [
                item for item in payload.get("items", []) if _item_status(item) >= 300 and not _is_missing_delete(item)
            ]
            if failed:
                logger.error("Bulk request had %d failed items, first: %s", len(failed), failed[0])
                raise IndexSyncError(
                    f"{len(failed)} of {len(actions)} bulk items failed",
                    status_code=response.status_code,
                )


def _item_status(item: dict) -> int:
    for result in item.values():
        if isinstance(result, dict):
            return int(result.get("status", 200))
    return 200


def _is_missing_delete(item: dict) -> bool:
    # Deleting an id that is already gone is the idempotent case, not a failure.
    result = item.get("delete")
    return isinstance(result, dict) and result.get("status") == 404
