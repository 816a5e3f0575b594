"""Domain model - entities and value objects.

Following the same split as the rest of the codebase:
- Entities (Root, Link) have identity assigned by the store and mutate over time
- Value objects (IndexEntry) are immutable projections
- Pydantic dataclasses validate at construction

A Link refers to its Root by URL only. Looking up a root's links is a store
query, never an object graph walk.
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from typing import Annotated
from urllib.parse import unquote, urlsplit

from pydantic import Field
from pydantic.dataclasses import dataclass


class Outcome(str, Enum):
    """Classification of a single reachability probe."""

    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"

    @property
    def is_reachable(self) -> bool:
        return self is Outcome.REACHABLE


class CreateResult(str, Enum):
    """Result of ``create_root_if_absent``; duplicates are rejected, not raised."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass
class Root:
    """A tracked open-directory root URL.

    ``unreachable_streak`` counts consecutive failed observations. It only ever
    grows by one or resets to zero.
    """

    url: Annotated[str, Field(min_length=1)]
    unreachable_streak: int = Field(default=0, ge=0)
    id: str | None = None


@dataclass
class Link:
    """A file discovered under a root.

    ``unreachable_streak`` is ``None`` for links that were never probed
    individually; their liveness follows the parent root.
    """

    url: Annotated[str, Field(min_length=1)]
    root_url: Annotated[str, Field(min_length=1)]
    unreachable_streak: int | None = Field(default=None, ge=0)
    id: str | None = None

    @property
    def streak(self) -> int:
        return self.unreachable_streak or 0


def filename_from_url(url: str) -> str:
    """Return the percent-decoded last path segment of ``url``."""
    path = urlsplit(url).path.rstrip("/")
    return unquote(path.rsplit("/", 1)[-1]) if path else ""


def extension_from_filename(filename: str) -> str | None:
    suffix = PurePosixPath(filename).suffix if filename else ""
    return suffix[1:] if len(suffix) > 1 else None


@dataclass(frozen=True)
class IndexEntry:
    """Search index projection of a Link.

    The id travels as the bulk ``_id`` and is left out of the document body.
    """

    id: Annotated[str, Field(min_length=1)]
    url: str
    filename: str
    extension: str | None = None

    @classmethod
    def from_link(cls, link: Link) -> IndexEntry:
        if link.id is None:
            raise ValueError(f"Link {link.url} has no store id and cannot be indexed")
        filename = filename_from_url(link.url)
        return cls(
            id=link.id,
            url=link.url,
            filename=filename,
            extension=extension_from_filename(filename),
        )

    def to_document(self) -> dict[str, str | None]:
        return {"url": self.url, "filename": self.filename, "extension": self.extension}
