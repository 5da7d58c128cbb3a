"""Storage gateway abstraction.

Provides :class:`StorageGateway` (abstract base), :class:`DocumentCursor`,
:class:`FindOptions` and :class:`IndexSpec` (Pydantic models), and
:func:`span_indexes`, the index set every span collection carries.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, AsyncIterator, Mapping

from pydantic import BaseModel, Field

from mongo_spanstore.core.constants import SpanField

Filter = Mapping[str, Any]
Document = dict[str, Any]


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class FindOptions(BaseModel):
    """Options forwarded with a ``find`` call.

    Attributes:
        projection: Inclusion/exclusion map, e.g. ``{"traceID": 1, "_id": 0}``.
        sort: Ordered ``(field, direction)`` pairs; direction is 1 or -1.
        limit: Maximum documents returned; 0 means unlimited.
        max_time: Server-side execution time limit.
    """

    projection: dict[str, int] | None = None
    sort: list[tuple[str, int]] = Field(default_factory=list)
    limit: int = Field(default=0, ge=0)
    max_time: timedelta | None = None


class IndexSpec(BaseModel):
    name: str
    keys: list[tuple[str, int]]
    expire_after: timedelta | None = None


def span_indexes(span_ttl: timedelta) -> list[IndexSpec]:
    """Return the indexes a span collection needs.

    A TTL index on the start time is the only deletion mechanism; the
    compound indexes serve service/operation and tag searches.
    """
    return [
        IndexSpec(
            name="startTime_ttl",
            keys=[(SpanField.START_TIME, 1)],
            expire_after=span_ttl,
        ),
        IndexSpec(name="traceID", keys=[(SpanField.TRACE_ID, 1)]),
        IndexSpec(
            name="service_operation_startTime",
            keys=[
                (SpanField.SERVICE_NAME, 1),
                (SpanField.OPERATION_NAME, 1),
                (SpanField.START_TIME, -1),
            ],
        ),
        IndexSpec(
            name="tag_service_operation_startTime",
            keys=[
                (SpanField.TAG_KEY, 1),
                (SpanField.TAG_VALUE, 1),
                (SpanField.SERVICE_NAME, 1),
                (SpanField.OPERATION_NAME, 1),
                (SpanField.START_TIME, -1),
            ],
        ),
    ]


# ---------------------------------------------------------------------------
# Abstract bases
# ---------------------------------------------------------------------------


class DocumentCursor(ABC):
    """Lazy sequence of documents returned by :meth:`StorageGateway.find`.

    Iterate with ``async for``.  A cursor holds store-side resources until
    :meth:`close` is called; use ``async with`` so that happens on every
    exit path.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[Document]: ...

    @abstractmethod
    async def close(self) -> None:
        """Release the cursor (idempotent)."""

    async def __aenter__(self) -> DocumentCursor:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()


class StorageGateway(ABC):
    """Abstract base for span document stores.

    Subclasses must implement :meth:`connect`, :meth:`close`,
    :meth:`distinct`, :meth:`find`, :meth:`insert_one` and
    :meth:`ensure_indexes`.  Implementations forward to the store and surface
    its failures; they hold no query logic.  The class also supports the
    async context manager protocol (``async with``).
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection / connection pool."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection / connection pool."""

    @abstractmethod
    async def distinct(
        self, field: str, filter: Filter, *, max_time: timedelta | None = None
    ) -> list[Any]:
        """Return the distinct values of *field* across documents matching *filter*."""

    @abstractmethod
    async def find(
        self, filter: Filter, options: FindOptions | None = None
    ) -> DocumentCursor:
        """Return a cursor over documents matching *filter*."""

    @abstractmethod
    async def insert_one(self, document: Document) -> None:
        """Insert a single document."""

    @abstractmethod
    async def ensure_indexes(self, indexes: list[IndexSpec]) -> None:
        """Create *indexes* if they do not exist yet."""

    # -- async context manager ----------------------------------------------

    async def __aenter__(self) -> StorageGateway:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
