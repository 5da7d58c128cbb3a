"""MongoDB storage gateway using ``pymongo``'s asyncio API (optional dependency).

Install with::

    pip install mongo-spanstore[mongo]
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, AsyncIterator

import structlog

from mongo_spanstore.core.exceptions import StoreUnavailable
from mongo_spanstore.storage.base import (
    Document,
    DocumentCursor,
    Filter,
    FindOptions,
    IndexSpec,
    StorageGateway,
)

logger = structlog.get_logger(__name__)


def _millis(value: timedelta | None) -> int | None:
    if value is None:
        return None
    return max(1, int(value / timedelta(milliseconds=1)))


class MongoCursor(DocumentCursor):
    """Wraps a ``pymongo`` async cursor, translating driver errors."""

    def __init__(self, cursor: Any, store_errors: tuple[type[Exception], ...]) -> None:
        self._cursor = cursor
        self._store_errors = store_errors
        self._closed = False

    def __aiter__(self) -> AsyncIterator[Document]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Document]:
        try:
            async for document in self._cursor:
                yield document
        except self._store_errors as exc:
            logger.error("mongo.cursor_error", error=str(exc))
            raise StoreUnavailable(f"error reading cursor: {exc}") from exc

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._cursor.close()


class MongoStorageGateway(StorageGateway):
    """MongoDB-backed span collection.

    Requires the ``pymongo`` package (4.10 or newer).  If it is not
    installed, the constructor raises :class:`ImportError` with installation
    instructions.

    Args:
        url: MongoDB connection string (e.g. ``"mongodb://localhost:27017"``).
        database: Database name.
        collection: Collection holding one document per span.
        connect_timeout: Time allowed for the initial connection check.
    """

    def __init__(
        self,
        url: str,
        database: str,
        collection: str,
        *,
        connect_timeout: timedelta = timedelta(seconds=30),
    ) -> None:
        try:
            from pymongo.errors import PyMongoError
        except ImportError:
            raise ImportError(
                "pymongo required for MongoStorageGateway. "
                "Install with: pip install mongo-spanstore[mongo]"
            ) from None
        self._url = url
        self._database = database
        self._collection_name = collection
        self._connect_timeout = connect_timeout
        self._store_errors: tuple[type[Exception], ...] = (PyMongoError,)
        self._client: Any = None  # pymongo.AsyncMongoClient
        self._collection: Any = None  # pymongo.asynchronous.collection.AsyncCollection

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        """Create the client and verify the server answers a ping."""
        from pymongo import AsyncMongoClient

        self._client = AsyncMongoClient(
            self._url,
            tz_aware=True,
            w=1,
            serverSelectionTimeoutMS=_millis(self._connect_timeout),
        )
        try:
            await self._client.admin.command("ping")
        except self._store_errors as exc:
            await self._client.close()
            self._client = None
            logger.error("mongo.connect_failed", database=self._database, error=str(exc))
            raise StoreUnavailable(f"failed to connect to MongoDB: {exc}") from exc
        self._collection = self._client[self._database][self._collection_name]
        logger.info(
            "mongo.connected",
            database=self._database,
            collection=self._collection_name,
        )

    async def close(self) -> None:
        """Close the client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collection = None
            logger.info("mongo.closed")

    def _require_collection(self) -> Any:
        if self._collection is None:
            raise RuntimeError("Not connected")
        return self._collection

    # -- StorageGateway -----------------------------------------------------

    async def distinct(
        self, field: str, filter: Filter, *, max_time: timedelta | None = None
    ) -> list[Any]:
        collection = self._require_collection()
        kwargs: dict[str, Any] = {}
        if max_time is not None:
            kwargs["maxTimeMS"] = _millis(max_time)
        try:
            return list(await collection.distinct(field, dict(filter), **kwargs))
        except self._store_errors as exc:
            logger.error("mongo.distinct_failed", field=field, error=str(exc))
            raise StoreUnavailable(f"distinct call failed: {exc}") from exc

    async def find(
        self, filter: Filter, options: FindOptions | None = None
    ) -> DocumentCursor:
        collection = self._require_collection()
        opts = options or FindOptions()
        kwargs: dict[str, Any] = {}
        if opts.projection is not None:
            kwargs["projection"] = opts.projection
        if opts.sort:
            kwargs["sort"] = opts.sort
        if opts.limit:
            kwargs["limit"] = opts.limit
        if opts.max_time is not None:
            kwargs["max_time_ms"] = _millis(opts.max_time)
        try:
            cursor = collection.find(dict(filter), **kwargs)
        except self._store_errors as exc:
            logger.error("mongo.find_failed", error=str(exc))
            raise StoreUnavailable(f"error finding spans: {exc}") from exc
        return MongoCursor(cursor, self._store_errors)

    async def insert_one(self, document: Document) -> None:
        collection = self._require_collection()
        try:
            # pymongo adds ``_id`` to the mapping it is given
            await collection.insert_one(dict(document))
        except self._store_errors as exc:
            logger.error(
                "mongo.insert_failed",
                trace_id=document.get("traceID"),
                span_id=document.get("spanID"),
                error=str(exc),
            )
            raise StoreUnavailable(f"error inserting span: {exc}") from exc

    async def ensure_indexes(self, indexes: list[IndexSpec]) -> None:
        collection = self._require_collection()
        for index in indexes:
            kwargs: dict[str, Any] = {"name": index.name}
            if index.expire_after is not None:
                kwargs["expireAfterSeconds"] = int(index.expire_after.total_seconds())
            try:
                await collection.create_index(index.keys, **kwargs)
            except self._store_errors as exc:
                logger.error("mongo.create_index_failed", index=index.name, error=str(exc))
                raise StoreUnavailable(
                    f"error creating index {index.name}: {exc}"
                ) from exc
            logger.info("mongo.index_ensured", index=index.name)
