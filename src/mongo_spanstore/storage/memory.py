"""In-memory storage gateway.

Evaluates the subset of the MongoDB query language the span store emits
(``$and``, ``$or``, ``$gt``, ``$gte``, ``$lt``, ``$lte``, ``$in``, ``$ne``,
``$elemMatch``, dotted paths, scalar equality and array membership) against
a plain list of documents.  Zero external dependencies; used as the store
substitute in tests and for local experiments.
"""

from __future__ import annotations

import copy
import itertools
from datetime import timedelta
from typing import Any, AsyncIterator, Callable

import structlog

from mongo_spanstore.storage.base import (
    Document,
    DocumentCursor,
    Filter,
    FindOptions,
    IndexSpec,
    StorageGateway,
)

logger = structlog.get_logger(__name__)

_MISSING = object()


# ---------------------------------------------------------------------------
# Filter evaluation
# ---------------------------------------------------------------------------


def _resolve(value: Any, path: list[str]) -> list[Any]:
    """Return every value reachable through *path*, descending into arrays."""
    if not path:
        if isinstance(value, list):
            return [value, *value]
        return [value]
    if isinstance(value, list):
        return [v for item in value for v in _resolve(item, path)]
    if isinstance(value, dict) and path[0] in value:
        return _resolve(value[path[0]], path[1:])
    return []


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[list[Any], Any], bool]:
    def check(candidates: list[Any], operand: Any) -> bool:
        for candidate in candidates:
            try:
                if op(candidate, operand):
                    return True
            except TypeError:
                continue
        return False

    return check


def _elem_match(candidates: list[Any], operand: Any) -> bool:
    return any(
        isinstance(arr, list)
        and any(isinstance(e, dict) and matches(e, operand) for e in arr)
        for arr in candidates
    )


_OPERATORS: dict[str, Callable[[list[Any], Any], bool]] = {
    "$gt": _compare(lambda a, b: a > b),
    "$gte": _compare(lambda a, b: a >= b),
    "$lt": _compare(lambda a, b: a < b),
    "$lte": _compare(lambda a, b: a <= b),
    "$in": lambda cands, operand: any(c in operand for c in cands),
    "$ne": lambda cands, operand: all(c != operand for c in cands),
    "$elemMatch": _elem_match,
}


def matches(document: Document, filter: Filter) -> bool:
    """Return whether *document* satisfies *filter*.

    Raises:
        ValueError: If *filter* uses an unsupported operator.
    """
    for key, condition in filter.items():
        if key == "$and":
            if not all(matches(document, sub) for sub in condition):
                return False
            continue
        if key == "$or":
            if not any(matches(document, sub) for sub in condition):
                return False
            continue
        candidates = _resolve(document, str(key).split("."))
        if isinstance(condition, dict) and any(
            str(op).startswith("$") for op in condition
        ):
            for op, operand in condition.items():
                try:
                    check = _OPERATORS[op]
                except KeyError:
                    raise ValueError(f"unsupported query operator {op!r}") from None
                if not check(candidates, operand):
                    return False
        elif condition not in candidates:
            return False
    return True


def _project(document: Document, projection: dict[str, int] | None) -> Document:
    if not projection:
        return document
    included = {k for k, v in projection.items() if v and k != "_id"}
    if included:
        result = {k: document[k] for k in included if k in document}
        if projection.get("_id", 1) and "_id" in document:
            result["_id"] = document["_id"]
        return result
    excluded = {k for k, v in projection.items() if not v}
    return {k: v for k, v in document.items() if k not in excluded}


def _sort_key(field: str) -> Callable[[Document], tuple[int, Any]]:
    path = field.split(".")

    def key(document: Document) -> tuple[int, Any]:
        values = _resolve(document, path)
        if not values or values[0] is None:
            return (0, 0)
        return (1, values[0])

    return key


# ---------------------------------------------------------------------------
# Cursor
# ---------------------------------------------------------------------------


class InMemoryCursor(DocumentCursor):
    """Cursor over a snapshot of documents.

    Args:
        documents: Documents to yield, already filtered, sorted and projected.
        fail_after: When set, raise *error* after yielding this many documents.
        error: Exception raised at ``fail_after``.
    """

    def __init__(
        self,
        documents: list[Document],
        *,
        fail_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self._documents = documents
        self._fail_after = fail_after
        self._error = error
        self.closed = False
        self.consumed = 0

    def __aiter__(self) -> AsyncIterator[Document]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Document]:
        for document in self._documents:
            if self.closed:
                raise RuntimeError("cursor is closed")
            if self._fail_after is not None and self.consumed >= self._fail_after:
                raise self._error or RuntimeError("cursor failure")
            self.consumed += 1
            yield document

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class InMemoryStorageGateway(StorageGateway):
    """In-memory :class:`StorageGateway` for tests.

    Usage::

        gateway = InMemoryStorageGateway()
        await gateway.connect()
        await gateway.insert_one(encode_span(span))

        gateway.fail_next("find", StoreUnavailable("boom"))     # primed failure
        gateway.fail_iteration(StoreUnavailable("boom"), after=2)

    Every call is recorded in :attr:`calls` and every cursor handed out is
    kept in :attr:`cursors` so tests can assert it was closed.
    """

    def __init__(self, documents: list[Document] | None = None) -> None:
        self._connected = False
        self._documents: list[Document] = []
        self._ids = itertools.count(1)
        self._failures: dict[str, Exception] = {}
        self._iteration_failure: tuple[Exception, int] | None = None
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.cursors: list[InMemoryCursor] = []
        self.indexes: list[IndexSpec] = []
        for document in documents or []:
            self._store(document)

    # -- test helpers -------------------------------------------------------

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call to *operation* raise *error*."""
        self._failures[operation] = error

    def fail_iteration(self, error: Exception, *, after: int = 0) -> None:
        """Make the next cursor raise *error* after yielding *after* documents."""
        self._iteration_failure = (error, after)

    @property
    def documents(self) -> list[Document]:
        return copy.deepcopy(self._documents)

    def _store(self, document: Document) -> None:
        stored = copy.deepcopy(dict(document))
        stored.setdefault("_id", next(self._ids))
        self._documents.append(stored)

    def _record(self, operation: str, *args: Any) -> None:
        if not self._connected:
            raise RuntimeError("InMemoryStorageGateway not connected")
        self.calls.append((operation, args))
        error = self._failures.pop(operation, None)
        if error is not None:
            raise error

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        self._connected = True
        logger.debug("memory_store.connected")

    async def close(self) -> None:
        self._connected = False
        logger.debug("memory_store.closed")

    # -- StorageGateway -----------------------------------------------------

    async def distinct(
        self, field: str, filter: Filter, *, max_time: timedelta | None = None
    ) -> list[Any]:
        self._record("distinct", field, dict(filter))
        path = field.split(".")
        values: list[Any] = []
        for document in self._documents:
            if not matches(document, filter):
                continue
            for value in _resolve(document, path):
                if isinstance(value, list) or value in values:
                    continue
                values.append(copy.deepcopy(value))
        return values

    async def find(
        self, filter: Filter, options: FindOptions | None = None
    ) -> DocumentCursor:
        opts = options or FindOptions()
        self._record("find", dict(filter), opts)
        selected = [d for d in self._documents if matches(d, filter)]
        for field, direction in reversed(opts.sort):
            selected.sort(key=_sort_key(field), reverse=direction < 0)
        if opts.limit:
            selected = selected[: opts.limit]
        documents = [copy.deepcopy(_project(d, opts.projection)) for d in selected]
        if self._iteration_failure is not None:
            error, after = self._iteration_failure
            self._iteration_failure = None
            cursor = InMemoryCursor(documents, fail_after=after, error=error)
        else:
            cursor = InMemoryCursor(documents)
        self.cursors.append(cursor)
        return cursor

    async def insert_one(self, document: Document) -> None:
        self._record("insert_one", document.get("traceID"), document.get("spanID"))
        self._store(document)

    async def ensure_indexes(self, indexes: list[IndexSpec]) -> None:
        self._record("ensure_indexes", [i.name for i in indexes])
        known = {i.name for i in self.indexes}
        self.indexes.extend(i for i in indexes if i.name not in known)
