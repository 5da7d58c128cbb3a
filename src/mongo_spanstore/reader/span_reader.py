"""Read API of the span store: trace lookup, search, services and dependencies."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator

import structlog

from mongo_spanstore.core.constants import (
    DEFAULT_STORE_TIMEOUT,
    MAX_TRACES_FOR_DEPENDENCIES,
    SPAN_KIND_TAG,
    SpanField,
)
from mongo_spanstore.core.exceptions import DecodeError, OperationCancelled
from mongo_spanstore.model.ids import TraceID
from mongo_spanstore.model.query import (
    Operation,
    OperationQueryParameters,
    TraceQueryParameters,
)
from mongo_spanstore.model.span import DependencyLink, Trace
from mongo_spanstore.query.translator import find_trace_ids
from mongo_spanstore.reader.assembler import TraceAssembler
from mongo_spanstore.reader.dependencies import DependencyGraphBuilder
from mongo_spanstore.storage.base import StorageGateway
from mongo_spanstore.telemetry import traced

logger = structlog.get_logger(__name__)


def _to_strings(values: list[Any], field: str) -> list[str]:
    if not all(isinstance(v, str) for v in values):
        raise DecodeError(
            f"non-string value found in distinct {field}", details={"field": field}
        )
    return sorted(values)


class SpanReader:
    """Queries traces stored one document per span.

    Every method is stateless and safe to call concurrently.  Each accepts a
    ``timeout`` in seconds; when it expires the call stops reading from the
    store and raises :class:`OperationCancelled` instead of returning a
    partial result.

    Args:
        gateway: Store the spans are read from.
        store_timeout: Server-side time limit applied to each store call.
        max_traces_for_dependencies: Cap on traces scanned by
            :meth:`get_dependencies`.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        *,
        store_timeout: timedelta | None = DEFAULT_STORE_TIMEOUT,
        max_traces_for_dependencies: int = MAX_TRACES_FOR_DEPENDENCIES,
    ) -> None:
        self._gateway = gateway
        self._store_timeout = store_timeout
        self._assembler = TraceAssembler(gateway, max_time=store_timeout)
        self._dependencies = DependencyGraphBuilder(
            gateway,
            max_traces=max_traces_for_dependencies,
            max_time=store_timeout,
        )

    @asynccontextmanager
    async def _operation(
        self, name: str, timeout: float | None, **attributes: Any
    ) -> AsyncIterator[None]:
        async with traced(f"SpanReader.{name}", **attributes):
            deadline = asyncio.timeout(timeout)
            try:
                async with deadline:
                    yield
            except TimeoutError as exc:
                if not deadline.expired():
                    raise
                logger.warning("span_reader.timeout", operation=name, timeout=timeout)
                raise OperationCancelled(
                    f"{name} timed out after {timeout}s",
                    code="TIMEOUT",
                    details={"operation": name, "timeout": timeout},
                ) from exc

    # -- traces -------------------------------------------------------------

    async def get_trace(
        self, trace_id: TraceID, *, timeout: float | None = None
    ) -> Trace:
        """Return every span of *trace_id*.

        Raises:
            TraceNotFound: If no span carries *trace_id*.
            DecodeError: If any stored span fails to decode.
            StoreUnavailable: If the store call fails.
            OperationCancelled: If *timeout* expires.
        """
        key = str(trace_id)
        async with self._operation("get_trace", timeout, trace_id=key):
            return await self._assembler.get_trace(key)

    async def find_traces(
        self, query: TraceQueryParameters, *, timeout: float | None = None
    ) -> list[Trace]:
        """Return the traces matching *query*, most recent first.

        No match is an empty list, not an error.
        """
        async with self._operation(
            "find_traces", timeout, service=query.service_name or None
        ):
            ids = await find_trace_ids(
                self._gateway, query, max_time=self._store_timeout
            )
            if not ids:
                return []
            traces = await self._assembler.fetch_and_group(ids)
        return [traces[i] for i in ids if i in traces]

    async def find_trace_ids(
        self, query: TraceQueryParameters, *, timeout: float | None = None
    ) -> list[TraceID]:
        """Same search as :meth:`find_traces`, returning only the ids.

        Raises:
            MalformedIdentifier: If a stored trace id does not parse.
        """
        async with self._operation(
            "find_trace_ids", timeout, service=query.service_name or None
        ):
            ids = await find_trace_ids(
                self._gateway, query, max_time=self._store_timeout
            )
        return [TraceID.from_string(i) for i in ids]

    # -- catalogue ----------------------------------------------------------

    async def get_services(self, *, timeout: float | None = None) -> list[str]:
        """Return every service name with spans in the retention period."""
        async with self._operation("get_services", timeout):
            services = await self._gateway.distinct(
                SpanField.SERVICE_NAME, {}, max_time=self._store_timeout
            )
        return _to_strings(services, SpanField.SERVICE_NAME)

    async def get_operations(
        self, query: OperationQueryParameters, *, timeout: float | None = None
    ) -> list[Operation]:
        """Return the operation names recorded for ``query.service_name``.

        An empty service name lists operations across all services.  A
        non-empty ``span_kind`` keeps only spans tagged ``span.kind`` with
        that value.
        """
        filter: dict[str, Any] = {}
        if query.service_name:
            filter[SpanField.SERVICE_NAME] = query.service_name
        if query.span_kind:
            filter[SpanField.TAGS] = {
                "$elemMatch": {"key": SPAN_KIND_TAG, "value": query.span_kind}
            }
        async with self._operation(
            "get_operations", timeout, service=query.service_name or None
        ):
            names = await self._gateway.distinct(
                SpanField.OPERATION_NAME, filter, max_time=self._store_timeout
            )
        return [
            Operation(name=name, span_kind=query.span_kind)
            for name in _to_strings(names, SpanField.OPERATION_NAME)
        ]

    # -- dependencies -------------------------------------------------------

    async def get_dependencies(
        self,
        end_time: datetime,
        lookback: timedelta,
        *,
        timeout: float | None = None,
    ) -> list[DependencyLink]:
        """Return the service dependency links observed in the time window.

        An empty window yields an empty list.
        """
        async with self._operation(
            "get_dependencies", timeout, lookback_seconds=lookback.total_seconds()
        ):
            return await self._dependencies.build_dependencies(end_time, lookback)
