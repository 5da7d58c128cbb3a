"""Derive service-to-service dependency links from traces."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

import structlog

from mongo_spanstore.core.constants import MAX_TRACES_FOR_DEPENDENCIES, SpanRefType
from mongo_spanstore.model.ids import SpanID
from mongo_spanstore.model.query import TraceQueryParameters
from mongo_spanstore.model.span import DependencyLink, Trace
from mongo_spanstore.query.translator import find_trace_ids
from mongo_spanstore.reader.assembler import TraceAssembler
from mongo_spanstore.storage.base import StorageGateway

logger = structlog.get_logger(__name__)


def dependency_links(traces: Iterable[Trace]) -> list[DependencyLink]:
    """Aggregate CHILD_OF references into parent -> child service links.

    Span ids are resolved to services across *all* given traces.  A
    reference whose target span is not among them is ignored, FOLLOWS_FROM
    references never count, self-links are dropped and links are not
    transitively closed.
    """
    traces = list(traces)
    service_by_span: dict[SpanID, str] = {}
    for trace in traces:
        for span in trace.spans:
            service_by_span[span.span_id] = span.process.service_name

    counts: dict[tuple[str, str], int] = {}
    for trace in traces:
        for span in trace.spans:
            for ref in span.references:
                if ref.ref_type != SpanRefType.CHILD_OF:
                    continue
                parent = service_by_span.get(ref.span_id)
                if not parent:
                    continue
                pair = (parent, span.process.service_name)
                counts[pair] = counts.get(pair, 0) + 1

    return [
        DependencyLink(parent=parent, child=child, call_count=count)
        for (parent, child), count in counts.items()
        if parent != child
    ]


class DependencyGraphBuilder:
    """Computes the dependency graph for a time window.

    Args:
        gateway: Store the spans are read from.
        max_traces: Cap on traces scanned per call; callers needing more
            must page by time.
        max_time: Server-side time limit for each store call.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        *,
        max_traces: int = MAX_TRACES_FOR_DEPENDENCIES,
        max_time: timedelta | None = None,
    ) -> None:
        self._gateway = gateway
        self._max_traces = max_traces
        self._max_time = max_time
        self._assembler = TraceAssembler(gateway, max_time=max_time)

    async def build_dependencies(
        self, end_time: datetime, lookback: timedelta
    ) -> list[DependencyLink]:
        """Return the links observed in traces starting within ``lookback`` of *end_time*.

        An empty window yields an empty list.

        Raises:
            DecodeError: If any stored span fails to decode.
            StoreUnavailable: If a store call fails.
        """
        query = TraceQueryParameters(
            start_time_min=end_time - lookback,
            start_time_max=end_time,
            num_traces=self._max_traces,
        )
        ids = await find_trace_ids(self._gateway, query, max_time=self._max_time)
        if not ids:
            return []
        traces = await self._assembler.fetch_and_group(ids)
        links = dependency_links(traces.values())
        logger.debug(
            "dependencies.built",
            traces=len(traces),
            links=len(links),
            capped=len(ids) >= self._max_traces,
        )
        return links
