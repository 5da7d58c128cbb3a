"""Translate trace queries into store filters and collect matching trace ids."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import structlog

from mongo_spanstore.core.constants import SpanField
from mongo_spanstore.core.exceptions import DecodeError, StoreUnavailable
from mongo_spanstore.model.query import TraceQueryParameters
from mongo_spanstore.storage.base import FindOptions, StorageGateway

logger = structlog.get_logger(__name__)

_ONE_MICROSECOND = timedelta(microseconds=1)


def _micros(value: timedelta) -> int:
    return value // _ONE_MICROSECOND


def build_trace_id_filter(query: TraceQueryParameters) -> dict[str, Any]:
    """Build the span filter selecting candidate spans for *query*.

    All predicates apply to a single span: a span must carry every
    requested tag to match.  An empty or inverted time window matches
    nothing.
    """
    filter: dict[str, Any] = {
        SpanField.START_TIME: {
            "$gt": query.start_time_min,
            "$lt": query.start_time_max,
        }
    }

    if query.tags:
        filter["$and"] = [
            {SpanField.TAGS: {"$elemMatch": {"key": key, "value": value}}}
            for key, value in query.tags.items()
        ]

    if query.service_name:
        filter[SpanField.SERVICE_NAME] = query.service_name

    if query.operation_name:
        filter[SpanField.OPERATION_NAME] = query.operation_name

    duration: dict[str, int] = {}
    if query.duration_max:
        duration["$lte"] = _micros(query.duration_max)
    if query.duration_min:
        duration["$gte"] = _micros(query.duration_min)
    if duration:
        filter[SpanField.DURATION] = duration

    return filter


def build_trace_fetch_filter(ids: list[str]) -> dict[str, Any]:
    """Build the filter fetching every span of the given traces."""
    return {SpanField.TRACE_ID: {"$in": list(ids)}}


async def find_trace_ids(
    gateway: StorageGateway,
    query: TraceQueryParameters,
    *,
    max_time: timedelta | None = None,
) -> list[str]:
    """Return up to ``query.num_traces`` distinct trace ids matching *query*.

    Spans are read most recent first, so when the limit truncates the result
    the most recent traces are kept.  Ids are returned in that order.

    Raises:
        DecodeError: If a matched span has a missing or non-string trace id.
        StoreUnavailable: If the store call fails.
    """
    if query.num_traces <= 0:
        return []

    filter = build_trace_id_filter(query)
    options = FindOptions(
        projection={SpanField.TRACE_ID: 1, "_id": 0},
        sort=[(SpanField.START_TIME, -1)],
        max_time=max_time,
    )

    seen: dict[str, None] = {}
    try:
        cursor = await gateway.find(filter, options)
        async with cursor:
            async for document in cursor:
                trace_id = document.get(SpanField.TRACE_ID)
                if not isinstance(trace_id, str) or not trace_id:
                    raise DecodeError(
                        f"stored span has an invalid trace id: {trace_id!r}",
                        details={"trace_id": trace_id},
                    )
                seen.setdefault(trace_id, None)
                if len(seen) >= query.num_traces:
                    break
    except (DecodeError, StoreUnavailable) as exc:
        logger.error(
            "query.find_trace_ids_failed", service=query.service_name, error=str(exc)
        )
        raise

    logger.debug("query.trace_ids_found", count=len(seen), limit=query.num_traces)
    return list(seen)
