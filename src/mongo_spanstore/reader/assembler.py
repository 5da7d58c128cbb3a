"""Reassemble traces from flat span documents."""

from __future__ import annotations

from datetime import timedelta

import structlog

from mongo_spanstore.codec.document import decode_span
from mongo_spanstore.core.constants import SpanField
from mongo_spanstore.core.exceptions import DecodeError, StoreUnavailable, TraceNotFound
from mongo_spanstore.model.span import Trace
from mongo_spanstore.query.translator import build_trace_fetch_filter
from mongo_spanstore.storage.base import FindOptions, StorageGateway

logger = structlog.get_logger(__name__)


class TraceAssembler:
    """Fetches span documents by trace id and groups them into traces.

    Decoding is all-or-nothing: one corrupt span fails the whole call
    rather than yielding an incomplete trace.

    Args:
        gateway: Store the spans are read from.
        max_time: Server-side time limit for each fetch.
    """

    def __init__(
        self, gateway: StorageGateway, *, max_time: timedelta | None = None
    ) -> None:
        self._gateway = gateway
        self._max_time = max_time

    async def fetch_and_group(self, ids: list[str]) -> dict[str, Trace]:
        """Return ``{trace id: trace}`` for every id with at least one span.

        Spans keep the order the store returned them in.  Ids without any
        span are absent from the result.

        Raises:
            DecodeError: If any stored span fails to decode.
            StoreUnavailable: If the store call fails.
        """
        if not ids:
            return {}

        traces: dict[str, Trace] = {}
        cursor = await self._gateway.find(
            build_trace_fetch_filter(ids), FindOptions(max_time=self._max_time)
        )
        async with cursor:
            try:
                async for document in cursor:
                    span = decode_span(document)
                    key = document[SpanField.TRACE_ID]
                    traces.setdefault(key, Trace()).spans.append(span)
            except DecodeError as exc:
                logger.error("assembler.decode_failed", error=str(exc))
                raise
            except StoreUnavailable as exc:
                logger.error("assembler.fetch_failed", error=str(exc))
                raise

        logger.debug(
            "assembler.traces_grouped", requested=len(ids), found=len(traces)
        )
        return traces

    async def get_trace(self, trace_id: str) -> Trace:
        """Return the single trace *trace_id*.

        Raises:
            TraceNotFound: If no span carries *trace_id*.
            DecodeError: If any stored span fails to decode.
            StoreUnavailable: If the store call fails.
        """
        traces = await self.fetch_and_group([trace_id])
        try:
            return traces[trace_id]
        except KeyError:
            raise TraceNotFound(trace_id) from None
