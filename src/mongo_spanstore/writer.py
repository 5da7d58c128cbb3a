"""Write path: one document per span."""

from __future__ import annotations

import asyncio

import structlog

from mongo_spanstore.codec.document import encode_span
from mongo_spanstore.core.exceptions import OperationCancelled
from mongo_spanstore.model.span import Span
from mongo_spanstore.storage.base import StorageGateway

logger = structlog.get_logger(__name__)


class SpanWriter:
    """Persists spans as they arrive.

    Each span is a single insert; spans of one trace are not written
    atomically, so a concurrent reader may see a partially written trace.
    """

    def __init__(self, gateway: StorageGateway) -> None:
        self._gateway = gateway

    async def write_span(self, span: Span, *, timeout: float | None = None) -> None:
        """Encode *span* and insert it.

        Raises:
            StoreUnavailable: If the insert fails.
            OperationCancelled: If *timeout* expires.
        """
        document = encode_span(span)
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                await self._gateway.insert_one(document)
        except TimeoutError as exc:
            if not deadline.expired():
                raise
            raise OperationCancelled(
                f"write_span timed out after {timeout}s",
                code="TIMEOUT",
                details={"trace_id": document["traceID"], "span_id": document["spanID"]},
            ) from exc
        logger.debug(
            "span_writer.span_written",
            trace_id=document["traceID"],
            span_id=document["spanID"],
        )
