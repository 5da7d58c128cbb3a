"""Shared test fixtures."""
from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from mongo_spanstore.codec.document import encode_span
from mongo_spanstore.model import KeyValue, Process, Span, SpanID, SpanRef, TraceID
from mongo_spanstore.storage.memory import InMemoryStorageGateway

BASE_TIME = datetime(2021, 7, 1, 1, 1, 1, tzinfo=timezone.utc)
END_TIME = datetime(2021, 7, 2, 1, 1, 1, tzinfo=timezone.utc)
FOURTEEN_DAYS = timedelta(hours=336)

SpanFactory = Callable[..., Span]


def build_span(
    i: int,
    *,
    service: str | None = None,
    operation: str = "http",
    references: list[SpanRef] | None = None,
    tags: list[KeyValue] | None = None,
    start_time: datetime = BASE_TIME,
    duration: timedelta | None = None,
    trace_id: TraceID | None = None,
) -> Span:
    """Span *i* of trace ``(i, i)`` owned by ``"Service i"``."""
    return Span(
        trace_id=trace_id or TraceID(high=i, low=i),
        span_id=SpanID(value=i),
        operation_name=operation,
        references=references or [],
        start_time=start_time,
        duration=duration if duration is not None else timedelta(microseconds=i + 10),
        tags=tags if tags is not None else [KeyValue.of_int64("http.status_code", 200)],
        process_id=f"p{i}",
        process=Process(
            service_name=service if service is not None else f"Service {i}",
            tags=[KeyValue.of_string("hostname", f"host-{i}")],
        ),
    )


def build_chain(n: int, *, follows_from: bool = False, circular: bool = False) -> list[Span]:
    """Spans 0..n-1 where span i references span i-1 (and i+1 when circular)."""
    make_ref = SpanRef.follows_from if follows_from else SpanRef.child_of
    spans = []
    for i in range(n):
        refs: list[SpanRef] = []
        if circular and i < n - 1:
            refs.append(make_ref(TraceID(high=i + 1, low=i + 1), SpanID(value=i + 1)))
        if i > 0:
            refs.append(make_ref(TraceID(high=i - 1, low=i - 1), SpanID(value=i - 1)))
        spans.append(build_span(i, references=refs))
    return spans


@pytest.fixture
def make_span() -> SpanFactory:
    return build_span


@pytest.fixture
def make_chain() -> Callable[..., list[Span]]:
    return build_chain


@pytest.fixture
def make_document() -> Callable[..., dict[str, Any]]:
    return raw_document


@pytest.fixture
async def gateway() -> AsyncGenerator[InMemoryStorageGateway, None]:
    gw = InMemoryStorageGateway()
    await gw.connect()
    yield gw
    await gw.close()



def raw_document(**overrides: Any) -> dict[str, Any]:
    """A valid stored span document with selected fields replaced."""
    document = encode_span(build_span(1))
    document.update(overrides)
    return document


@pytest.fixture
def store(
    gateway: InMemoryStorageGateway,
) -> Callable[[list[Span]], Any]:
    """Insert encoded spans into the in-memory gateway."""

    async def _store(spans: list[Span]) -> None:
        for span in spans:
            await gateway.insert_one(encode_span(span))

    return _store
