"""Tests for reader/span_reader.py: the read API."""
from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import BASE_TIME, END_TIME, FOURTEEN_DAYS
from mongo_spanstore.codec.document import encode_span
from mongo_spanstore.core.exceptions import (
    DecodeError,
    MalformedIdentifier,
    OperationCancelled,
    StoreUnavailable,
    TraceNotFound,
)
from mongo_spanstore.model import (
    KeyValue,
    Operation,
    OperationQueryParameters,
    TraceID,
    TraceQueryParameters,
)
from mongo_spanstore.reader import SpanReader
from mongo_spanstore.storage.memory import InMemoryCursor, InMemoryStorageGateway


class StallingCursor(InMemoryCursor):
    """Cursor that hangs after handing out each document."""

    async def _iterate(self):
        async for document in super()._iterate():
            yield document
            await asyncio.sleep(10)


class StallingGateway(InMemoryStorageGateway):
    async def find(self, filter, options=None):
        cursor = await super().find(filter, options)
        stalled = StallingCursor([d async for d in cursor])
        self.cursors[-1] = stalled
        return stalled


class SlowGateway(InMemoryStorageGateway):
    """Gateway whose reads take longer than any test timeout."""

    async def distinct(self, field, filter, *, max_time=None):
        await asyncio.sleep(10)
        return await super().distinct(field, filter, max_time=max_time)

    async def find(self, filter, options=None):
        await asyncio.sleep(10)
        return await super().find(filter, options)


@pytest.fixture
def reader(gateway) -> SpanReader:
    return SpanReader(gateway, store_timeout=timedelta(seconds=5))


def window(**kwargs) -> TraceQueryParameters:
    return TraceQueryParameters(
        start_time_min=END_TIME - FOURTEEN_DAYS, start_time_max=END_TIME, **kwargs
    )


class TestGetTrace:
    async def test_found(self, reader, store, make_span) -> None:
        span = make_span(3)
        await store([span])
        trace = await reader.get_trace(span.trace_id)
        assert trace.spans == [span]

    async def test_short_id_matches_padded_storage(self, reader, store, make_span) -> None:
        span = make_span(1, trace_id=TraceID(low=0xABC))
        await store([span])
        trace = await reader.get_trace(TraceID.from_string("abc"))
        assert trace.trace_id == TraceID(low=0xABC)

    async def test_not_found(self, reader) -> None:
        with pytest.raises(TraceNotFound):
            await reader.get_trace(TraceID(low=1))


class TestFindTraces:
    async def test_most_recent_first(self, reader, store, make_span) -> None:
        await store(
            [make_span(i, start_time=BASE_TIME + timedelta(minutes=i)) for i in range(1, 4)]
        )
        traces = await reader.find_traces(window())
        assert [t.trace_id for t in traces] == [TraceID(high=i, low=i) for i in (3, 2, 1)]

    async def test_returns_whole_traces(self, reader, store, make_span) -> None:
        shared = TraceID(high=1, low=1)
        await store(
            [
                make_span(1, trace_id=shared, service="frontend"),
                make_span(2, trace_id=shared, service="backend"),
            ]
        )
        traces = await reader.find_traces(window(service_name="backend"))
        assert len(traces) == 1
        assert {s.service_name for s in traces[0].spans} == {"frontend", "backend"}

    async def test_no_match_is_empty(self, reader, gateway, store, make_span) -> None:
        await store([make_span(1)])
        assert await reader.find_traces(window(service_name="nope")) == []
        # no fetch follows an empty id search
        assert [op for op, _ in gateway.calls].count("find") == 1


class TestFindTraceIds:
    async def test_returns_trace_ids(self, reader, store, make_span) -> None:
        await store([make_span(i, start_time=BASE_TIME + timedelta(seconds=i)) for i in (1, 2)])
        ids = await reader.find_trace_ids(window())
        assert ids == [TraceID(high=2, low=2), TraceID(high=1, low=1)]

    async def test_malformed_stored_id(self, reader, gateway, make_document) -> None:
        await gateway.insert_one(make_document(traceID="not-hex"))
        with pytest.raises(MalformedIdentifier):
            await reader.find_trace_ids(window())

    async def test_non_string_stored_id(self, reader, gateway, make_document) -> None:
        await gateway.insert_one(make_document(traceID=12345))
        with pytest.raises(DecodeError):
            await reader.find_trace_ids(window())
        with pytest.raises(DecodeError):
            await reader.find_traces(window())


class TestCatalogue:
    async def test_services_sorted_and_distinct(self, reader, store, make_span) -> None:
        await store(
            [
                make_span(1, service="payments"),
                make_span(2, service="accounts"),
                make_span(3, service="payments"),
            ]
        )
        assert await reader.get_services() == ["accounts", "payments"]

    async def test_services_empty_store(self, reader) -> None:
        assert await reader.get_services() == []

    async def test_non_string_service_is_decode_error(self, reader, gateway, make_document) -> None:
        doc = make_document()
        doc["process"]["serviceName"] = 42
        await gateway.insert_one(doc)
        with pytest.raises(DecodeError):
            await reader.get_services()

    async def test_operations_for_service(self, reader, store, make_span) -> None:
        await store(
            [
                make_span(1, service="api", operation="GET /a"),
                make_span(2, service="api", operation="GET /b"),
                make_span(3, service="api", operation="GET /a"),
                make_span(4, service="db", operation="SELECT"),
            ]
        )
        ops = await reader.get_operations(OperationQueryParameters(service_name="api"))
        assert ops == [Operation(name="GET /a"), Operation(name="GET /b")]

    async def test_operations_all_services(self, reader, store, make_span) -> None:
        await store(
            [make_span(1, service="api", operation="GET"), make_span(2, service="db", operation="SELECT")]
        )
        ops = await reader.get_operations(OperationQueryParameters())
        assert [op.name for op in ops] == ["GET", "SELECT"]

    async def test_operations_by_span_kind(self, reader, store, make_span) -> None:
        await store(
            [
                make_span(1, service="api", operation="GET", tags=[KeyValue.of_string("span.kind", "server")]),
                make_span(2, service="api", operation="call-db", tags=[KeyValue.of_string("span.kind", "client")]),
            ]
        )
        ops = await reader.get_operations(
            OperationQueryParameters(service_name="api", span_kind="client")
        )
        assert ops == [Operation(name="call-db", span_kind="client")]

    async def test_operations_filter_shape(self, reader, gateway) -> None:
        await reader.get_operations(OperationQueryParameters(service_name="api"))
        op, (field, filter) = gateway.calls[-1]
        assert (op, field, filter) == ("distinct", "operationName", {"process.serviceName": "api"})


class TestDependencies:
    async def test_dependencies(self, reader, store, make_chain) -> None:
        await store(make_chain(3))
        links = await reader.get_dependencies(END_TIME, FOURTEEN_DAYS)
        assert {(l.parent, l.child) for l in links} == {
            ("Service 0", "Service 1"),
            ("Service 1", "Service 2"),
        }


class TestCancellation:
    @pytest.fixture
    async def slow_reader(self):
        gw = SlowGateway()
        await gw.connect()
        yield SpanReader(gw)
        await gw.close()

    async def test_services_timeout(self, slow_reader) -> None:
        with pytest.raises(OperationCancelled) as exc_info:
            await slow_reader.get_services(timeout=0.01)
        assert exc_info.value.code == "TIMEOUT"
        assert exc_info.value.details["operation"] == "get_services"

    async def test_find_traces_timeout(self, slow_reader) -> None:
        with pytest.raises(OperationCancelled):
            await slow_reader.find_traces(window(), timeout=0.01)

    async def test_dependencies_timeout(self, slow_reader) -> None:
        with pytest.raises(OperationCancelled):
            await slow_reader.get_dependencies(END_TIME, FOURTEEN_DAYS, timeout=0.01)

    async def test_timeout_while_reading_cursor(self, make_span) -> None:
        gw = StallingGateway()
        await gw.connect()
        for i in range(1, 4):
            await gw.insert_one(encode_span(make_span(i)))

        with pytest.raises(OperationCancelled):
            await SpanReader(gw).find_traces(window(), timeout=0.05)
        cursor = gw.cursors[-1]
        assert cursor.closed
        assert cursor.consumed == 1

    async def test_no_timeout_by_default(self, reader, store, make_span) -> None:
        await store([make_span(1)])
        assert await reader.get_services(timeout=None) == ["Service 1"]

    @pytest.mark.parametrize("timeout", [None, 5])
    async def test_store_timeout_error_is_not_cancellation(self, reader, gateway, timeout) -> None:
        gateway.fail_next("distinct", TimeoutError("driver socket timeout"))
        with pytest.raises(TimeoutError, match="driver socket timeout"):
            await reader.get_services(timeout=timeout)

    async def test_store_errors_are_not_cancellation(self, reader, gateway) -> None:
        gateway.fail_next("distinct", StoreUnavailable("down"))
        with pytest.raises(StoreUnavailable):
            await reader.get_services(timeout=1)


class TestTelemetry:
    async def test_operations_run_in_spans(self, reader, monkeypatch) -> None:
        tracer = MagicMock()
        monkeypatch.setattr("mongo_spanstore.telemetry.get_tracer", lambda: tracer)
        await reader.get_operations(OperationQueryParameters(service_name="api"))

        tracer.start_as_current_span.assert_called_once()
        assert tracer.start_as_current_span.call_args.args[0] == "SpanReader.get_operations"
        otel_span = tracer.start_as_current_span.return_value.__enter__.return_value
        otel_span.set_attribute.assert_called_once_with("service", "api")

    async def test_errors_recorded_on_span(self, reader, monkeypatch) -> None:
        tracer = MagicMock()
        monkeypatch.setattr("mongo_spanstore.telemetry.get_tracer", lambda: tracer)
        with pytest.raises(TraceNotFound):
            await reader.get_trace(TraceID(low=5))
        otel_span = tracer.start_as_current_span.return_value.__enter__.return_value
        otel_span.record_exception.assert_called_once()
        otel_span.set_status.assert_called_once()
