"""Tests for writer.py and plugin.py: write path and store wiring."""
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError

from conftest import END_TIME, FOURTEEN_DAYS
from mongo_spanstore import (
    InMemoryStorageGateway,
    MongoStorageGateway,
    SpanStorePlugin,
    StoreConfig,
)
from mongo_spanstore.core.exceptions import OperationCancelled, StoreUnavailable
from mongo_spanstore.model import KeyValue
from mongo_spanstore.writer import SpanWriter


class TestSpanWriter:
    async def test_write_span_inserts_document(self, gateway, make_span) -> None:
        span = make_span(1)
        await SpanWriter(gateway).write_span(span)
        [doc] = gateway.documents
        assert doc["traceID"] == str(span.trace_id)
        assert doc["spanID"] == str(span.span_id)
        assert doc["process"]["serviceName"] == "Service 1"

    async def test_binary_tags_not_persisted(self, gateway, make_span) -> None:
        span = make_span(1, tags=[KeyValue.of_binary("payload", b"\x00")])
        await SpanWriter(gateway).write_span(span)
        assert gateway.documents[0]["tags"] == []

    async def test_out_of_range_int64_never_reaches_the_store(self, gateway, make_span) -> None:
        with pytest.raises(ValidationError, match="int64"):
            make_span(7, tags=[KeyValue.of_int64("big", 1 << 63)])
        assert all(op != "insert_one" for op, _ in gateway.calls)
        assert gateway.documents == []

    async def test_store_failure(self, gateway, make_span) -> None:
        gateway.fail_next("insert_one", StoreUnavailable("not primary"))
        with pytest.raises(StoreUnavailable):
            await SpanWriter(gateway).write_span(make_span(1))

    @pytest.mark.parametrize("timeout", [None, 5])
    async def test_store_timeout_error_passes_through(self, gateway, make_span, timeout) -> None:
        gateway.fail_next("insert_one", TimeoutError("driver socket timeout"))
        with pytest.raises(TimeoutError, match="driver socket timeout"):
            await SpanWriter(gateway).write_span(make_span(1), timeout=timeout)

    async def test_timeout(self, make_span) -> None:
        class SlowInsert(InMemoryStorageGateway):
            async def insert_one(self, document):
                await asyncio.sleep(10)

        gw = SlowInsert()
        await gw.connect()
        with pytest.raises(OperationCancelled) as exc_info:
            await SpanWriter(gw).write_span(make_span(1), timeout=0.01)
        assert exc_info.value.code == "TIMEOUT"


class TestSpanStorePlugin:
    async def test_start_provisions_indexes(self) -> None:
        gw = InMemoryStorageGateway()
        config = StoreConfig(span_ttl="48h")
        async with SpanStorePlugin(config, gateway=gw):
            assert gw.indexes[0].name == "startTime_ttl"
            assert gw.indexes[0].expire_after == timedelta(hours=48)
            assert len(gw.indexes) == 4

    async def test_index_provisioning_can_be_skipped(self) -> None:
        gw = InMemoryStorageGateway()
        async with SpanStorePlugin(gateway=gw, provision_indexes=False):
            assert gw.indexes == []

    async def test_write_then_read(self, make_chain) -> None:
        gw = InMemoryStorageGateway()
        async with SpanStorePlugin(gateway=gw) as plugin:
            for span in make_chain(3):
                await plugin.span_writer().write_span(span)
            trace = await plugin.span_reader().get_trace(make_chain(3)[1].trace_id)
            links = await plugin.dependency_reader().get_dependencies(END_TIME, FOURTEEN_DAYS)
            services = await plugin.span_reader().get_services()

        assert [s.span_id.value for s in trace.spans] == [1]
        assert len(links) == 2
        assert services == ["Service 0", "Service 1", "Service 2"]

    async def test_stop_closes_gateway(self) -> None:
        gw = InMemoryStorageGateway()
        plugin = SpanStorePlugin(gateway=gw)
        await plugin.start()
        await plugin.stop()
        with pytest.raises(RuntimeError):
            await gw.distinct("traceID", {})

    def test_default_gateway_is_mongo(self) -> None:
        pytest.importorskip("pymongo")
        plugin = SpanStorePlugin(StoreConfig(mongo_collection="jaeger_spans"))
        assert isinstance(plugin._gateway, MongoStorageGateway)
        assert plugin.config.mongo_collection == "jaeger_spans"

    def test_from_settings_reads_yaml(self, tmp_path, monkeypatch) -> None:
        pytest.importorskip("pymongo")
        calls = []
        monkeypatch.setattr(
            "mongo_spanstore.plugin.configure_logging",
            lambda level, json=True: calls.append((level, json)),
        )
        path = tmp_path / "plugin.yaml"
        path.write_text("mongo_database: jaeger\nlog_level: debug\n", encoding="utf-8")

        plugin = SpanStorePlugin.from_settings(path, json_logs=False)
        assert plugin.config.mongo_database == "jaeger"
        assert calls == [("DEBUG", False)]

    def test_from_settings_reads_env(self, monkeypatch) -> None:
        pytest.importorskip("pymongo")
        monkeypatch.setattr("mongo_spanstore.plugin.configure_logging", lambda *a, **k: None)
        monkeypatch.setenv("SPANSTORE_MAX_TRACES_FOR_DEPENDENCIES", "42")
        plugin = SpanStorePlugin.from_settings()
        assert plugin.config.max_traces_for_dependencies == 42
