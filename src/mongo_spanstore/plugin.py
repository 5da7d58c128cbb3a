"""Wiring of the span store: configuration -> gateway -> reader and writer."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from mongo_spanstore.core.config import StoreConfig
from mongo_spanstore.reader.span_reader import SpanReader
from mongo_spanstore.storage.base import StorageGateway, span_indexes
from mongo_spanstore.storage.mongo import MongoStorageGateway
from mongo_spanstore.utils.logging import configure_logging
from mongo_spanstore.writer import SpanWriter

logger = structlog.get_logger(__name__)


class SpanStorePlugin:
    """Storage plugin exposing a span reader, span writer and dependency reader.

    Usage::

        async with SpanStorePlugin(StoreConfig.from_env()) as plugin:
            await plugin.span_writer().write_span(span)
            trace = await plugin.span_reader().get_trace(span.trace_id)

    Args:
        config: Store settings.
        gateway: Store to use instead of the MongoDB collection named in
            *config* (e.g. an :class:`InMemoryStorageGateway` in tests).
        provision_indexes: Create the TTL and query indexes on :meth:`start`.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        gateway: StorageGateway | None = None,
        provision_indexes: bool = True,
    ) -> None:
        self._config = config or StoreConfig()
        if gateway is None:
            gateway = MongoStorageGateway(
                self._config.mongo_url,
                self._config.mongo_database,
                self._config.mongo_collection,
            )
        self._gateway = gateway
        self._provision_indexes = provision_indexes
        self._reader = SpanReader(
            gateway,
            store_timeout=self._config.mongo_timeout,
            max_traces_for_dependencies=self._config.max_traces_for_dependencies,
        )
        self._writer = SpanWriter(gateway)

    @classmethod
    def from_settings(
        cls, config_path: str | Path | None = None, *, json_logs: bool = True
    ) -> SpanStorePlugin:
        """Build a plugin the way a host process starts it.

        Loads *config_path* (YAML, with environment overrides) or the
        environment alone, then configures logging at the configured level.
        """
        if config_path is not None:
            config = StoreConfig.from_yaml(config_path)
        else:
            config = StoreConfig.from_env()
        configure_logging(config.log_level, json=json_logs)
        return cls(config)

    @property
    def config(self) -> StoreConfig:
        return self._config

    def span_reader(self) -> SpanReader:
        return self._reader

    def span_writer(self) -> SpanWriter:
        return self._writer

    def dependency_reader(self) -> SpanReader:
        return self._reader

    async def start(self) -> None:
        """Connect to the store and provision indexes."""
        await self._gateway.connect()
        if self._provision_indexes:
            await self._gateway.ensure_indexes(span_indexes(self._config.span_ttl))
        logger.info(
            "span_store.started",
            database=self._config.mongo_database,
            collection=self._config.mongo_collection,
        )

    async def stop(self) -> None:
        await self._gateway.close()
        logger.info("span_store.stopped")

    async def __aenter__(self) -> SpanStorePlugin:
        await self.start()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.stop()
