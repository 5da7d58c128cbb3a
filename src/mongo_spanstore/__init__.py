"""MongoDB span storage: persist tracing spans, query traces, derive dependencies."""

from mongo_spanstore.__version__ import __version__
from mongo_spanstore.core.config import StoreConfig
from mongo_spanstore.core.exceptions import (
    ConfigurationError,
    DecodeError,
    InvalidReference,
    InvalidTagValue,
    MalformedIdentifier,
    NotFound,
    OperationCancelled,
    SpanStoreError,
    StoreUnavailable,
    TraceNotFound,
)
from mongo_spanstore.model import (
    DependencyLink,
    KeyValue,
    Log,
    Operation,
    OperationQueryParameters,
    Process,
    Span,
    SpanID,
    SpanRef,
    Trace,
    TraceID,
    TraceQueryParameters,
)
from mongo_spanstore.plugin import SpanStorePlugin
from mongo_spanstore.reader.span_reader import SpanReader
from mongo_spanstore.storage.memory import InMemoryStorageGateway
from mongo_spanstore.storage.mongo import MongoStorageGateway
from mongo_spanstore.writer import SpanWriter

__all__ = [
    "ConfigurationError",
    "DecodeError",
    "DependencyLink",
    "InMemoryStorageGateway",
    "InvalidReference",
    "InvalidTagValue",
    "KeyValue",
    "Log",
    "MalformedIdentifier",
    "MongoStorageGateway",
    "NotFound",
    "Operation",
    "OperationCancelled",
    "OperationQueryParameters",
    "Process",
    "Span",
    "SpanID",
    "SpanReader",
    "SpanRef",
    "SpanStoreError",
    "SpanStorePlugin",
    "SpanWriter",
    "StoreConfig",
    "StoreUnavailable",
    "Trace",
    "TraceID",
    "TraceNotFound",
    "TraceQueryParameters",
    "__version__",
]
