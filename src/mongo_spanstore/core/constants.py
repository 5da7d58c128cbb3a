from __future__ import annotations

from datetime import timedelta
from enum import StrEnum


class ValueType(StrEnum):
    STRING = "string"
    BOOL = "bool"
    INT64 = "int64"
    FLOAT64 = "float64"
    BINARY = "binary"


class SpanRefType(StrEnum):
    CHILD_OF = "CHILD_OF"
    FOLLOWS_FROM = "FOLLOWS_FROM"


class SpanField(StrEnum):
    """Persisted field names of a span document."""

    TRACE_ID = "traceID"
    SPAN_ID = "spanID"
    OPERATION_NAME = "operationName"
    START_TIME = "startTime"
    DURATION = "duration"
    REFERENCES = "references"
    PROCESS_ID = "processID"
    PROCESS = "process"
    SERVICE_NAME = "process.serviceName"
    TAGS = "tags"
    TAG_KEY = "tags.key"
    TAG_VALUE = "tags.value"
    LOGS = "logs"
    WARNINGS = "warnings"


DEFAULT_MONGO_URL = "mongodb://localhost:27017"
DEFAULT_DATABASE = "traces"
DEFAULT_COLLECTION = "spans"
DEFAULT_STORE_TIMEOUT = timedelta(seconds=5)
DEFAULT_SPAN_TTL = timedelta(days=14)
DEFAULT_NUM_TRACES = 100

# Upper bound on traces scanned per dependency computation; callers page by time.
MAX_TRACES_FOR_DEPENDENCIES = 25_000

SPAN_KIND_TAG = "span.kind"
