"""Domain model: identifiers, spans, traces, dependency links and query shapes."""

from __future__ import annotations

from mongo_spanstore.model.ids import SpanID, TraceID
from mongo_spanstore.model.query import (
    Operation,
    OperationQueryParameters,
    TraceQueryParameters,
)
from mongo_spanstore.model.span import (
    DependencyLink,
    KeyValue,
    Log,
    Process,
    Span,
    SpanRef,
    Trace,
)

__all__ = [
    "DependencyLink",
    "KeyValue",
    "Log",
    "Operation",
    "OperationQueryParameters",
    "Process",
    "Span",
    "SpanID",
    "SpanRef",
    "Trace",
    "TraceID",
    "TraceQueryParameters",
]
