"""Read path: trace assembly, dependency graph and the span reader facade."""

from __future__ import annotations

from mongo_spanstore.reader.assembler import TraceAssembler
from mongo_spanstore.reader.dependencies import DependencyGraphBuilder, dependency_links
from mongo_spanstore.reader.span_reader import SpanReader

__all__ = [
    "DependencyGraphBuilder",
    "SpanReader",
    "TraceAssembler",
    "dependency_links",
]
