"""Span document codec."""

from __future__ import annotations

from mongo_spanstore.codec.document import (
    KeyValueDocument,
    LogDocument,
    ProcessDocument,
    ReferenceDocument,
    SpanDocument,
    decode_span,
    encode_span,
)

__all__ = [
    "KeyValueDocument",
    "LogDocument",
    "ProcessDocument",
    "ReferenceDocument",
    "SpanDocument",
    "decode_span",
    "encode_span",
]
