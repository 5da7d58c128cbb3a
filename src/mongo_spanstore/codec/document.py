"""Bidirectional mapping between domain spans and flat span documents.

One document per span.  Tag values are persisted as strings with their
declared type alongside; binary tags are dropped on write.  Decoding is
strict: any malformed field fails the whole document.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mongo_spanstore.core.constants import SpanRefType, ValueType
from mongo_spanstore.core.exceptions import (
    DecodeError,
    InvalidReference,
    InvalidTagValue,
)
from mongo_spanstore.model.ids import SpanID, TraceID
from mongo_spanstore.model.span import KeyValue, Log, Process, Span, SpanRef

logger = structlog.get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)
_ONE_MILLISECOND = timedelta(milliseconds=1)
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_INT_RE = re.compile(r"^[+-]?[0-9]+$")
_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_STRINGS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


# ---------------------------------------------------------------------------
# Persisted document shapes
# ---------------------------------------------------------------------------


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class KeyValueDocument(_Document):
    key: str
    type: str = ""
    value: Any = None


class ReferenceDocument(_Document):
    ref_type: str = Field(alias="refType")
    trace_id: str = Field(alias="traceID")
    span_id: str = Field(alias="spanID")


class ProcessDocument(_Document):
    service_name: str = Field(default="", alias="serviceName")
    tags: list[KeyValueDocument] = Field(default_factory=list)


class LogDocument(_Document):
    timestamp: int
    """Milliseconds since the Unix epoch; negative before 1970."""
    fields: list[KeyValueDocument] = Field(default_factory=list)


class SpanDocument(_Document):
    trace_id: str = Field(alias="traceID")
    span_id: str = Field(alias="spanID")
    operation_name: str = Field(default="", alias="operationName")
    start_time: datetime = Field(alias="startTime")
    duration: int = Field(default=0, ge=0)
    """Microseconds."""
    references: list[ReferenceDocument] = Field(default_factory=list)
    process_id: str = Field(default="", alias="processID")
    process: ProcessDocument = Field(default_factory=ProcessDocument)
    tags: list[KeyValueDocument] = Field(default_factory=list)
    logs: list[LogDocument] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_key_values(tags: list[KeyValue]) -> list[KeyValueDocument]:
    return [
        KeyValueDocument(key=kv.key, type=kv.v_type.value, value=kv.as_string())
        for kv in tags
        if kv.v_type != ValueType.BINARY
    ]


def encode_span(span: Span) -> dict[str, Any]:
    """Map a domain span to its persisted document (a plain dict).

    Log timestamps are stored as whole milliseconds since the epoch, floored,
    so sub-millisecond parts of log times do not survive a round trip.
    Binary tags are dropped.
    """
    doc = SpanDocument(
        trace_id=str(span.trace_id),
        span_id=str(span.span_id),
        operation_name=span.operation_name,
        start_time=span.start_time,
        duration=span.duration // _ONE_MICROSECOND,
        references=[
            ReferenceDocument(
                ref_type=ref.ref_type.value,
                trace_id=str(ref.trace_id),
                span_id=str(ref.span_id),
            )
            for ref in span.references
        ],
        process_id=span.process_id,
        process=ProcessDocument(
            service_name=span.process.service_name,
            tags=encode_key_values(span.process.tags),
        ),
        tags=encode_key_values(span.tags),
        logs=[
            LogDocument(
                timestamp=(log.timestamp - EPOCH) // _ONE_MILLISECOND,
                fields=encode_key_values(log.fields),
            )
            for log in span.logs
        ],
        warnings=list(span.warnings),
    )
    return doc.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _parse_bool(text: str) -> bool:
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"invalid bool {text!r}")


def _parse_int64(text: str) -> int:
    if not _INT_RE.match(text):
        raise ValueError(f"invalid int64 {text!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"int64 out of range {text!r}")
    return value


def _parse_float64(text: str) -> float:
    if text != text.strip() or "_" in text:
        raise ValueError(f"invalid float64 {text!r}")
    value = float(text)
    if math.isinf(value) and "inf" not in text.lower():
        raise ValueError(f"float64 out of range {text!r}")
    return value


_PARSERS = {
    ValueType.STRING: str,
    ValueType.BOOL: _parse_bool,
    ValueType.INT64: _parse_int64,
    ValueType.FLOAT64: _parse_float64,
}


def decode_key_value(tag: KeyValueDocument) -> KeyValue:
    """Decode one stored tag.

    Raises:
        InvalidTagValue: If the value is absent or not a string, the declared
            type is unknown, or the value does not parse as that type.
    """
    details = {"key": tag.key, "type": tag.type, "value": tag.value}
    if tag.value is None:
        raise InvalidTagValue(f"missing value for tag {tag.key!r}", details=details)
    if not isinstance(tag.value, str):
        raise InvalidTagValue(
            f"non-string value of type {type(tag.value).__name__} for tag {tag.key!r}",
            details=details,
        )
    try:
        v_type = ValueType(tag.type)
        parser = _PARSERS[v_type]
    except (ValueError, KeyError):
        raise InvalidTagValue(
            f"not a valid value type {tag.type!r} for tag {tag.key!r}",
            details=details,
        ) from None
    try:
        value = parser(tag.value)
    except ValueError as exc:
        raise InvalidTagValue(
            f"value {tag.value!r} of tag {tag.key!r} is not a valid {v_type}",
            details=details,
        ) from exc
    return KeyValue(key=tag.key, v_type=v_type, value=value)


def decode_key_values(tags: list[KeyValueDocument]) -> list[KeyValue]:
    return [decode_key_value(tag) for tag in tags]


def decode_reference(ref: ReferenceDocument) -> SpanRef:
    try:
        ref_type = SpanRefType(ref.ref_type)
    except ValueError:
        raise InvalidReference(
            f"not a valid reference type {ref.ref_type!r}",
            details={"ref_type": ref.ref_type},
        ) from None
    return SpanRef(
        ref_type=ref_type,
        trace_id=TraceID.from_string(ref.trace_id),
        span_id=SpanID.from_string(ref.span_id),
    )


def decode_log(log: LogDocument) -> Log:
    return Log(
        timestamp=EPOCH + log.timestamp * _ONE_MILLISECOND,
        fields=decode_key_values(log.fields),
    )


def decode_span(document: Mapping[str, Any]) -> Span:
    """Map a stored document back to a domain span.

    Raises:
        MalformedIdentifier: A trace or span id does not parse.
        InvalidReference: A reference kind is unknown.
        InvalidTagValue: A tag value is missing or inconsistent with its type.
        DecodeError: The document is structurally malformed.
    """
    try:
        doc = SpanDocument.model_validate(document)
    except ValidationError as exc:
        logger.error("codec.invalid_document", errors=exc.error_count())
        raise DecodeError(
            "malformed span document",
            details={"errors": exc.errors(include_url=False, include_input=False)},
        ) from exc

    try:
        return Span(
            trace_id=TraceID.from_string(doc.trace_id),
            span_id=SpanID.from_string(doc.span_id),
            operation_name=doc.operation_name,
            references=[decode_reference(ref) for ref in doc.references],
            start_time=doc.start_time,
            duration=doc.duration * _ONE_MICROSECOND,
            tags=decode_key_values(doc.tags),
            logs=[decode_log(log) for log in doc.logs],
            process_id=doc.process_id,
            process=Process(
                service_name=doc.process.service_name,
                tags=decode_key_values(doc.process.tags),
            ),
            warnings=list(doc.warnings),
        )
    except DecodeError as exc:
        logger.error(
            "codec.decode_failed",
            trace_id=doc.trace_id,
            span_id=doc.span_id,
            error=str(exc),
        )
        raise
