"""Domain model for spans, traces and dependency links."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from mongo_spanstore.core.constants import SpanRefType, ValueType
from mongo_spanstore.model.ids import SpanID, TraceID

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class KeyValue(BaseModel):
    """A typed tag attached to a span, a process or a log entry."""

    key: str
    v_type: ValueType = ValueType.STRING
    value: str | bool | int | float | bytes = ""

    @model_validator(mode="after")
    def _value_matches_type(self) -> KeyValue:
        value = self.value
        if self.v_type == ValueType.STRING:
            ok = isinstance(value, str)
        elif self.v_type == ValueType.BOOL:
            ok = isinstance(value, bool)
        elif self.v_type == ValueType.INT64:
            ok = (
                isinstance(value, int)
                and not isinstance(value, bool)
                and _INT64_MIN <= value <= _INT64_MAX
            )
        elif self.v_type == ValueType.FLOAT64:
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        else:
            ok = isinstance(value, bytes)
        if not ok:
            raise ValueError(
                f"value {value!r} of tag {self.key!r} is not a valid {self.v_type}"
            )
        return self

    @classmethod
    def of_string(cls, key: str, value: str) -> KeyValue:
        return cls(key=key, v_type=ValueType.STRING, value=value)

    @classmethod
    def of_bool(cls, key: str, value: bool) -> KeyValue:
        return cls(key=key, v_type=ValueType.BOOL, value=value)

    @classmethod
    def of_int64(cls, key: str, value: int) -> KeyValue:
        return cls(key=key, v_type=ValueType.INT64, value=value)

    @classmethod
    def of_float64(cls, key: str, value: float) -> KeyValue:
        return cls(key=key, v_type=ValueType.FLOAT64, value=value)

    @classmethod
    def of_binary(cls, key: str, value: bytes) -> KeyValue:
        return cls(key=key, v_type=ValueType.BINARY, value=value)

    def as_string(self) -> str:
        """Render the value as text, the way it is persisted."""
        if self.v_type == ValueType.BOOL:
            return "true" if self.value else "false"
        if self.v_type == ValueType.FLOAT64:
            return repr(float(self.value))  # shortest round-trip form
        if self.v_type == ValueType.BINARY:
            raw = self.value
            return raw.hex() if isinstance(raw, bytes) else str(raw)
        return str(self.value)


class SpanRef(BaseModel):
    ref_type: SpanRefType = SpanRefType.CHILD_OF
    trace_id: TraceID
    span_id: SpanID

    @classmethod
    def child_of(cls, trace_id: TraceID, span_id: SpanID) -> SpanRef:
        return cls(ref_type=SpanRefType.CHILD_OF, trace_id=trace_id, span_id=span_id)

    @classmethod
    def follows_from(cls, trace_id: TraceID, span_id: SpanID) -> SpanRef:
        return cls(
            ref_type=SpanRefType.FOLLOWS_FROM, trace_id=trace_id, span_id=span_id
        )


class Process(BaseModel):
    service_name: str = ""
    tags: list[KeyValue] = Field(default_factory=list)


class Log(BaseModel):
    timestamp: datetime
    fields: list[KeyValue] = Field(default_factory=list)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class Span(BaseModel):
    """One timed unit of work, owned by one process."""

    trace_id: TraceID
    span_id: SpanID
    operation_name: str = ""
    references: list[SpanRef] = Field(default_factory=list)
    start_time: datetime
    duration: timedelta = timedelta(0)
    tags: list[KeyValue] = Field(default_factory=list)
    logs: list[Log] = Field(default_factory=list)
    process_id: str = ""
    process: Process = Field(default_factory=Process)
    warnings: list[str] = Field(default_factory=list)

    @field_validator("start_time")
    @classmethod
    def _start_time_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("duration")
    @classmethod
    def _non_negative_duration(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("duration must not be negative")
        return value

    @property
    def service_name(self) -> str:
        return self.process.service_name


class Trace(BaseModel):
    """All spans sharing one trace id, in arrival order."""

    spans: list[Span] = Field(default_factory=list)

    @property
    def trace_id(self) -> TraceID | None:
        return self.spans[0].trace_id if self.spans else None


class DependencyLink(BaseModel):
    """An aggregated parent-service -> child-service call edge."""

    parent: str
    child: str
    call_count: int = Field(default=1, ge=1)

    def key(self) -> tuple[str, str]:
        return (self.parent, self.child)

    def to_dict(self) -> dict[str, Any]:
        return {"parent": self.parent, "child": self.child, "callCount": self.call_count}
