"""Trace and span identifiers.

A trace id is 128 bits held as two unsigned 64-bit halves; a span id is one
unsigned 64-bit value.  Both render as lowercase, zero-padded hex.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field

from mongo_spanstore.core.exceptions import MalformedIdentifier

_UINT64_MAX = (1 << 64) - 1
_TRACE_ID_RE = re.compile(r"^[0-9a-fA-F]{1,32}$")
_SPAN_ID_RE = re.compile(r"^[0-9a-fA-F]{1,16}$")


class TraceID(BaseModel):
    model_config = ConfigDict(frozen=True)

    high: int = Field(default=0, ge=0, le=_UINT64_MAX)
    low: int = Field(ge=0, le=_UINT64_MAX)

    @classmethod
    def from_string(cls, value: str) -> TraceID:
        """Parse 1-32 hex digits into a :class:`TraceID`.

        Raises:
            MalformedIdentifier: If *value* is empty, too long or not hex.
        """
        if not isinstance(value, str) or not _TRACE_ID_RE.match(value):
            raise MalformedIdentifier(
                f"malformed trace id: {value!r}", details={"trace_id": value}
            )
        if len(value) > 16:
            return cls(high=int(value[:-16], 16), low=int(value[-16:], 16))
        return cls(low=int(value, 16))

    def __str__(self) -> str:
        if self.high == 0:
            return f"{self.low:016x}"
        return f"{self.high:016x}{self.low:016x}"


class SpanID(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: int = Field(ge=0, le=_UINT64_MAX)

    @classmethod
    def from_string(cls, value: str) -> SpanID:
        """Parse 1-16 hex digits into a :class:`SpanID`.

        Raises:
            MalformedIdentifier: If *value* is empty, too long or not hex.
        """
        if not isinstance(value, str) or not _SPAN_ID_RE.match(value):
            raise MalformedIdentifier(
                f"malformed span id: {value!r}", details={"span_id": value}
            )
        return cls(value=int(value, 16))

    def __str__(self) -> str:
        return f"{self.value:016x}"
