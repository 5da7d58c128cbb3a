"""OpenTelemetry instrumentation of store operations.

Only ``opentelemetry-api`` is used here.  Without an SDK tracer provider
installed by the host process the spans are non-recording and cost next to
nothing; exporting them is the host's concern.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from opentelemetry import trace
from opentelemetry.trace import Span as OTelSpan, Status, StatusCode

_TRACER_NAME = "mongo_spanstore"


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(_TRACER_NAME)


@asynccontextmanager
async def traced(name: str, **attributes: Any) -> AsyncIterator[OTelSpan]:
    """Run the enclosed block inside a span named *name*.

    Exceptions are recorded on the span, its status set to ERROR, and
    re-raised unchanged.
    """
    with get_tracer().start_as_current_span(
        name, record_exception=False, set_status_on_exception=False
    ) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except BaseException as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
