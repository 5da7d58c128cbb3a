from __future__ import annotations

from typing import Any


class SpanStoreError(Exception):
    """Base exception for all span store errors.

    Attributes:
        code: Optional machine-readable error code (e.g. ``"TRACE_NOT_FOUND"``).
        details: Arbitrary key/value context about the error.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        """Whether the operation that raised this error can be retried."""
        return False


class ConfigurationError(SpanStoreError): ...


class OperationCancelled(SpanStoreError): ...


# ---------------------------------------------------------------------------
# Lookup failures
# ---------------------------------------------------------------------------


class NotFound(SpanStoreError): ...


class TraceNotFound(NotFound):
    """No span document carries the requested trace id."""

    def __init__(self, trace_id: str) -> None:
        super().__init__(
            f"trace not found: {trace_id}",
            code="TRACE_NOT_FOUND",
            details={"trace_id": trace_id},
        )
        self.trace_id = trace_id


# ---------------------------------------------------------------------------
# Decode failures -- a stored document that cannot be mapped back to a span
# ---------------------------------------------------------------------------


class DecodeError(SpanStoreError): ...


class InvalidReference(DecodeError): ...


class InvalidTagValue(DecodeError): ...


class MalformedIdentifier(DecodeError): ...


# ---------------------------------------------------------------------------
# Store failures
# ---------------------------------------------------------------------------


class StoreUnavailable(SpanStoreError):
    """The underlying document store rejected or failed a call.

    The driver exception is chained as ``__cause__``.  Retryable in
    principle, but nothing in this package retries on its own.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True
