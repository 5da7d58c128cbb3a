"""Trace query translation."""

from __future__ import annotations

from mongo_spanstore.query.translator import (
    build_trace_fetch_filter,
    build_trace_id_filter,
    find_trace_ids,
)

__all__ = ["build_trace_fetch_filter", "build_trace_id_filter", "find_trace_ids"]
