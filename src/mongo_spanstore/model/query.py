from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field, field_validator, model_validator

from mongo_spanstore.core.constants import DEFAULT_NUM_TRACES
from mongo_spanstore.model.span import as_utc


class TraceQueryParameters(BaseModel):
    """Search criteria for trace lookups.

    ``start_time_min``/``start_time_max`` bound span start times (exclusive).
    Empty ``service_name``/``operation_name`` and absent or zero duration
    bounds are omitted from the filter.  Every ``tags`` entry must be carried
    by the same span.
    """

    service_name: str = ""
    operation_name: str = ""
    tags: dict[str, str] = Field(default_factory=dict)
    start_time_min: datetime
    start_time_max: datetime
    duration_min: timedelta | None = None
    duration_max: timedelta | None = None
    num_traces: int = DEFAULT_NUM_TRACES

    @field_validator("start_time_min", "start_time_max")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _check_durations(self) -> TraceQueryParameters:
        for bound in (self.duration_min, self.duration_max):
            if bound is not None and bound < timedelta(0):
                raise ValueError("duration bounds must not be negative")
        return self


class OperationQueryParameters(BaseModel):
    service_name: str = ""
    span_kind: str = ""


class Operation(BaseModel):
    name: str
    span_kind: str = ""
