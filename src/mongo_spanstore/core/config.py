from __future__ import annotations

import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from mongo_spanstore.core.constants import (
    DEFAULT_COLLECTION,
    DEFAULT_DATABASE,
    DEFAULT_MONGO_URL,
    DEFAULT_SPAN_TTL,
    DEFAULT_STORE_TIMEOUT,
    MAX_TRACES_FOR_DEPENDENCIES,
)
from mongo_spanstore.core.exceptions import ConfigurationError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|us|µs|ns|s|m|h|d)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

# env var suffix -> field name
_ENV_FIELDS = {
    "MONGO_URL": "mongo_url",
    "MONGO_DATABASE": "mongo_database",
    "MONGO_COLLECTION": "mongo_collection",
    "MONGO_TIMEOUT_DURATION": "mongo_timeout",
    "MONGO_SPAN_TTL_DURATION": "span_ttl",
    "MAX_TRACES_FOR_DEPENDENCIES": "max_traces_for_dependencies",
    "LOG_LEVEL": "log_level",
}

# yaml keys that differ from field names
_YAML_ALIASES = {
    "mongo_timeout_duration": "mongo_timeout",
    "mongo_span_ttl_duration": "span_ttl",
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string such as ``"5s"``, ``"1h30m"`` or ``"14d"``.

    A bare number is read as seconds.

    Raises:
        ValueError: If *value* is not a valid duration.
    """
    text = value.strip()
    try:
        return timedelta(seconds=float(text))
    except (ValueError, OverflowError):
        pass
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=total)


class StoreConfig(BaseModel):
    """Connection and behaviour settings for the MongoDB span store."""

    mongo_url: str = DEFAULT_MONGO_URL
    mongo_database: str = Field(default=DEFAULT_DATABASE, min_length=1)
    mongo_collection: str = Field(default=DEFAULT_COLLECTION, min_length=1)
    mongo_timeout: timedelta = DEFAULT_STORE_TIMEOUT
    """Server-side time limit applied to distinct/find calls."""
    span_ttl: timedelta = DEFAULT_SPAN_TTL
    """Retention; spans older than this are expired by the store's TTL index."""
    max_traces_for_dependencies: int = Field(
        default=MAX_TRACES_FOR_DEPENDENCIES, ge=1
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"

    @field_validator("mongo_timeout", "span_ttl", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @field_validator("mongo_timeout", "span_ttl")
    @classmethod
    def _positive_duration(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("duration must be positive")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> StoreConfig:
        """Create a :class:`StoreConfig` from ``SPANSTORE_*`` environment variables.

        Reads the following env vars (all optional):

        * ``SPANSTORE_MONGO_URL`` → ``mongo_url``
        * ``SPANSTORE_MONGO_DATABASE`` → ``mongo_database``
        * ``SPANSTORE_MONGO_COLLECTION`` → ``mongo_collection``
        * ``SPANSTORE_MONGO_TIMEOUT_DURATION`` → ``mongo_timeout`` (e.g. ``5s``)
        * ``SPANSTORE_MONGO_SPAN_TTL_DURATION`` → ``span_ttl`` (e.g. ``336h``)
        * ``SPANSTORE_MAX_TRACES_FOR_DEPENDENCIES`` → ``max_traces_for_dependencies``
        * ``SPANSTORE_LOG_LEVEL`` → ``log_level``

        Any variable that is not set or is empty is left at its default value
        (or at the value given in *overrides*).

        Raises:
            ConfigurationError: If a value fails validation.
        """
        kwargs: dict[str, Any] = dict(overrides)
        for suffix, field in _ENV_FIELDS.items():
            value = os.environ.get(f"SPANSTORE_{suffix}")
            if value:
                kwargs[field] = value
        return cls._build(kwargs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> StoreConfig:
        """Load settings from a YAML file, then apply environment overrides.

        Keys use the snake_case names of the fields; ``mongo_timeout_duration``
        and ``mongo_span_ttl_duration`` are accepted as aliases.

        Raises:
            ConfigurationError: If the file cannot be read or parsed, or a
                value fails validation.
        """
        try:
            raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                f"failed to parse configuration file {path}",
                details={"path": str(path)},
            ) from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"configuration file {path} must contain a mapping",
                details={"path": str(path)},
            )
        file_values = {_YAML_ALIASES.get(k, k): v for k, v in raw.items()}
        return cls.from_env(**file_values)

    @classmethod
    def _build(cls, kwargs: dict[str, Any]) -> StoreConfig:
        try:
            return cls(**kwargs)
        except ValidationError as exc:
            raise ConfigurationError(
                "invalid span store configuration",
                details={"errors": exc.errors(include_url=False)},
            ) from exc
