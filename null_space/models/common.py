"""Shared helpers for model (de)serialization."""

from datetime import datetime, timedelta, timezone
from typing import Any

from ..exceptions import ValidationError


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def next_timestamp(previous: datetime) -> datetime:
    """Return "now", nudged forward so it is strictly after ``previous``."""
    now = utc_now()
    if now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


def format_timestamp(value: datetime) -> str:
    return value.isoformat()


def parse_timestamp(data: dict[str, Any], key: str, record: str) -> datetime:
    """Parse an ISO-8601 field, treating naive values as UTC."""
    raw = require_field(data, key, str, record)
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as e:
        raise ValidationError(
            f"{record}.{key} is not an ISO-8601 timestamp: {raw!r}",
            operation="parse",
        ) from e
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def require_field(data: dict[str, Any], key: str, expected: type, record: str) -> Any:
    """Fetch ``data[key]`` and check its type.

    Raises:
        ValidationError: If the field is missing or has the wrong type
    """
    if key not in data or data[key] is None:
        raise ValidationError(f"{record} is missing field '{key}'", operation="parse")
    value = data[key]
    # bool is a subclass of int; never accept it where a number is expected
    if isinstance(value, bool) and expected is not bool:
        raise ValidationError(
            f"{record}.{key} must be {expected.__name__}, got bool", operation="parse"
        )
    if not isinstance(value, expected):
        raise ValidationError(
            f"{record}.{key} must be {expected.__name__}, got {type(value).__name__}",
            operation="parse",
        )
    return value


def require_mapping(data: Any, record: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError(
            f"{record} must be a JSON object, got {type(data).__name__}",
            operation="parse",
        )
    return data
