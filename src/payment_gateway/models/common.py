"""Helpers shared by the document-backed models."""

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def dump_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def load_datetime(value: Any) -> datetime | None:
    """Parse an ISO timestamp, assuming UTC when no offset is stored."""
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
