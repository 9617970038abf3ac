from __future__ import annotations

from datetime import UTC, datetime


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def utc_today_iso() -> str:
    return datetime.now(UTC).date().isoformat()


def as_utc(value: datetime) -> datetime:
    # Naive datetimes are stored and reported by google-auth as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_utc_iso(raw_value: str) -> datetime:
    return as_utc(datetime.fromisoformat(raw_value))
