"""Datetime helpers."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pendulum

UTC = "UTC"


def now_utc() -> pendulum.DateTime:
    return pendulum.now(UTC)


def today_utc() -> date:
    return now_utc().date()


def month_bounds(year: int, month: int) -> tuple[pendulum.DateTime, pendulum.DateTime]:
    """Inclusive UTC range covering the whole of ``year``-``month``."""
    start = pendulum.datetime(year, month, 1, tz=UTC)
    return start, start.end_of("month")


def to_unix(value: datetime) -> int:
    return int(value.timestamp())


def from_unix(ts: int | float) -> datetime:
    return pendulum.from_timestamp(ts, tz=UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values read back from stores that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    return pendulum.parse(value).in_timezone(UTC)

