from __future__ import annotations

import threading
from datetime import UTC, date, datetime, timedelta

_CLOCK_LOCK = threading.Lock()
_last_stamp: datetime | None = None


def utc_now() -> datetime:
    """Current UTC time, strictly increasing across calls in this process."""
    global _last_stamp
    with _CLOCK_LOCK:
        now = datetime.now(UTC)
        if _last_stamp is not None and now <= _last_stamp:
            now = _last_stamp + timedelta(microseconds=1)
        _last_stamp = now
        return now


def utc_now_iso() -> str:
    return utc_now().isoformat(timespec="microseconds")


def today_iso() -> str:
    return date.today().isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def advance_timestamp(previous: str | None) -> str:
    """Return a timestamp that sorts after ``previous``."""
    now = utc_now()
    prior = parse_timestamp(previous)
    if prior is not None and now <= prior:
        now = prior + timedelta(microseconds=1)
    return now.astimezone(UTC).isoformat(timespec="microseconds")


def format_currency(value: float | None) -> str:
    if value is None:
        return "-"
    return f"${value:,.0f}"
