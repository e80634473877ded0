"""Utilities for working with timestamps in UTC and calendar-day buckets."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Dict, List, Optional, Sequence, Tuple

# Monday first, matching ``date.weekday()``.
_WEEKDAY_LABELS: Dict[str, Tuple[str, ...]] = {
    "fa-IR": (
        "دوشنبه",
        "سه‌شنبه",
        "چهارشنبه",
        "پنجشنبه",
        "جمعه",
        "شنبه",
        "یکشنبه",
    ),
    "en-US": ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"),
    "de-DE": ("Mo", "Di", "Mi", "Do", "Fr", "Sa", "So"),
}
DEFAULT_WEEKDAY_LOCALE = "en-US"


def utc_now() -> datetime:
    """Return the current time as a timezone-aware ``datetime`` in UTC."""

    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalise ``dt`` to a timezone-aware UTC ``datetime``."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """Return an ISO-8601 string for ``dt`` in UTC, or ``None``."""

    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def trailing_days(now: datetime, days: int, tz: tzinfo) -> List[date]:
    """Return the last ``days`` calendar days in ``tz`` ending today, oldest first."""

    today = now.astimezone(tz).date()
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def start_of_day(day: date, tz: tzinfo) -> datetime:
    """Return midnight of ``day`` in ``tz`` expressed in UTC."""

    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def weekday_label(day: date, locale: str) -> str:
    """Return the short weekday name of ``day`` for ``locale``."""

    labels = _weekday_labels(locale)
    return labels[day.weekday()]


def _weekday_labels(locale: str) -> Sequence[str]:
    if locale in _WEEKDAY_LABELS:
        return _WEEKDAY_LABELS[locale]
    language = locale.replace("_", "-").split("-", 1)[0].lower()
    for key, labels in _WEEKDAY_LABELS.items():
        if key.split("-", 1)[0].lower() == language:
            return labels
    return _WEEKDAY_LABELS[DEFAULT_WEEKDAY_LOCALE]


__all__ = [
    "utc_now",
    "ensure_utc",
    "isoformat_utc",
    "trailing_days",
    "start_of_day",
    "weekday_label",
]
