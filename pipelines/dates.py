"""Date normalization for heterogeneous upstream date representations.

Spreadsheet exports mix intraday update timestamps (already expressed in UTC)
with daily closing values that only carry a calendar date. Both are turned
into timezone-aware UTC instants so ordering and key comparison stay stable.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import UTC, date, datetime, timedelta, timezone

logger = logging.getLogger(__name__)

ARGENTINA_OFFSET = timezone(timedelta(hours=-3))
DAILY_CLOSE_HOUR = 18

_SHEET_DATE_RE = re.compile(
    r"(\d{1,2})/(\d{1,2})/(\d{4})(?:\s+(\d{1,2}):(\d{1,2}):(\d{1,2}))?"
)
_QUARTER_RE = re.compile(r"T\s*([1-4])\s*(?:[-/]\s*)?(\d{4})", re.IGNORECASE)
_QUARTER_TEXT_RE = re.compile(r"([1-4])\s*(?:er|do|ro|to|°|º)?\.?\s*trim\w*\.?\s*(\d{4})", re.IGNORECASE)
_SEMESTER_RE = re.compile(r"S\s*([12])\s*(?:[-/]\s*)?(\d{4})", re.IGNORECASE)
_SEMESTER_TEXT_RE = re.compile(r"([12])\s*[°ºerdot]*\.?\s*semestre\s*(\d{4})", re.IGNORECASE)
_MONTH_RE = re.compile(r"(\d{4})-(\d{1,2})(?:-\d{1,2})?")


def normalize_instant(raw: str | None) -> datetime | None:
    """Convert ``D/M/YYYY[ HH:MM:SS]`` into a UTC instant.

    A time of day is read as UTC. A bare calendar date is read as the daily
    close, 18:00 at UTC-3. Anything else yields ``None``; callers drop the
    record instead of substituting a default date.
    """

    if raw is None:
        logger.warning("Could not parse date: empty value")
        return None

    match = _SHEET_DATE_RE.fullmatch(str(raw).strip())
    if not match:
        logger.warning("Could not parse date: %r", raw)
        return None

    day, month, year, hour, minute, second = match.groups()
    try:
        if hour is not None:
            return datetime(
                int(year), int(month), int(day), int(hour), int(minute), int(second), tzinfo=UTC
            )
        closing = datetime(
            int(year), int(month), int(day), DAILY_CLOSE_HOUR, tzinfo=ARGENTINA_OFFSET
        )
    except ValueError:
        logger.warning("Could not parse date (invalid calendar date): %r", raw)
        return None
    return closing.astimezone(UTC)


def format_instant(value: datetime) -> str:
    """Render an instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_calendar_date(raw: str | None) -> date | None:
    if not raw:
        return None
    text = str(raw).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_iso_instant(raw: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""

    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(str(raw).strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def quarter_end(label: str | None) -> date | None:
    """``T1 2025`` or ``1er trimestre 2025`` -> last day of that quarter."""

    if not label:
        return None
    text = str(label).strip()
    match = _QUARTER_RE.search(text) or _QUARTER_TEXT_RE.search(text)
    if not match:
        return None
    quarter, year = int(match.group(1)), int(match.group(2))
    month = quarter * 3
    return date(year, month, calendar.monthrange(year, month)[1])


def semester_end(label: str | None) -> date | None:
    """``S1 2025`` or ``2do. semestre 2016`` -> last day of that semester."""

    if not label:
        return None
    text = str(label).strip()
    match = _SEMESTER_RE.search(text) or _SEMESTER_TEXT_RE.search(text)
    if not match:
        return None
    semester, year = int(match.group(1)), int(match.group(2))
    return date(year, 6, 30) if semester == 1 else date(year, 12, 31)


def quarter_label(value: date) -> str:
    return f"T{(value.month - 1) // 3 + 1} {value.year}"


def semester_label(value: date) -> str:
    return f"S{1 if value.month <= 6 else 2} {value.year}"


SPANISH_MONTHS = {
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "setiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
}


def spanish_month(label: str | None) -> int | None:
    """``Enero``, ``ene-24`` or ``Ene.`` -> 1."""

    if not label:
        return None
    text = str(label).strip().lower().rstrip(".*")
    if text in SPANISH_MONTHS:
        return SPANISH_MONTHS[text]
    if len(text) < 3:
        return None
    prefix = text[:3]
    return next((number for name, number in SPANISH_MONTHS.items() if name.startswith(prefix)), None)


def month_start(label: str | date | None) -> date | None:
    """``2024-03`` (or any date inside March 2024) -> 2024-03-01."""

    if label is None:
        return None
    if isinstance(label, date):
        return date(label.year, label.month, 1)
    match = _MONTH_RE.fullmatch(str(label).strip())
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        return None
    return date(year, month, 1)


__all__ = [
    "ARGENTINA_OFFSET",
    "SPANISH_MONTHS",
    "format_instant",
    "month_start",
    "normalize_instant",
    "parse_calendar_date",
    "parse_iso_instant",
    "quarter_end",
    "quarter_label",
    "semester_end",
    "semester_label",
    "spanish_month",
]
