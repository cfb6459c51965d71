"""
Date resolution.

Picks the single authoritative timestamp for a file, in priority order:
  1. Embedded metadata (EXIF capture time)
  2. Filesystem creation time
  3. Filesystem modification time
  4. Discovery time (now)

Nothing here raises on bad input; invalid dates degrade to "now".
"""
import os
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Optional, Union

from ..models import (
    ResolvedDate, DateComponents,
    SOURCE_METADATA, SOURCE_CREATED, SOURCE_MODIFIED, SOURCE_DISCOVERED,
)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
FUTURE_TOLERANCE = timedelta(days=1)

DateInput = Union[datetime, str, None]


def _coerce(value: DateInput) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    try:
        if dt.tzinfo is None:
            dt = dt.astimezone()
        return dt.astimezone(UTC)
    except (ValueError, OverflowError, OSError):
        return None


def is_valid_date(value: DateInput, now: Optional[datetime] = None) -> bool:
    """Real instant, not before the Unix epoch, not later than now + 1 day."""
    dt = _coerce(value)
    if dt is None:
        return False
    now = now or datetime.now(UTC)
    return EPOCH <= dt <= now + FUTURE_TOLERANCE


def resolve_date(exif_date: DateInput = None,
                 created_at: DateInput = None,
                 modified_at: DateInput = None,
                 now: Optional[datetime] = None) -> ResolvedDate:
    now = now or datetime.now(UTC)

    for value, source in ((exif_date, SOURCE_METADATA),
                          (created_at, SOURCE_CREATED),
                          (modified_at, SOURCE_MODIFIED)):
        if is_valid_date(value, now):
            return ResolvedDate(date=_coerce(value), source=source)

    return ResolvedDate(date=now, source=SOURCE_DISCOVERED)


def date_components(value: DateInput) -> DateComponents:
    """
    Zero-padded year/month/day of the local calendar date. Invalid input
    yields today's. An EXIF time of 23:30 local stays on its own day.
    """
    dt = _coerce(value) if is_valid_date(value) else None
    if dt is None:
        dt = datetime.now(UTC)
    dt = dt.astimezone()
    return DateComponents(year=f"{dt.year:04d}", month=f"{dt.month:02d}", day=f"{dt.day:02d}")


def destination_path(base: Union[str, Path], value: DateInput, filename: str) -> str:
    """base/YYYY/MM/DD/filename"""
    parts = date_components(value)
    return os.path.join(str(base), parts.year, parts.month, parts.day, filename)
