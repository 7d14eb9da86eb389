"""
Timestamp helpers shared by the import pipeline and the punishment deriver.

Stored documents keep instants as ISO-8601 UTC strings with millisecond precision
("2024-03-01T12:00:00.000Z"), so equal instants always serialize identically and
sort lexicographically.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _utc_from_epoch_ms(value: float) -> Optional[datetime]:
    if math.isnan(value) or math.isinf(value):
        return None
    try:
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Lenient parse of a stored or imported instant.

    Accepts aware/naive datetimes, ISO-8601 strings (a trailing "Z" is fine) and
    epoch milliseconds. Naive values are taken as UTC. Returns None when the value
    cannot be read as an instant.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        try:
            dt = _utc_from_epoch_ms(float(value))
        except OverflowError:
            return None
        if dt is None:
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith("Z") or raw.endswith("z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:
        return None


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_epoch_ms(dt: datetime) -> int:
    return int(round(dt.timestamp() * 1000))
