from __future__ import annotations

from datetime import date, datetime, timezone

UTC = timezone.utc


def now_utc_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp as stored in room documents. A trailing ``Z`` is accepted.

    The wall-clock time is kept as written; no timezone conversion happens.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def iso_date_part(value: str | date | datetime | None) -> str | None:
    """``YYYY-MM-DD`` of a date, a datetime or an ISO string (date or timestamp)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    parsed = parse_iso_datetime(value)
    if parsed is not None:
        return parsed.date().isoformat()
    return None


def js_weekday_to_python(value: int) -> int:
    """JS numbering (0 = Sunday, 7 accepted as Sunday) to Python (0 = Monday)."""
    return (int(value) - 1) % 7
