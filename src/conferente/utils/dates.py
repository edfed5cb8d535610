from __future__ import annotations

from datetime import date, datetime

from conferente.config import BRT


def parse_datetime(raw: str | None) -> datetime | None:
    """Parse dhEmi-style timestamps, YYYY-MM-DD dates and compact CF-e YYYYMMDD dates.

    Naive values are taken as Brasilia time so every result is comparable.
    Returns None when *raw* is empty or unparseable.
    """
    if not raw:
        return None
    raw = raw.strip()
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        try:
            parsed = datetime.strptime(raw, "%Y%m%d")
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=BRT)
    return parsed


def parse_date(raw: str | None) -> date | None:
    parsed = parse_datetime(raw)
    return parsed.date() if parsed is not None else None


def today_brt() -> date:
    return datetime.now(BRT).date()
