"""Date helpers for record queries (ISO ``YYYY-MM-DD`` strings)."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def yesterday(today: Optional[date] = None) -> str:
    """Yesterday's date in ISO format, using the UTC calendar by default."""
    today = today or datetime.now(timezone.utc).date()
    return (today - timedelta(days=1)).isoformat()


def parse_iso_date(value: str) -> date:
    """Parse ``YYYY-MM-DD`` (a trailing time part is ignored)."""
    return date.fromisoformat(value.split("T")[0].strip())
