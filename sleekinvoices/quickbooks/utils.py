"""Small helpers shared by the QuickBooks sync services."""
from datetime import date, datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (some drivers drop the tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate(value: Optional[str], limit: int) -> Optional[str]:
    """Cut a string to a QuickBooks field length limit."""
    if value is None:
        return None
    return value[:limit]


def escape_query_value(value: str) -> str:
    """Escape single quotes for the QuickBooks query language."""
    return value.replace("'", "\\'")


def qb_date(value: Union[date, datetime]) -> str:
    """Format a date the way QuickBooks expects (YYYY-MM-DD)."""
    if isinstance(value, datetime):
        value = as_utc(value).date()
    return value.isoformat()


def qb_timestamp(value: datetime) -> str:
    """Format a timestamp for MetaData.LastUpdatedTime comparisons."""
    return as_utc(value).strftime("%Y-%m-%d %H:%M:%S")
