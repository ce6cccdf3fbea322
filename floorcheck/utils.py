from datetime import datetime
from typing import Optional

import pytz


def utcnow() -> datetime:
    return datetime.now(pytz.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values (SQLite hands those back) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None
