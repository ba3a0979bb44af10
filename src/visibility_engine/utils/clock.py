"""Timezone helpers.

All timestamps are handled as aware UTC datetimes. Some backends (SQLite)
hand back naive values; ``ensure_utc`` normalises them on the way out of
the database.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
