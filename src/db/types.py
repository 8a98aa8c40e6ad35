"""Custom column types."""
from __future__ import annotations

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from src.core.timeutil import ensure_utc


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    Some backends (SQLite) drop the offset on storage, so values are
    normalised to UTC on the way in and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        return ensure_utc(value)
