from datetime import datetime, timezone


class Clock:
    """Source of the current time. Swapped for a fixed clock in tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return self.now().timestamp()


def ensure_aware(dt: datetime) -> datetime:
    """Normalize naive datetimes from DB to UTC-aware to avoid comparison errors."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


system_clock = Clock()
