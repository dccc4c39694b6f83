from datetime import datetime, timezone


class SystemClock:
    """Wall-clock time provider."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
