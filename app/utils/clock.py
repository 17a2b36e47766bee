from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware now; sub-second precision keeps message/notification ordering stable."""
    return datetime.now(timezone.utc)
