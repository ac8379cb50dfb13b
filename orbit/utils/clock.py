from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current time; every persisted timestamp is UTC."""
    return datetime.now(timezone.utc)
