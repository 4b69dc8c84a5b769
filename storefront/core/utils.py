"""Small shared helpers."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware now, for column defaults."""
    return datetime.now(timezone.utc)


def blank_to_none(value):
    """Treat empty or whitespace-only strings as an absent selector value."""
    if isinstance(value, str) and not value.strip():
        return None
    return value
