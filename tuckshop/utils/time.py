import time
from datetime import datetime, timezone


def now_ms() -> int:
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """
    Naive UTC timestamp.
    SQLite drops tzinfo on round-trip, so every persisted datetime is stored naive-UTC
    and compared against this.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(dt) -> str:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def parse_iso(value):
    """Parse an ISO-8601 string (trailing 'Z' allowed) into naive UTC. None on failure."""
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
