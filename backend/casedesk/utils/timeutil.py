from __future__ import annotations
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo on round-trip so we store naive UTC everywhere."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch_millis(raw) -> datetime:
    """Polling clients send JS-style millisecond epochs."""
    return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc).replace(tzinfo=None)


def isoformat(dt) -> str | None:
    if dt is None:
        return None
    return dt.replace(microsecond=0).isoformat() + 'Z'
