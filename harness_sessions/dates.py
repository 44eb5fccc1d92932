"""Timestamp helpers. Everything returned here is timezone-aware UTC."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 string or an epoch number (seconds or milliseconds)."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # OpenCode writes epoch milliseconds
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def file_mtime(path: Path) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


def file_ctime(path: Path) -> Optional[datetime]:
    """Birth time where the platform records it, else the inode change time."""
    try:
        st = path.stat()
    except OSError:
        return None
    born = getattr(st, "st_birthtime", None) or st.st_ctime
    return datetime.fromtimestamp(born, tz=timezone.utc)


def is_recent(moment: Optional[datetime], now: datetime, window_seconds: float) -> bool:
    """True when ``moment`` lies within ``window_seconds`` before ``now``."""
    if moment is None:
        return False
    return (now - moment).total_seconds() < window_seconds
