"""
Display formatting for metric values.
Every helper tolerates NaN, infinities and negative inputs.
"""

import math
from datetime import datetime, timezone
from typing import Optional


def _usable(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def format_number(value: float) -> str:
    """1_500_000 → '1.5M', 2_300 → '2.3K', 999 → '999'"""
    if not _usable(value) or value < 0:
        return "0"

    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    elif value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{value:.0f}"


def format_duration(seconds: float) -> str:
    """Session duration as 'Xm SSs'"""
    if not _usable(seconds) or seconds < 0:
        return "0m 00s"

    total_seconds = int(seconds)
    minutes, secs = divmod(total_seconds, 60)
    return f"{minutes}m {secs:02d}s"


def format_percentage(value: float) -> str:
    """Share value clamped to 0..100"""
    if not _usable(value):
        return "0.0%"
    clamped = max(0.0, min(value, 100.0))
    return f"{clamped:.1f}%"


def format_change(value: float) -> str:
    """Signed change clamped to -999..+999"""
    if not _usable(value):
        return "+0.0%"
    clamped = max(-999.0, min(value, 999.0))
    sign = "+" if clamped >= 0 else ""
    return f"{sign}{clamped:.1f}%"


def _seconds_since(moment: datetime, now: Optional[datetime]) -> int:
    now = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max(0, int((now - moment).total_seconds()))


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    """'just now', '5m ago', '2h ago'"""
    seconds = _seconds_since(moment, now)
    if seconds < 60:
        return "just now"
    elif seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


def time_ago_compact(moment: datetime, now: Optional[datetime] = None) -> str:
    """'now', '5m', '2h', '3d'"""
    seconds = _seconds_since(moment, now)
    if seconds < 60:
        return "now"
    elif seconds < 3600:
        return f"{seconds // 60}m"
    elif seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"
