from __future__ import annotations
"""
Centralized window logic for report date ranges.
Builds the current/previous comparison windows and buckets dated rows
into them using the exact same boundaries.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional, Tuple

from pulsebar.config.date_windows import EXTENDED_WINDOW_DAYS, REPORT_END_OFFSET_DAYS

GA4_DATE_FORMAT = "%Y%m%d"
ISO_DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class ComparisonWindows:
    current_start: date
    current_end: date
    previous_start: date
    previous_end: date

    @property
    def offset(self) -> timedelta:
        """Distance between a current-period day and its previous-period twin"""
        return self.current_start - self.previous_start

    def contains_current(self, day: date) -> bool:
        return self.current_start <= day <= self.current_end

    def contains_previous(self, day: date) -> bool:
        return self.previous_start <= day <= self.previous_end

    def as_iso(self) -> Tuple[Tuple[str, str], Tuple[str, str]]:
        return (
            (self.current_start.strftime(ISO_DATE_FORMAT), self.current_end.strftime(ISO_DATE_FORMAT)),
            (self.previous_start.strftime(ISO_DATE_FORMAT), self.previous_end.strftime(ISO_DATE_FORMAT)),
        )


def local_today(now: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of `now` in tz, or in the system time zone when tz is None"""
    return now.astimezone(tz).date()


def comparison_windows(today: date, days: int = EXTENDED_WINDOW_DAYS) -> ComparisonWindows:
    """
    Current window ends yesterday and starts `days` before that; the previous
    window is the equally sized span directly before it.
    """
    current_end = today - timedelta(days=REPORT_END_OFFSET_DAYS)
    current_start = current_end - timedelta(days=days)
    previous_end = current_start - timedelta(days=1)
    previous_start = previous_end - timedelta(days=days)
    return ComparisonWindows(current_start, current_end, previous_start, previous_end)


def parse_report_date(value: str) -> Optional[date]:
    """GA4 returns YYYYMMDD, Search Console YYYY-MM-DD; anything else → None"""
    for fmt in (GA4_DATE_FORMAT, ISO_DATE_FORMAT):
        try:
            return datetime.strptime(value, fmt).date()
        except (TypeError, ValueError):
            continue
    return None


def split_rows_by_window(
    rows: List[Dict[str, Any]],
    windows: ComparisonWindows,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Split rows carrying a 'date' key into (current, previous) buckets.
    Rows outside both windows are dropped.
    """
    current_rows = []
    previous_rows = []

    for row in rows:
        row_date = row['date']
        if windows.contains_current(row_date):
            current_rows.append(row)
        elif windows.contains_previous(row_date):
            previous_rows.append(row)

    return current_rows, previous_rows
