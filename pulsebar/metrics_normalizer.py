from __future__ import annotations
"""
Metrics Normalizer

Pure transforms from raw GA4 / Search Console response payloads into the
published model. Nothing in here raises on odd data:
- string-typed numbers that fail to parse count as 0
- missing rows produce empty/zero structures
- zero totals produce 0% shares rather than dividing by zero
"""

from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pulsebar.config.date_windows import SPARKLINE_CAPACITY
from pulsebar.models import (
    CountryData,
    DailyMetrics,
    DeviceBreakdown,
    ExtendedMetrics,
    MetricComparison,
    Property,
    SearchConsoleMetrics,
    SearchConsoleTrendPoint,
    SearchPage,
    SearchQuery,
    Site,
    TopPage,
    TrafficSource,
    TrendPoint,
)
from pulsebar.utils.metrics import mean, parse_int, parse_number, percent_of_total
from pulsebar.utils.windows import ComparisonWindows, parse_report_date, split_rows_by_window

# Range markers GA4 puts in the dateRange dimension when a report has two ranges
YESTERDAY_RANGE = "date_range_0"
TODAY_RANGE = "date_range_1"


# ============================================================
# 🧩 GA4 ROW ACCESS
# ============================================================

def _rows(payload: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not payload:
        return []
    return payload.get("rows") or []


def _dimension_values(row: Dict[str, Any]) -> List[str]:
    return [item.get("value", "") for item in row.get("dimensionValues") or []]


def _metric_values(row: Dict[str, Any]) -> List[Any]:
    return [item.get("value") for item in row.get("metricValues") or []]


def _metric(row: Dict[str, Any], index: int) -> float:
    values = _metric_values(row)
    return parse_number(values[index]) if index < len(values) else 0.0


def _dimension_index(payload: Dict[str, Any], name: str, default: int = 0) -> int:
    """Position of a named dimension in the response headers"""
    headers = [header.get("name") for header in payload.get("dimensionHeaders") or []]
    return headers.index(name) if name in headers else default


# ============================================================
# 🏷️ PROPERTIES
# ============================================================

def parse_account_summaries(payload: Dict[str, Any]) -> List[Property]:
    """Flatten Admin API accountSummaries into GA4 properties"""
    properties = []
    for account in payload.get("accountSummaries") or []:
        for summary in account.get("propertySummaries") or []:
            property_id = summary.get("property")
            display_name = summary.get("displayName")
            if property_id and display_name:
                properties.append(Property(id=property_id, display_name=display_name))
    return properties


# ============================================================
# 📊 GA4 REPORTS
# ============================================================

def normalize_realtime(payload: Dict[str, Any]) -> int:
    rows = _rows(payload)
    if not rows:
        return 0
    return parse_int(_metric_values(rows[0])[0] if _metric_values(rows[0]) else 0)


def normalize_daily(payload: Dict[str, Any]) -> DailyMetrics:
    """
    Split a two-range report into yesterday/today by the dateRange marker.
    Row order is not trusted.
    """
    range_index = _dimension_index(payload, "dateRange")
    buckets: Dict[str, Dict[Any, Any]] = {}

    for row in _rows(payload):
        dimensions = _dimension_values(row)
        marker = dimensions[range_index] if range_index < len(dimensions) else ""
        if marker in (YESTERDAY_RANGE, TODAY_RANGE):
            buckets[marker] = row

    def comparison(index: int, scale: float = 1.0) -> MetricComparison:
        today_row = buckets.get(TODAY_RANGE)
        yesterday_row = buckets.get(YESTERDAY_RANGE)
        return MetricComparison(
            today=_metric(today_row, index) * scale if today_row else 0.0,
            yesterday=_metric(yesterday_row, index) * scale if yesterday_row else 0.0,
        )

    return DailyMetrics(
        users=comparison(0),
        sessions=comparison(1),
        pageviews=comparison(2),
        bounce_rate=comparison(3, scale=100.0),
        avg_session_duration=comparison(4),
    )


def normalize_extended(payload: Dict[str, Any], windows: ComparisonWindows) -> ExtendedMetrics:
    """
    Bucket daily rows into the current and previous periods using the same
    boundaries the request was built from, then build the ascending trend.
    A day present in both ranges (GA4 emits one row per range) is summed per range.
    """
    date_index = _dimension_index(payload, "date")
    dated_rows = []

    for row in _rows(payload):
        dimensions = _dimension_values(row)
        row_date = parse_report_date(dimensions[date_index]) if date_index < len(dimensions) else None
        if row_date is None:
            continue
        dated_rows.append({
            'date': row_date,
            'users': _metric(row, 0),
            'events': _metric(row, 1),
            'pageviews': _metric(row, 2),
        })

    current_rows, previous_rows = split_rows_by_window(dated_rows, windows)

    current_by_day: Dict[date, float] = defaultdict(float)
    previous_by_day: Dict[date, float] = defaultdict(float)
    for row in current_rows:
        current_by_day[row['date']] += row['users']
    for row in previous_rows:
        previous_by_day[row['date']] += row['users']

    trend = [
        TrendPoint(
            date=day,
            value=users,
            previous_value=previous_by_day.get(day - windows.offset),
        )
        for day, users in sorted(current_by_day.items())
    ]

    def total(rows: List[Dict[str, Any]], key: str) -> float:
        return sum(row[key] for row in rows)

    return ExtendedMetrics(
        active_users_28d=MetricComparison(total(current_rows, 'users'), total(previous_rows, 'users')),
        event_count=MetricComparison(total(current_rows, 'events'), total(previous_rows, 'events')),
        pageviews=MetricComparison(total(current_rows, 'pageviews'), total(previous_rows, 'pageviews')),
        trend_data=tuple(trend),
    )


def normalize_top_pages(payload: Dict[str, Any]) -> List[TopPage]:
    pages = []
    for row in _rows(payload):
        dimensions = _dimension_values(row)
        if len(dimensions) < 2:
            continue
        pages.append(TopPage(path=dimensions[0], title=dimensions[1], views=parse_int(_metric(row, 0))))
    return pages


def normalize_traffic_sources(payload: Dict[str, Any]) -> List[TrafficSource]:
    rows = [row for row in _rows(payload) if len(_dimension_values(row)) >= 2]
    total_sessions = sum(_metric(row, 0) for row in rows)

    sources = []
    for row in rows:
        source, medium = _dimension_values(row)[:2]
        sources.append(TrafficSource(
            source=source,
            medium=medium,
            percentage=percent_of_total(_metric(row, 0), total_sessions),
        ))
    return sources


def normalize_countries(payload: Dict[str, Any]) -> List[CountryData]:
    rows = [row for row in _rows(payload) if len(_dimension_values(row)) >= 2]
    total_users = sum(parse_int(_metric(row, 0)) for row in rows)

    countries = []
    for row in rows:
        country_name, country_code = _dimension_values(row)[:2]
        users = parse_int(_metric(row, 0))
        countries.append(CountryData(
            country_code=country_code,
            country_name=country_name,
            users=users,
            percentage=percent_of_total(users, total_users),
        ))
    return countries


def normalize_devices(payload: Dict[str, Any]) -> DeviceBreakdown:
    users_by_device: Dict[str, int] = defaultdict(int)
    for row in _rows(payload):
        dimensions = _dimension_values(row)
        if not dimensions:
            continue
        users_by_device[dimensions[0].lower()] += parse_int(_metric(row, 0))

    total = sum(users_by_device.values())
    return DeviceBreakdown(
        desktop=percent_of_total(users_by_device["desktop"], total),
        mobile=percent_of_total(users_by_device["mobile"], total),
        tablet=percent_of_total(users_by_device["tablet"], total),
    )


# ============================================================
# 🔎 SEARCH CONSOLE
# ============================================================

def parse_sites(payload: Dict[str, Any]) -> List[Site]:
    sites = []
    for entry in payload.get("siteEntry") or []:
        site_url = entry.get("siteUrl")
        permission_level = entry.get("permissionLevel")
        if site_url and permission_level:
            sites.append(Site(site_url=site_url, permission_level=permission_level))
    return sites


def _search_row_values(row: Dict[str, Any]) -> Dict[str, float]:
    return {
        'clicks': parse_int(row.get('clicks', 0)),
        'impressions': parse_int(row.get('impressions', 0)),
        'ctr': parse_number(row.get('ctr', 0.0)),
        'position': parse_number(row.get('position', 0.0)),
    }


def normalize_search_metrics(
    current_rows: List[Dict[str, Any]],
    previous_rows: List[Dict[str, Any]],
) -> SearchConsoleMetrics:
    """
    Args:
        current_rows: Current period rows with dimensions=['date']
        previous_rows: Previous period rows without dimensions (a single totals row)
    """
    clicks = 0
    impressions = 0
    positions = []
    trend_points = []

    for row in current_rows:
        values = _search_row_values(row)
        clicks += values['clicks']
        impressions += values['impressions']
        positions.append(values['position'])

        keys = row.get('keys') or []
        row_date = parse_report_date(keys[0]) if keys else None
        if row_date is not None:
            trend_points.append(SearchConsoleTrendPoint(
                date=row_date,
                clicks=values['clicks'],
                impressions=values['impressions'],
                ctr=values['ctr'] * 100,
                position=values['position'],
            ))

    ctr = clicks / max(1, impressions) * 100 if current_rows else 0.0
    position = mean(positions)

    previous = _search_row_values(previous_rows[0]) if previous_rows else _search_row_values({})

    return SearchConsoleMetrics(
        clicks=MetricComparison(clicks, previous['clicks']),
        impressions=MetricComparison(impressions, previous['impressions']),
        ctr=MetricComparison(ctr, previous['ctr'] * 100),
        position=MetricComparison(position, previous['position']),
        trend_data=tuple(sorted(trend_points, key=lambda point: point.date)),
    )


def normalize_search_queries(rows: List[Dict[str, Any]]) -> List[SearchQuery]:
    queries = []
    for row in rows:
        keys = row.get('keys') or []
        if not keys:
            continue
        values = _search_row_values(row)
        queries.append(SearchQuery(
            query=keys[0],
            clicks=values['clicks'],
            impressions=values['impressions'],
            ctr=values['ctr'] * 100,
            position=values['position'],
        ))
    return queries


def normalize_search_pages(rows: List[Dict[str, Any]]) -> List[SearchPage]:
    pages = []
    for row in rows:
        keys = row.get('keys') or []
        if not keys:
            continue
        values = _search_row_values(row)
        pages.append(SearchPage(
            page=keys[0],
            clicks=values['clicks'],
            impressions=values['impressions'],
            ctr=values['ctr'] * 100,
            position=values['position'],
        ))
    return pages


# ============================================================
# 📈 SPARKLINE
# ============================================================

def append_sparkline(
    history: Sequence[int],
    sample: int,
    capacity: int = SPARKLINE_CAPACITY,
) -> Tuple[int, ...]:
    """New history with sample appended last; oldest entries dropped past capacity"""
    updated = tuple(history) + (sample,)
    return updated[-capacity:] if len(updated) > capacity else updated
