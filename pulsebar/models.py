from __future__ import annotations
"""
Published data model.

Every type here is an immutable value. Refreshers build a complete new
snapshot each cycle and swap it in; consumers never see a half-updated one.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pulsebar.utils.metrics import safe_delta_pct
from pulsebar.utils.urls import short_path as url_short_path, strip_site_prefix


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# 🔐 AUTH
# ============================================================

@dataclass(frozen=True)
class AuthState:
    is_authenticated: bool = False
    user_email: Optional[str] = None
    is_authenticating: bool = False
    last_error: Optional[str] = None


# ============================================================
# 🏷️ SELECTABLE SOURCES
# ============================================================

@dataclass(frozen=True)
class Property:
    """A GA4 property, id in 'properties/123' form"""
    id: str
    display_name: str
    website_url: Optional[str] = None

    @property
    def short_name(self) -> str:
        if self.website_url:
            return strip_site_prefix(self.website_url)
        return self.display_name


@dataclass(frozen=True)
class Site:
    """A Search Console site (URL-prefix or sc-domain: property)"""
    site_url: str
    permission_level: str

    @property
    def display_name(self) -> str:
        return strip_site_prefix(self.site_url)


# ============================================================
# 📊 GA4 METRICS
# ============================================================

@dataclass(frozen=True)
class MetricComparison:
    """Current vs previous value; named today/yesterday after the daily card"""
    today: float = 0.0
    yesterday: float = 0.0

    @property
    def percent_change(self) -> float:
        return safe_delta_pct(self.today, self.yesterday)

    @property
    def is_positive(self) -> bool:
        return self.percent_change >= 0


@dataclass(frozen=True)
class RealtimeSnapshot:
    active_users: int = 0
    sparkline_history: Tuple[int, ...] = ()


@dataclass(frozen=True)
class DailyMetrics:
    users: MetricComparison = MetricComparison()
    sessions: MetricComparison = MetricComparison()
    pageviews: MetricComparison = MetricComparison()
    bounce_rate: MetricComparison = MetricComparison()  # percent
    avg_session_duration: MetricComparison = MetricComparison()  # seconds


@dataclass(frozen=True)
class TrendPoint:
    date: date
    value: float
    previous_value: Optional[float] = None


@dataclass(frozen=True)
class ExtendedMetrics:
    """28-day totals against the preceding period"""
    active_users_28d: MetricComparison = MetricComparison()
    event_count: MetricComparison = MetricComparison()
    pageviews: MetricComparison = MetricComparison()
    trend_data: Tuple[TrendPoint, ...] = ()


@dataclass(frozen=True)
class TopPage:
    path: str
    title: str
    views: int


class SourceCategory(str, Enum):
    ORGANIC = "organic"
    DIRECT = "direct"
    SOCIAL = "social"
    EMAIL = "email"
    OTHER = "other"


@dataclass(frozen=True)
class TrafficSource:
    source: str
    medium: str
    percentage: float

    @property
    def display_name(self) -> str:
        return "Direct" if self.source == "(direct)" else self.source

    @property
    def category(self) -> SourceCategory:
        return {
            "organic": SourceCategory.ORGANIC,
            "social": SourceCategory.SOCIAL,
            "email": SourceCategory.EMAIL,
            "(none)": SourceCategory.DIRECT,
        }.get(self.medium.lower(), SourceCategory.OTHER)


@dataclass(frozen=True)
class CountryData:
    country_code: str
    country_name: str
    users: int
    percentage: float

    @property
    def flag(self) -> str:
        code = self.country_code.upper()
        if len(code) != 2 or not all("A" <= ch <= "Z" for ch in code):
            return "🌍"
        return "".join(chr(127397 + ord(ch)) for ch in code)


@dataclass(frozen=True)
class DeviceBreakdown:
    desktop: float = 0.0
    mobile: float = 0.0
    tablet: float = 0.0


@dataclass(frozen=True)
class AnalyticsSnapshot:
    selected_property: Optional[Property] = None
    realtime: RealtimeSnapshot = RealtimeSnapshot()
    daily: DailyMetrics = DailyMetrics()
    extended: ExtendedMetrics = ExtendedMetrics()
    top_pages: Tuple[TopPage, ...] = ()
    traffic_sources: Tuple[TrafficSource, ...] = ()
    countries: Tuple[CountryData, ...] = ()
    devices: DeviceBreakdown = DeviceBreakdown()
    last_updated: Optional[datetime] = None
    is_connected: bool = False
    is_loading: bool = False
    error: Optional[str] = None


# ============================================================
# 🔎 SEARCH CONSOLE
# ============================================================

@dataclass(frozen=True)
class SearchConsoleTrendPoint:
    date: date
    clicks: int
    impressions: int
    ctr: float  # percent
    position: float


@dataclass(frozen=True)
class SearchConsoleMetrics:
    clicks: MetricComparison = MetricComparison()
    impressions: MetricComparison = MetricComparison()
    ctr: MetricComparison = MetricComparison()  # percent
    position: MetricComparison = MetricComparison()
    trend_data: Tuple[SearchConsoleTrendPoint, ...] = ()


@dataclass(frozen=True)
class SearchQuery:
    query: str
    clicks: int
    impressions: int
    ctr: float
    position: float


@dataclass(frozen=True)
class SearchPage:
    page: str
    clicks: int
    impressions: int
    ctr: float
    position: float

    @property
    def short_path(self) -> str:
        return url_short_path(self.page)


@dataclass(frozen=True)
class SearchConsoleSnapshot:
    site: Optional[Site] = None
    metrics: SearchConsoleMetrics = SearchConsoleMetrics()
    top_queries: Tuple[SearchQuery, ...] = ()
    top_pages: Tuple[SearchPage, ...] = ()
    last_updated: Optional[datetime] = None
    is_loading: bool = False
    error: Optional[str] = None


# ============================================================
# 🚨 ALERTS
# ============================================================

class AlertType(str, Enum):
    SPIKE = "spike"
    DROP = "drop"
    GOAL_REACHED = "goal_reached"
    GOAL_EXCEEDED = "goal_exceeded"


@dataclass(frozen=True)
class AlertItem:
    type: AlertType
    title: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
