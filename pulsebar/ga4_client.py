from __future__ import annotations
"""
Google Analytics 4 API Client
Typed fetchers for every report the analytics snapshot is built from.

Transport is plain REST over a shared requests.Session:
- Admin API  : account/property discovery
- Data API   : runReport / runRealtimeReport per property

Every call asks GoogleAuthHandler for a valid bearer token first, so token
refresh always happens before the request goes out.
"""

from datetime import date, datetime, tzinfo
from typing import Any, Callable, Dict, List, Optional

import requests

from pulsebar.auth_handler import GoogleAuthHandler
from pulsebar.config.date_windows import GA4_TOP_ROWS
from pulsebar.errors import ApiError, NetworkError
from pulsebar.metrics_normalizer import (
    normalize_countries,
    normalize_daily,
    normalize_devices,
    normalize_extended,
    normalize_realtime,
    normalize_top_pages,
    normalize_traffic_sources,
    parse_account_summaries,
)
from pulsebar.models import (
    CountryData,
    DailyMetrics,
    DeviceBreakdown,
    ExtendedMetrics,
    Property,
    TopPage,
    TrafficSource,
    utcnow,
)
from pulsebar.utils.windows import comparison_windows, local_today

ADMIN_API_BASE = "https://analyticsadmin.googleapis.com/v1beta"
DATA_API_BASE = "https://analyticsdata.googleapis.com/v1beta"

TODAY_RANGE = {"startDate": "today", "endDate": "today"}
YESTERDAY_RANGE = {"startDate": "yesterday", "endDate": "yesterday"}


def log_ga4(message: str, level: str = "INFO"):
    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = {
        "INFO": "ℹ️ ",
        "SUCCESS": "✅",
        "ERROR": "❌",
        "WARNING": "⚠️ ",
    }.get(level, "")
    print(f"[{timestamp}] [GA4] {prefix} {message}")


def _metrics(*names: str) -> List[Dict[str, str]]:
    return [{"name": name} for name in names]


def _dimensions(*names: str) -> List[Dict[str, str]]:
    return [{"name": name} for name in names]


def _order_by_metric(name: str) -> List[Dict[str, Any]]:
    return [{"metric": {"metricName": name}, "desc": True}]


def error_message(response: requests.Response, fallback: str) -> str:
    """Google's error.message from a failed response body, else fallback"""
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message")
        if message:
            return message
    return fallback


class GA4Client:
    """Client for the GA4 Admin and Data APIs"""

    def __init__(
        self,
        auth: GoogleAuthHandler,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
        tz: Optional[tzinfo] = None,
    ):
        self.auth = auth
        self.session = session or requests.Session()
        self.timeout = timeout
        self.clock = clock
        # Report dates follow the user's calendar; None means the system zone
        self.tz = tz

    # ============================================================
    # 🌐 TRANSPORT
    # ============================================================

    def _request(self, method: str, url: str, what: str, **kwargs) -> Dict[str, Any]:
        token = self.auth.get_valid_access_token()
        headers = {"Authorization": f"Bearer {token}"}

        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            log_ga4(f"{what}: transport failure: {e}", "ERROR")
            raise NetworkError(str(e)) from e

        if response.status_code != 200:
            message = error_message(
                response, f"Failed to fetch {what} (HTTP {response.status_code})"
            )
            log_ga4(f"{what}: {message}", "ERROR")
            raise ApiError(message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"Invalid response for {what}") from e

        return payload if isinstance(payload, dict) else {}

    def _run_report(self, property_id: str, body: Dict[str, Any], what: str) -> Dict[str, Any]:
        return self._request("POST", f"{DATA_API_BASE}/{property_id}:runReport", what, json=body)

    def _today(self) -> date:
        return local_today(self.clock(), self.tz)

    # ============================================================
    # 🏷️ PROPERTY DISCOVERY
    # ============================================================

    def list_properties(self) -> List[Property]:
        """
        Fetch every GA4 property the signed-in account can read.
        Follows nextPageToken until the listing is exhausted.
        """
        properties: List[Property] = []
        page_token = None

        while True:
            params = {"pageToken": page_token} if page_token else None
            payload = self._request(
                "GET", f"{ADMIN_API_BASE}/accountSummaries", "properties", params=params
            )
            properties.extend(parse_account_summaries(payload))

            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        log_ga4(f"Fetched {len(properties)} properties")
        return properties

    # ============================================================
    # 📊 REPORTS
    # ============================================================

    def fetch_realtime(self, property_id: str) -> int:
        payload = self._request(
            "POST",
            f"{DATA_API_BASE}/{property_id}:runRealtimeReport",
            "realtime data",
            json={"metrics": _metrics("activeUsers")},
        )
        return normalize_realtime(payload)

    def fetch_daily(self, property_id: str) -> DailyMetrics:
        """Yesterday (date_range_0) vs today (date_range_1)"""
        body = {
            "dateRanges": [YESTERDAY_RANGE, TODAY_RANGE],
            "metrics": _metrics(
                "activeUsers",
                "sessions",
                "screenPageViews",
                "bounceRate",
                "averageSessionDuration",
            ),
        }
        return normalize_daily(self._run_report(property_id, body, "daily metrics"))

    def fetch_extended(self, property_id: str) -> ExtendedMetrics:
        """
        28-day totals and daily trend against the preceding 28 days.
        The same windows object builds the request and buckets the rows.
        """
        windows = comparison_windows(self._today())
        (current_start, current_end), (previous_start, previous_end) = windows.as_iso()

        body = {
            "dateRanges": [
                {"startDate": current_start, "endDate": current_end},
                {"startDate": previous_start, "endDate": previous_end},
            ],
            "dimensions": _dimensions("date"),
            "metrics": _metrics("active28DayUsers", "eventCount", "screenPageViews"),
            "orderBys": [{"dimension": {"dimensionName": "date"}}],
        }
        payload = self._run_report(property_id, body, "extended metrics")
        return normalize_extended(payload, windows)

    def fetch_top_pages(self, property_id: str) -> List[TopPage]:
        body = {
            "dateRanges": [TODAY_RANGE],
            "dimensions": _dimensions("pagePath", "pageTitle"),
            "metrics": _metrics("screenPageViews"),
            "limit": GA4_TOP_ROWS,
            "orderBys": _order_by_metric("screenPageViews"),
        }
        return normalize_top_pages(self._run_report(property_id, body, "top pages"))

    def fetch_traffic_sources(self, property_id: str) -> List[TrafficSource]:
        body = {
            "dateRanges": [TODAY_RANGE],
            "dimensions": _dimensions("sessionSource", "sessionMedium"),
            "metrics": _metrics("sessions"),
            "limit": GA4_TOP_ROWS,
            "orderBys": _order_by_metric("sessions"),
        }
        return normalize_traffic_sources(self._run_report(property_id, body, "traffic sources"))

    def fetch_countries(self, property_id: str) -> List[CountryData]:
        body = {
            "dateRanges": [TODAY_RANGE],
            "dimensions": _dimensions("country", "countryId"),
            "metrics": _metrics("activeUsers"),
            "limit": GA4_TOP_ROWS,
            "orderBys": _order_by_metric("activeUsers"),
        }
        return normalize_countries(self._run_report(property_id, body, "countries"))

    def fetch_devices(self, property_id: str) -> DeviceBreakdown:
        body = {
            "dateRanges": [TODAY_RANGE],
            "dimensions": _dimensions("deviceCategory"),
            "metrics": _metrics("activeUsers"),
        }
        return normalize_devices(self._run_report(property_id, body, "devices"))
