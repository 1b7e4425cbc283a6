from __future__ import annotations
"""
Google Search Console API Client
Handles site discovery and search analytics queries for the selected site
"""

import json
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Dict, List, Optional

import httplib2
from google.auth.exceptions import TransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from pulsebar.auth_handler import GoogleAuthHandler
from pulsebar.config.date_windows import GSC_DEFAULT_ROW_LIMIT, GSC_TOP_ROWS
from pulsebar.errors import ApiError, NetworkError
from pulsebar.metrics_normalizer import (
    normalize_search_metrics,
    normalize_search_pages,
    normalize_search_queries,
    parse_sites,
)
from pulsebar.models import SearchConsoleMetrics, SearchPage, SearchQuery, Site, utcnow
from pulsebar.utils.windows import ISO_DATE_FORMAT, comparison_windows, local_today

ServiceFactory = Callable[[str], Any]


def log_gsc(message: str, level: str = "INFO"):
    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = {
        "INFO": "ℹ️ ",
        "SUCCESS": "✅",
        "ERROR": "❌",
        "WARNING": "⚠️ ",
    }.get(level, "")
    print(f"[{timestamp}] [GSC] {prefix} {message}")


def build_search_console_service(access_token: str, timeout: float = 30.0):
    """
    searchconsole v1 discovery client bound to a bearer token.
    The token is refreshed by GoogleAuthHandler, never by google-auth.
    """
    credentials = Credentials(token=access_token)
    http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build("searchconsole", "v1", http=http, cache_discovery=False)


def http_error_message(error: HttpError, fallback: str) -> str:
    """Google's error.message from an HttpError body, else fallback"""
    try:
        payload = json.loads(error.content.decode("utf-8"))
    except (AttributeError, UnicodeDecodeError, ValueError):
        return fallback
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        message = payload["error"].get("message")
        if message:
            return message
    return fallback


class SearchConsoleClient:
    """Client for the Search Console API, one service per valid access token"""

    def __init__(
        self,
        auth: GoogleAuthHandler,
        service_factory: Optional[ServiceFactory] = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
        tz: Optional[tzinfo] = None,
    ):
        self.auth = auth
        self.timeout = timeout
        self.tz = tz
        self.service_factory = service_factory or (
            lambda token: build_search_console_service(token, timeout=self.timeout)
        )
        self.clock = clock

    # ============================================================
    # 🌐 TRANSPORT
    # ============================================================

    def _execute(self, what: str, call: Callable[[Any], Any]) -> Dict[str, Any]:
        """
        Run one API call against a freshly authorized service and map
        failures onto ApiError / NetworkError.
        """
        token = self.auth.get_valid_access_token()

        try:
            service = self.service_factory(token)
            response = call(service).execute()
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            message = http_error_message(e, f"Failed to fetch {what} (HTTP {status})")
            log_gsc(f"{what}: {message}", "ERROR")
            raise ApiError(message, status_code=status) from e
        except (httplib2.HttpLib2Error, TransportError, OSError) as e:
            log_gsc(f"{what}: transport failure: {e}", "ERROR")
            raise NetworkError(str(e)) from e

        return response if isinstance(response, dict) else {}

    def _query(
        self,
        site_url: str,
        start_date: date,
        end_date: date,
        dimensions: Optional[List[str]] = None,
        row_limit: int = GSC_DEFAULT_ROW_LIMIT,
        what: str = "search analytics",
    ) -> List[Dict[str, Any]]:
        request_body: Dict[str, Any] = {
            'startDate': start_date.strftime(ISO_DATE_FORMAT),
            'endDate': end_date.strftime(ISO_DATE_FORMAT),
            'rowLimit': row_limit,
        }
        if dimensions:
            request_body['dimensions'] = dimensions

        response = self._execute(
            what,
            lambda service: service.searchanalytics().query(siteUrl=site_url, body=request_body),
        )
        return response.get('rows', [])

    def _today(self) -> date:
        return local_today(self.clock(), self.tz)

    # ============================================================
    # 📊 GSC API METHODS
    # ============================================================

    def list_sites(self) -> List[Site]:
        response = self._execute("sites", lambda service: service.sites().list())
        sites = parse_sites(response)
        log_gsc(f"Fetched {len(sites)} sites")
        return sites

    def fetch_metrics(self, site_url: str) -> SearchConsoleMetrics:
        """
        Current 28-day period with a daily breakdown, compared with the
        totals of the preceding period.
        """
        windows = comparison_windows(self._today())

        current_rows = self._query(
            site_url,
            windows.current_start,
            windows.current_end,
            dimensions=['date'],
            what="search metrics",
        )
        previous_rows = self._query(
            site_url,
            windows.previous_start,
            windows.previous_end,
            what="previous search metrics",
        )
        return normalize_search_metrics(current_rows, previous_rows)

    def fetch_top_queries(self, site_url: str) -> List[SearchQuery]:
        windows = comparison_windows(self._today())
        rows = self._query(
            site_url,
            windows.current_start,
            windows.current_end,
            dimensions=['query'],
            row_limit=GSC_TOP_ROWS,
            what="top queries",
        )
        return normalize_search_queries(rows)

    def fetch_top_pages(self, site_url: str) -> List[SearchPage]:
        windows = comparison_windows(self._today())
        rows = self._query(
            site_url,
            windows.current_start,
            windows.current_end,
            dimensions=['page'],
            row_limit=GSC_TOP_ROWS,
            what="top pages",
        )
        return normalize_search_pages(rows)
