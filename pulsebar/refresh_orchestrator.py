from __future__ import annotations
"""
Pulsebar - Refresh Orchestration
Two independent pipelines (GA4 analytics, Search Console) on one timer.

CYCLE DESIGN:
  Each pipeline owns a non-blocking in-flight guard: a refresh requested
  while one is running is dropped, not queued. A cycle acquires a valid
  access token first, then fans out its sub-fetches on a thread pool and
  joins them all before building one new immutable snapshot. Any sub-fetch
  failure fails the whole cycle and leaves the previous snapshot's data in
  place with the error recorded.
"""

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from pulsebar.alert_detector import AlertEngine
from pulsebar.auth_handler import GoogleAuthHandler
from pulsebar.errors import NoData
from pulsebar.events import AnalyticsUpdated, EventBus, SearchConsoleUpdated, SignedIn, SignedOut
from pulsebar.ga4_client import GA4Client
from pulsebar.gsc_client import SearchConsoleClient
from pulsebar.metrics_normalizer import append_sparkline
from pulsebar.models import (
    AnalyticsSnapshot,
    Property,
    RealtimeSnapshot,
    SearchConsoleSnapshot,
    Site,
    utcnow,
)
from pulsebar.preferences import PreferencesStore, RefreshInterval
from pulsebar.scheduler import Scheduler

S = TypeVar("S")
T = TypeVar("T")

GA4_FETCH_WORKERS = 7
GSC_FETCH_WORKERS = 3


def log_refresh(pipeline: str, message: str, level: str = "INFO"):
    """Log with timestamp and pipeline context"""
    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = {
        "INFO": "ℹ️ ",
        "SUCCESS": "✅",
        "ERROR": "❌",
        "WARNING": "⚠️ ",
        "PROGRESS": "⏳"
    }.get(level, "")
    print(f"[{timestamp}] [{pipeline}] {prefix} {message}")


def join_all(futures: Dict[str, Future]) -> Dict[str, object]:
    """Wait for every future; the first failure (in submission order) is raised"""
    return {name: future.result() for name, future in futures.items()}


class PipelineRefresher(ABC, Generic[S, T]):
    """
    Shared cycle mechanics for one pipeline.

    S is the snapshot type, T the selectable source type (Property / Site).
    Subclasses supply the list/fetch/build steps.
    """

    pipeline = "REFRESH"

    def __init__(
        self,
        auth: GoogleAuthHandler,
        preferences: PreferencesStore,
        events: EventBus,
        empty_snapshot: S,
        executor: ThreadPoolExecutor,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.auth = auth
        self.preferences = preferences
        self.events = events
        self.executor = executor
        self.clock = clock

        self._empty_snapshot = empty_snapshot
        self._snapshot: S = empty_snapshot
        self._sources: Tuple[T, ...] = ()
        self._selected: Optional[T] = None

        self._state_lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        # Bumped on sign-out so a cycle already in flight cannot republish
        self._generation = 0

    # ============================================================
    # 📡 PUBLISHED STATE
    # ============================================================

    @property
    def snapshot(self) -> S:
        with self._state_lock:
            return self._snapshot

    @property
    def is_loading(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def sources(self) -> Tuple[T, ...]:
        with self._state_lock:
            return self._sources

    @property
    def selected(self) -> Optional[T]:
        with self._state_lock:
            return self._selected

    def _publish(self, snapshot: S, generation: int) -> bool:
        with self._state_lock:
            if generation != self._generation:
                return False
            self._snapshot = snapshot
            self._on_publish(snapshot)
        self.events.publish(self._updated_event(snapshot))
        return True

    def _update_snapshot(self, generation: int, **changes) -> bool:
        with self._state_lock:
            snapshot = replace(self._snapshot, **changes)
        return self._publish(snapshot, generation)

    # ============================================================
    # 🔁 CYCLE
    # ============================================================

    def refresh_data(self) -> bool:
        """
        Run one refresh cycle on the calling thread.

        Returns:
            False if skipped (not signed in, or a cycle is already running)
        """
        if not self.auth.is_authenticated:
            return False

        if not self._cycle_lock.acquire(blocking=False):
            log_refresh(self.pipeline, "Refresh already in flight, skipping", "WARNING")
            return False

        try:
            with self._state_lock:
                generation = self._generation
            self._run_cycle(generation)
            return True
        finally:
            self._cycle_lock.release()

    def _run_cycle(self, generation: int) -> None:
        self._update_snapshot(generation, is_loading=True, error=None)

        try:
            # Refresh (if needed) before the fan-out so sub-fetches share one token
            self.auth.get_valid_access_token()

            source = self._resolve_selection()
            log_refresh(self.pipeline, f"Refreshing {self._source_label(source)}", "PROGRESS")

            snapshot = self._fetch_snapshot(source)

        except NoData as e:
            log_refresh(self.pipeline, str(e), "WARNING")
            self._update_snapshot(generation, is_loading=False)
            return
        except Exception as e:
            log_refresh(self.pipeline, f"Refresh failed: {e}", "ERROR")
            self._update_snapshot(generation, **self._failure_changes(str(e)))
            return

        if self._publish(snapshot, generation):
            log_refresh(self.pipeline, "Snapshot published", "SUCCESS")
            self._after_publish(snapshot)

    def _resolve_selection(self) -> T:
        """
        Fetch the source list if none is cached, then pick the saved
        selection or the first entry.

        Raises:
            NoData: nothing selectable
        """
        with self._state_lock:
            sources = self._sources
            selected = self._selected

        if not sources:
            sources = tuple(self._list_sources())
            with self._state_lock:
                self._sources = sources

        if selected is None:
            saved = self._saved_selection()
            selected = next((s for s in sources if self._source_key(s) == saved), None)
            if selected is None and sources:
                selected = sources[0]
            with self._state_lock:
                self._selected = selected

        if selected is None:
            raise NoData(f"No {self._source_kind()} available for this account")
        return selected

    def _select(self, key: str) -> bool:
        with self._state_lock:
            match = next((s for s in self._sources if self._source_key(s) == key), None)
            if match is None:
                log_refresh(self.pipeline, f"Unknown {self._source_kind()}: {key}", "WARNING")
                return False
            self._selected = match
        self._save_selection(key)
        return True

    # ============================================================
    # 🔐 AUTH TRANSITIONS
    # ============================================================

    def reset_selection(self) -> None:
        """Forget cached sources and selection (fresh sign-in)"""
        with self._state_lock:
            self._sources = ()
            self._selected = None
            self._on_reset()

    def clear(self) -> None:
        """Drop all published data (sign-out)"""
        with self._state_lock:
            self._generation += 1
            generation = self._generation
            self._sources = ()
            self._selected = None
            self._on_reset()
        self._publish(self._empty_snapshot, generation)
        log_refresh(self.pipeline, "Cleared published data")

    # ============================================================
    # 🧩 HOOKS
    # ============================================================

    def _on_reset(self) -> None:
        pass

    def _on_publish(self, snapshot: S) -> None:
        """Runs under the state lock once a snapshot is accepted"""
        pass

    def _after_publish(self, snapshot: S) -> None:
        pass

    def _failure_changes(self, message: str) -> Dict[str, object]:
        return {"is_loading": False, "error": message}

    def _source_label(self, source: T) -> str:
        return str(source)

    @abstractmethod
    def _source_kind(self) -> str:
        ...

    @abstractmethod
    def _source_key(self, source: T) -> str:
        ...

    @abstractmethod
    def _saved_selection(self) -> Optional[str]:
        ...

    @abstractmethod
    def _save_selection(self, key: str) -> None:
        ...

    @abstractmethod
    def _list_sources(self) -> List[T]:
        ...

    @abstractmethod
    def _fetch_snapshot(self, source: T) -> S:
        ...

    @abstractmethod
    def _updated_event(self, snapshot: S):
        ...


# ============================================================
# 📊 GA4
# ============================================================

class AnalyticsRefresher(PipelineRefresher[AnalyticsSnapshot, Property]):
    pipeline = "GA4"

    def __init__(
        self,
        auth: GoogleAuthHandler,
        client: GA4Client,
        preferences: PreferencesStore,
        events: EventBus,
        alerts: Optional[AlertEngine] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(
            auth,
            preferences,
            events,
            AnalyticsSnapshot(),
            executor or ThreadPoolExecutor(max_workers=GA4_FETCH_WORKERS, thread_name_prefix="ga4-fetch"),
            clock,
        )
        self.client = client
        self.alerts = alerts
        self._sparkline: Tuple[int, ...] = ()
        self._previous_active_users = 0

    @property
    def properties(self) -> Tuple[Property, ...]:
        return self.sources

    def select_property(self, property_id: str, refresh: bool = True) -> bool:
        """Persist the choice and, unless told otherwise, refresh for it"""
        if not self._select(property_id):
            return False
        log_refresh(self.pipeline, f"Selected property {property_id}")
        if refresh:
            self.refresh_data()
        return True

    def _fetch_snapshot(self, source: Property) -> AnalyticsSnapshot:
        property_id = source.id
        futures = {
            "realtime": self.executor.submit(self.client.fetch_realtime, property_id),
            "daily": self.executor.submit(self.client.fetch_daily, property_id),
            "extended": self.executor.submit(self.client.fetch_extended, property_id),
            "top_pages": self.executor.submit(self.client.fetch_top_pages, property_id),
            "traffic_sources": self.executor.submit(self.client.fetch_traffic_sources, property_id),
            "countries": self.executor.submit(self.client.fetch_countries, property_id),
            "devices": self.executor.submit(self.client.fetch_devices, property_id),
        }
        results = join_all(futures)

        active_users = results["realtime"]
        with self._state_lock:
            sparkline = append_sparkline(self._sparkline, active_users)

        return AnalyticsSnapshot(
            selected_property=source,
            realtime=RealtimeSnapshot(active_users=active_users, sparkline_history=sparkline),
            daily=results["daily"],
            extended=results["extended"],
            top_pages=tuple(results["top_pages"]),
            traffic_sources=tuple(results["traffic_sources"]),
            countries=tuple(results["countries"]),
            devices=results["devices"],
            last_updated=self.clock(),
            is_connected=True,
            is_loading=False,
            error=None,
        )

    def _run_cycle(self, generation: int) -> None:
        self._previous_active_users = self.snapshot.realtime.active_users
        super()._run_cycle(generation)

    def _after_publish(self, snapshot: AnalyticsSnapshot) -> None:
        if self.alerts is None:
            return
        self.alerts.check_thresholds(snapshot.realtime.active_users, self._previous_active_users)
        self.alerts.check_goal_progress(int(snapshot.daily.users.today))

    def _failure_changes(self, message: str) -> Dict[str, object]:
        return {"is_loading": False, "error": message, "is_connected": False}

    def _on_publish(self, snapshot: AnalyticsSnapshot) -> None:
        # History only advances with a snapshot that was actually accepted
        self._sparkline = snapshot.realtime.sparkline_history

    def _on_reset(self) -> None:
        self._sparkline = ()

    def _source_label(self, source: Property) -> str:
        return f"{source.display_name} ({source.id})"

    def _source_kind(self) -> str:
        return "GA4 properties"

    def _source_key(self, source: Property) -> str:
        return source.id

    def _saved_selection(self) -> Optional[str]:
        return self.preferences.current.selected_property_id

    def _save_selection(self, key: str) -> None:
        self.preferences.update(selected_property_id=key)

    def _list_sources(self) -> List[Property]:
        return self.client.list_properties()

    def _updated_event(self, snapshot: AnalyticsSnapshot):
        return AnalyticsUpdated(snapshot)


# ============================================================
# 🔎 SEARCH CONSOLE
# ============================================================

class SearchConsoleRefresher(PipelineRefresher[SearchConsoleSnapshot, Site]):
    pipeline = "GSC"

    def __init__(
        self,
        auth: GoogleAuthHandler,
        client: SearchConsoleClient,
        preferences: PreferencesStore,
        events: EventBus,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(
            auth,
            preferences,
            events,
            SearchConsoleSnapshot(),
            executor or ThreadPoolExecutor(max_workers=GSC_FETCH_WORKERS, thread_name_prefix="gsc-fetch"),
            clock,
        )
        self.client = client

    @property
    def sites(self) -> Tuple[Site, ...]:
        return self.sources

    def select_site(self, site_url: str, refresh: bool = True) -> bool:
        """Persist the choice and, unless told otherwise, refresh for it"""
        if not self._select(site_url):
            return False
        log_refresh(self.pipeline, f"Selected site {site_url}")
        if refresh:
            self.refresh_data()
        return True

    def _fetch_snapshot(self, source: Site) -> SearchConsoleSnapshot:
        site_url = source.site_url
        results = join_all({
            "metrics": self.executor.submit(self.client.fetch_metrics, site_url),
            "top_queries": self.executor.submit(self.client.fetch_top_queries, site_url),
            "top_pages": self.executor.submit(self.client.fetch_top_pages, site_url),
        })

        return SearchConsoleSnapshot(
            site=source,
            metrics=results["metrics"],
            top_queries=tuple(results["top_queries"]),
            top_pages=tuple(results["top_pages"]),
            last_updated=self.clock(),
            is_loading=False,
            error=None,
        )

    def _source_label(self, source: Site) -> str:
        return source.display_name

    def _source_kind(self) -> str:
        return "Search Console sites"

    def _source_key(self, source: Site) -> str:
        return source.site_url

    def _saved_selection(self) -> Optional[str]:
        return self.preferences.current.selected_site_url

    def _save_selection(self, key: str) -> None:
        self.preferences.update(selected_site_url=key)

    def _list_sources(self) -> List[Site]:
        return self.client.list_sites()

    def _updated_event(self, snapshot: SearchConsoleSnapshot):
        return SearchConsoleUpdated(snapshot)


# ============================================================
# ⏱️ ORCHESTRATOR
# ============================================================

class RefreshOrchestrator:
    """
    Drives both pipelines from one scheduler and from auth transitions.
    Each pipeline cycle runs on its own single worker thread, so a slow or
    failing pipeline never holds up the other.
    """

    def __init__(
        self,
        analytics: AnalyticsRefresher,
        search_console: SearchConsoleRefresher,
        preferences: PreferencesStore,
        events: EventBus,
        scheduler: Optional[Scheduler] = None,
    ):
        self.analytics = analytics
        self.search_console = search_console
        self.preferences = preferences
        self.events = events

        self.scheduler = scheduler or Scheduler(
            preferences.current.refresh_interval.seconds, self.refresh_all
        )
        self._analytics_worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ga4-cycle")
        self._search_console_worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gsc-cycle")
        # At most one submitted cycle per pipeline; requests beyond it are dropped
        self._submit_lock = threading.Lock()
        self._pending: Dict[str, Optional[Future]] = {}

        self._unsubscribe = [
            events.subscribe(SignedIn, self._on_signed_in),
            events.subscribe(SignedOut, self._on_signed_out),
        ]

    # ============================================================
    # ▶️ TRIGGERS
    # ============================================================

    def _submit(self, refresher: PipelineRefresher, worker: ThreadPoolExecutor) -> Optional[Future]:
        """
        Queue one refresh cycle for a pipeline.

        Returns:
            The cycle's future, or None if a cycle is already queued or running
        """
        with self._submit_lock:
            pending = self._pending.get(refresher.pipeline)
            if refresher.is_loading or (pending is not None and not pending.done()):
                log_refresh(refresher.pipeline, "Refresh already in flight, skipping", "WARNING")
                return None
            future = worker.submit(refresher.refresh_data)
            self._pending[refresher.pipeline] = future
            return future

    def refresh_all(self) -> Tuple[Optional[Future], Optional[Future]]:
        """Kick off both pipelines without waiting for either"""
        return (
            self._submit(self.analytics, self._analytics_worker),
            self._submit(self.search_console, self._search_console_worker),
        )

    def select_property(self, property_id: str) -> Optional[Future]:
        """
        Persist the selection now; the refresh for it is dropped like any
        other when a cycle is in flight and the next tick picks it up.
        """
        if not self.analytics.select_property(property_id, refresh=False):
            return None
        return self._submit(self.analytics, self._analytics_worker)

    def select_site(self, site_url: str) -> Optional[Future]:
        if not self.search_console.select_site(site_url, refresh=False):
            return None
        return self._submit(self.search_console, self._search_console_worker)

    def set_refresh_interval(self, interval: RefreshInterval) -> None:
        """Persist the interval and restart the timer from zero"""
        self.preferences.update(refresh_interval=interval)
        self.scheduler.restart(interval.seconds)
        log_refresh("SCHEDULER", f"Refresh interval set to {interval.value}")

    # ============================================================
    # 🔐 AUTH TRANSITIONS
    # ============================================================

    def _on_signed_in(self, event: SignedIn) -> None:
        self.analytics.reset_selection()
        self.search_console.reset_selection()
        self.refresh_all()

    def _on_signed_out(self, event: SignedOut) -> None:
        self.analytics.clear()
        self.search_console.clear()

    # ============================================================
    # 🔄 LIFECYCLE
    # ============================================================

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._analytics_worker.shutdown(wait=False)
        self._search_console_worker.shutdown(wait=False)
        self.analytics.executor.shutdown(wait=False)
        self.search_console.executor.shutdown(wait=False)
