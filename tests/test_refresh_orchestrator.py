"""
Refresh Orchestration Tests

Cycle guard, failure isolation, selection and auth transitions with fake
API clients.
"""

import threading

import pytest

from pulsebar.alert_detector import AlertEngine
from pulsebar.errors import ApiError, NetworkError, TokenRevoked
from pulsebar.events import AnalyticsUpdated, SearchConsoleUpdated, SignedIn, SignedOut
from pulsebar.models import (
    DailyMetrics,
    DeviceBreakdown,
    ExtendedMetrics,
    MetricComparison,
    Property,
    SearchConsoleMetrics,
    SearchQuery,
    Site,
    TopPage,
)
from pulsebar.preferences import RefreshInterval
from pulsebar.refresh_orchestrator import (
    AnalyticsRefresher,
    PipelineRefresher,
    RefreshOrchestrator,
    SearchConsoleRefresher,
)


# =============================================================================
# FAKES
# =============================================================================

class FakeGA4Client:
    def __init__(self, properties=None):
        self.properties = properties if properties is not None else [
            Property("properties/1", "Shop"),
            Property("properties/2", "Blog"),
        ]
        self.active_users = 42
        self.today_users = 100
        self.failures = {}
        self.calls = []
        self._lock = threading.Lock()

    def _call(self, name, property_id, value):
        with self._lock:
            self.calls.append((name, property_id))
        if name in self.failures:
            raise self.failures[name]
        return value

    def list_properties(self):
        with self._lock:
            self.calls.append(("list_properties", None))
        return list(self.properties)

    def fetch_realtime(self, property_id):
        return self._call("realtime", property_id, self.active_users)

    def fetch_daily(self, property_id):
        return self._call("daily", property_id, DailyMetrics(users=MetricComparison(self.today_users, 80)))

    def fetch_extended(self, property_id):
        return self._call("extended", property_id, ExtendedMetrics())

    def fetch_top_pages(self, property_id):
        return self._call("top_pages", property_id, [TopPage("/", "Home", 10)])

    def fetch_traffic_sources(self, property_id):
        return self._call("traffic_sources", property_id, [])

    def fetch_countries(self, property_id):
        return self._call("countries", property_id, [])

    def fetch_devices(self, property_id):
        return self._call("devices", property_id, DeviceBreakdown(desktop=100.0))

    def fetched_for(self, name):
        return [pid for call, pid in self.calls if call == name]


class BlockingGA4Client(FakeGA4Client):
    """Realtime fetch waits until released"""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def fetch_realtime(self, property_id):
        self.started.set()
        self.release.wait(5)
        return super().fetch_realtime(property_id)


class FakeSearchConsoleClient:
    def __init__(self, sites=None):
        self.sites = sites if sites is not None else [Site("sc-domain:example.com", "siteOwner")]
        self.error = None
        self.calls = []

    def list_sites(self):
        return list(self.sites)

    def fetch_metrics(self, site_url):
        self.calls.append(("metrics", site_url))
        if self.error is not None:
            raise self.error
        return SearchConsoleMetrics(clicks=MetricComparison(40, 20))

    def fetch_top_queries(self, site_url):
        return [SearchQuery("pulsebar", 5, 50, 10.0, 2.0)]

    def fetch_top_pages(self, site_url):
        return []


class FakeScheduler:
    def __init__(self):
        self.started = False
        self.restarted_with = []

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def restart(self, interval_seconds):
        self.restarted_with.append(interval_seconds)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ga4():
    return FakeGA4Client()


@pytest.fixture
def gsc():
    return FakeSearchConsoleClient()


@pytest.fixture
def alerts(preferences, events, notifier, clock):
    return AlertEngine(preferences, events, notifier=notifier, clock=clock)


@pytest.fixture
def analytics(fake_auth, ga4, preferences, events, alerts, clock):
    refresher = AnalyticsRefresher(fake_auth, ga4, preferences, events, alerts=alerts, clock=clock)
    yield refresher
    refresher.executor.shutdown(wait=True)


@pytest.fixture
def search_console(fake_auth, gsc, preferences, events, clock):
    refresher = SearchConsoleRefresher(fake_auth, gsc, preferences, events, clock=clock)
    yield refresher
    refresher.executor.shutdown(wait=True)


@pytest.fixture
def orchestrator(analytics, search_console, preferences, events):
    orchestrator = RefreshOrchestrator(
        analytics, search_console, preferences, events, scheduler=FakeScheduler()
    )
    yield orchestrator
    orchestrator.shutdown()


def drain(orchestrator):
    """Wait for everything already queued on both pipeline workers"""
    orchestrator._analytics_worker.submit(lambda: None).result(timeout=5)
    orchestrator._search_console_worker.submit(lambda: None).result(timeout=5)


# =============================================================================
# CYCLE
# =============================================================================

class TestAnalyticsCycle:

    def test_successful_cycle_publishes_full_snapshot(self, analytics, ga4, clock, published):
        received = published(AnalyticsUpdated)

        assert analytics.refresh_data() is True

        snapshot = analytics.snapshot
        assert snapshot.selected_property.id == "properties/1"
        assert snapshot.realtime.active_users == 42
        assert snapshot.realtime.sparkline_history == (42,)
        assert snapshot.top_pages == (TopPage("/", "Home", 10),)
        assert snapshot.is_connected is True
        assert snapshot.is_loading is False
        assert snapshot.last_updated == clock()
        assert received[0].snapshot.is_loading is True
        assert received[-1].snapshot == snapshot
        assert len(ga4.calls) == 8

    def test_unauthenticated_is_noop(self, analytics, fake_auth, ga4, published):
        fake_auth.is_authenticated = False
        received = published(AnalyticsUpdated)

        assert analytics.refresh_data() is False
        assert ga4.calls == []
        assert received == []

    def test_concurrent_refresh_runs_one_cycle(self, preferences, events, fake_auth, clock):
        client = BlockingGA4Client()
        analytics = AnalyticsRefresher(fake_auth, client, preferences, events, clock=clock)
        results = []
        first = threading.Thread(target=lambda: results.append(analytics.refresh_data()))

        try:
            first.start()
            assert client.started.wait(5)
            assert analytics.is_loading is True

            assert analytics.refresh_data() is False

            client.release.set()
            first.join(5)
        finally:
            client.release.set()
            analytics.executor.shutdown(wait=True)

        assert results == [True]
        assert len(client.fetched_for("realtime")) == 1
        assert analytics.is_loading is False

    def test_failed_subfetch_keeps_previous_data(self, analytics, ga4):
        analytics.refresh_data()
        ga4.failures["countries"] = ApiError("quota exceeded", status_code=429)
        ga4.active_users = 99

        analytics.refresh_data()

        snapshot = analytics.snapshot
        assert snapshot.error == "quota exceeded"
        assert snapshot.is_loading is False
        assert snapshot.is_connected is False
        assert snapshot.realtime.active_users == 42
        assert snapshot.top_pages == (TopPage("/", "Home", 10),)

    def test_recovery_clears_error(self, analytics, ga4):
        ga4.failures["daily"] = NetworkError("offline")
        analytics.refresh_data()
        assert analytics.snapshot.error == "Network error: offline"

        del ga4.failures["daily"]
        analytics.refresh_data()

        assert analytics.snapshot.error is None
        assert analytics.snapshot.is_connected is True

    def test_token_failure_is_recorded(self, analytics, fake_auth, ga4):
        fake_auth.error = TokenRevoked()

        analytics.refresh_data()

        assert analytics.snapshot.error == TokenRevoked.default_message
        assert ga4.calls == []

    def test_no_properties(self, fake_auth, preferences, events, clock):
        analytics = AnalyticsRefresher(fake_auth, FakeGA4Client(properties=[]), preferences, events, clock=clock)
        try:
            analytics.refresh_data()
        finally:
            analytics.executor.shutdown(wait=True)

        assert analytics.snapshot.selected_property is None
        assert analytics.snapshot.error is None
        assert analytics.snapshot.is_loading is False

    def test_sparkline_grows_per_cycle(self, analytics, ga4):
        for users in (5, 6, 7):
            ga4.active_users = users
            analytics.refresh_data()

        assert analytics.snapshot.realtime.sparkline_history == (5, 6, 7)

    def test_sign_out_mid_cycle_discards_sparkline_sample(self, preferences, events, fake_auth, clock):
        client = BlockingGA4Client()
        client.release.set()
        analytics = AnalyticsRefresher(fake_auth, client, preferences, events, clock=clock)

        try:
            analytics.refresh_data()
            assert analytics.snapshot.realtime.sparkline_history == (42,)

            client.started.clear()
            client.release.clear()
            cycle = threading.Thread(target=analytics.refresh_data)
            cycle.start()
            assert client.started.wait(5)

            analytics.clear()
            client.release.set()
            cycle.join(5)

            assert analytics.snapshot.realtime.sparkline_history == ()
            assert analytics._sparkline == ()

            analytics.refresh_data()
        finally:
            client.release.set()
            analytics.executor.shutdown(wait=True)

        assert analytics.snapshot.realtime.sparkline_history == (42,)

    def test_pipeline_base_is_abstract(self, fake_auth, ga4, preferences, events):
        with pytest.raises(TypeError):
            PipelineRefresher(fake_auth, preferences, events, None, None)


class TestSelection:

    def test_saved_selection_is_used(self, analytics, ga4, preferences):
        preferences.update(selected_property_id="properties/2")

        analytics.refresh_data()

        assert analytics.selected.id == "properties/2"
        assert set(ga4.fetched_for("realtime")) == {"properties/2"}

    def test_stale_saved_selection_falls_back_to_first(self, analytics, preferences):
        preferences.update(selected_property_id="properties/999")

        analytics.refresh_data()

        assert analytics.selected.id == "properties/1"
        assert preferences.current.selected_property_id == "properties/999"

    def test_source_list_cached_between_cycles(self, analytics, ga4):
        analytics.refresh_data()
        analytics.refresh_data()

        assert len(ga4.fetched_for("list_properties")) == 1

    def test_select_property_persists_and_refreshes(self, analytics, ga4, preferences):
        analytics.refresh_data()

        assert analytics.select_property("properties/2") is True

        assert preferences.current.selected_property_id == "properties/2"
        assert analytics.snapshot.selected_property.id == "properties/2"

    def test_select_unknown_property(self, analytics, preferences):
        analytics.refresh_data()

        assert analytics.select_property("properties/404") is False
        assert preferences.current.selected_property_id is None

    def test_select_site(self, search_console, gsc, preferences):
        gsc.sites.append(Site("https://blog.example.com/", "siteFullUser"))
        search_console.refresh_data()

        assert search_console.select_site("https://blog.example.com/") is True

        assert preferences.current.selected_site_url == "https://blog.example.com/"
        assert gsc.calls[-1] == ("metrics", "https://blog.example.com/")


class TestAlertFeed:

    def test_alerts_evaluated_after_publish(self, analytics, ga4, alerts, preferences):
        preferences.update(alert_threshold_high=40, daily_user_goal=100)

        analytics.refresh_data()

        types = sorted(alert.type.value for alert in alerts.alerts)
        assert types == ["goal_reached", "spike"]

    def test_previous_sample_drives_sudden_change(self, analytics, ga4, alerts):
        ga4.active_users = 100
        analytics.refresh_data()
        assert alerts.alerts == ()

        ga4.active_users = 40
        analytics.refresh_data()

        assert [a.title for a in alerts.alerts] == ["Traffic dropped"]

    def test_failed_cycle_fires_nothing(self, analytics, ga4, alerts, preferences):
        preferences.update(alert_threshold_high=1)
        ga4.failures["devices"] = ApiError("boom")

        analytics.refresh_data()

        assert alerts.alerts == ()


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class TestOrchestrator:

    def test_pipelines_fail_independently(self, orchestrator, gsc):
        gsc.error = ApiError("Search Console unavailable", status_code=503)

        ga4_future, gsc_future = orchestrator.refresh_all()
        assert ga4_future.result(timeout=5) is True
        assert gsc_future.result(timeout=5) is True

        assert orchestrator.analytics.snapshot.error is None
        assert orchestrator.analytics.snapshot.realtime.active_users == 42
        assert orchestrator.search_console.snapshot.error == "Search Console unavailable"

    def test_search_console_snapshot(self, orchestrator):
        _, gsc_future = orchestrator.refresh_all()
        gsc_future.result(timeout=5)

        snapshot = orchestrator.search_console.snapshot
        assert snapshot.site.site_url == "sc-domain:example.com"
        assert snapshot.metrics.clicks.percent_change == 100
        assert snapshot.top_queries[0].query == "pulsebar"

    def test_failed_search_console_cycle_keeps_last_good_data(self, orchestrator, gsc):
        orchestrator.refresh_all()[1].result(timeout=5)
        before = orchestrator.search_console.snapshot
        gsc.error = ApiError("Search Console unavailable", status_code=503)

        orchestrator.refresh_all()[1].result(timeout=5)

        after = orchestrator.search_console.snapshot
        assert after.error == "Search Console unavailable"
        assert after.is_loading is False
        assert after.site == before.site
        assert after.metrics == before.metrics
        assert after.top_queries == before.top_queries

    def test_overlapping_triggers_are_dropped(self, fake_auth, preferences, events, search_console, clock):
        client = BlockingGA4Client()
        analytics = AnalyticsRefresher(fake_auth, client, preferences, events, clock=clock)
        orchestrator = RefreshOrchestrator(
            analytics, search_console, preferences, events, scheduler=FakeScheduler()
        )

        try:
            first, _ = orchestrator.refresh_all()
            assert client.started.wait(5)

            assert orchestrator.refresh_all()[0] is None
            assert orchestrator.refresh_all()[0] is None

            client.release.set()
            assert first.result(timeout=5) is True
            drain(orchestrator)
        finally:
            client.release.set()
            orchestrator.shutdown()

        assert len(client.fetched_for("realtime")) == 1

    def test_selection_during_cycle_is_kept_for_next_tick(self, fake_auth, preferences, events, search_console, clock):
        client = BlockingGA4Client()
        analytics = AnalyticsRefresher(fake_auth, client, preferences, events, clock=clock)
        orchestrator = RefreshOrchestrator(
            analytics, search_console, preferences, events, scheduler=FakeScheduler()
        )

        try:
            first, _ = orchestrator.refresh_all()
            assert client.started.wait(5)

            assert orchestrator.select_property("properties/2") is None
            assert preferences.current.selected_property_id == "properties/2"

            client.release.set()
            first.result(timeout=5)
            orchestrator.refresh_all()[0].result(timeout=5)
        finally:
            client.release.set()
            orchestrator.shutdown()

        assert client.fetched_for("realtime") == ["properties/1", "properties/2"]
        assert analytics.snapshot.selected_property.id == "properties/2"

    def test_sign_in_resets_and_refreshes(self, orchestrator, events, ga4, published):
        received = published(SearchConsoleUpdated)
        orchestrator.refresh_all()[0].result(timeout=5)
        ga4.properties = [Property("properties/7", "New account")]

        events.publish(SignedIn(user_email="other@example.com"))
        drain(orchestrator)

        assert orchestrator.analytics.snapshot.selected_property.id == "properties/7"
        assert received

    def test_sign_out_clears_both(self, orchestrator, events):
        for future in orchestrator.refresh_all():
            future.result(timeout=5)

        events.publish(SignedOut(reason="revoked"))

        assert orchestrator.analytics.snapshot.selected_property is None
        assert orchestrator.analytics.snapshot.realtime.sparkline_history == ()
        assert orchestrator.search_console.snapshot.site is None
        assert orchestrator.analytics.properties == ()

    def test_set_refresh_interval(self, orchestrator, preferences):
        orchestrator.set_refresh_interval(RefreshInterval.FIVE_MINUTES)

        assert preferences.current.refresh_interval == RefreshInterval.FIVE_MINUTES
        assert orchestrator.scheduler.restarted_with == [300.0]

    def test_start_and_shutdown(self, orchestrator):
        orchestrator.start()
        assert orchestrator.scheduler.started is True
