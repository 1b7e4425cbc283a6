from __future__ import annotations
"""
Pulsebar - Composition Root

Wires every component once, restores (or starts) the Google session and runs
the refresh scheduler until interrupted. Published state is echoed to the
console, standing in for the menubar UI.
"""

import time
from dataclasses import dataclass
from datetime import datetime

from pulsebar.alert_detector import AlertEngine
from pulsebar.alert_dispatcher import default_notifier
from pulsebar.auth.token_store import KeyringTokenStore
from pulsebar.auth_handler import GoogleAuthHandler
from pulsebar.events import AlertFired, AnalyticsUpdated, EventBus, SearchConsoleUpdated
from pulsebar.ga4_client import GA4Client
from pulsebar.gsc_client import SearchConsoleClient
from pulsebar.preferences import PreferencesStore
from pulsebar.refresh_orchestrator import AnalyticsRefresher, RefreshOrchestrator, SearchConsoleRefresher
from pulsebar.settings import Settings, settings
from pulsebar.utils.formatting import format_change, format_number


def log_step(message: str, level: str = "INFO"):
    """Log with timestamp"""
    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = {
        "INFO": "ℹ️ ",
        "SUCCESS": "✅",
        "ERROR": "❌",
        "WARNING": "⚠️ ",
        "PROGRESS": "⏳"
    }.get(level, "")
    print(f"[{timestamp}] [PULSEBAR] {prefix} {message}")


@dataclass
class Components:
    events: EventBus
    preferences: PreferencesStore
    auth: GoogleAuthHandler
    alerts: AlertEngine
    orchestrator: RefreshOrchestrator


def build_components(config: Settings = settings) -> Components:
    """Single-instance wiring of every service"""
    events = EventBus()
    preferences = PreferencesStore(config.PREFERENCES_PATH)

    # 1. Auth
    auth = GoogleAuthHandler(
        client_id=config.GOOGLE_CLIENT_ID,
        client_secret=config.GOOGLE_CLIENT_SECRET,
        token_store=KeyringTokenStore(config.KEYRING_SERVICE),
        events=events,
        redirect_port=config.OAUTH_REDIRECT_PORT,
        oauth_timeout_seconds=config.OAUTH_TIMEOUT_SECONDS,
        timeout=config.REQUEST_TIMEOUT_SECONDS,
    )

    # 2. API clients
    ga4 = GA4Client(auth, timeout=config.REQUEST_TIMEOUT_SECONDS)
    search_console = SearchConsoleClient(auth, timeout=config.REQUEST_TIMEOUT_SECONDS)

    # 3. Alerts
    alerts = AlertEngine(preferences, events, notifier=default_notifier())

    # 4. Refresh pipelines
    orchestrator = RefreshOrchestrator(
        analytics=AnalyticsRefresher(auth, ga4, preferences, events, alerts=alerts),
        search_console=SearchConsoleRefresher(auth, search_console, preferences, events),
        preferences=preferences,
        events=events,
    )

    return Components(events, preferences, auth, alerts, orchestrator)


def attach_console_output(events: EventBus) -> None:
    def on_analytics(event: AnalyticsUpdated):
        snapshot = event.snapshot
        if snapshot.is_loading:
            return
        if snapshot.error:
            log_step(f"GA4: {snapshot.error}", "ERROR")
            return
        if snapshot.selected_property is None:
            return
        users = snapshot.daily.users
        log_step(
            f"{snapshot.selected_property.short_name}: "
            f"{format_number(snapshot.realtime.active_users)} active now, "
            f"{format_number(users.today)} users today ({format_change(users.percent_change)})"
        )

    def on_search_console(event: SearchConsoleUpdated):
        snapshot = event.snapshot
        if snapshot.is_loading:
            return
        if snapshot.error:
            log_step(f"Search Console: {snapshot.error}", "ERROR")
            return
        if snapshot.site is None:
            return
        clicks = snapshot.metrics.clicks
        log_step(
            f"{snapshot.site.display_name}: {format_number(clicks.today)} clicks "
            f"in 28 days ({format_change(clicks.percent_change)})"
        )

    events.subscribe(AnalyticsUpdated, on_analytics)
    events.subscribe(SearchConsoleUpdated, on_search_console)
    events.subscribe(AlertFired, lambda event: log_step(f"🔔 {event.alert.title} {event.alert.message}"))


def main():
    log_step("Starting Pulsebar...")
    components = build_components()
    attach_console_output(components.events)

    auth = components.auth
    orchestrator = components.orchestrator

    # The orchestrator is subscribed before the session is restored so the
    # SignedIn event triggers the first refresh.
    if auth.restore_session():
        log_step(f"Signed in as {auth.state.user_email or 'unknown account'}", "SUCCESS")
    else:
        log_step("No stored session, starting Google sign-in", "PROGRESS")
        if not auth.sign_in():
            log_step(auth.state.last_error or "Sign-in cancelled", "ERROR")
            orchestrator.shutdown()
            return 1

    interval = components.preferences.current.refresh_interval
    orchestrator.start()
    log_step(f"Refreshing every {interval.value}. Press Ctrl+C to quit.", "INFO")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        log_step("Shutting down")
    finally:
        orchestrator.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
