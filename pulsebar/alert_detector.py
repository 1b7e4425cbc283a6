from __future__ import annotations
"""
Alert Detection Module

Derives traffic alerts from successive realtime samples and today's users.

Logic:
- High threshold: active users at or above the configured high mark
- Low threshold: active users falling to or below the low mark from above it
- Sudden spike / drop: ≥50% change vs the previous sample, only when the
  previous sample is above a 50-user noise floor
- Spike-family and drop-family alerts each have a 300s cooldown
- Goal reached (100%) / exceeded (150%) are de-duplicated against alerts of
  the same type in the trailing hour
"""

import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from pulsebar.alert_dispatcher import Notifier, log_dispatcher
from pulsebar.events import AlertFired, EventBus
from pulsebar.models import AlertItem, AlertType, utcnow
from pulsebar.preferences import PreferencesStore

ALERT_COOLDOWN = timedelta(seconds=300)
GOAL_DEDUP_WINDOW = timedelta(hours=1)
MAX_ALERTS = 20

SUDDEN_CHANGE_PCT = 50
SUDDEN_CHANGE_FLOOR = 50  # previous sample must exceed this

GOAL_REACHED_RATIO = 1.0
GOAL_EXCEEDED_RATIO = 1.5


def log_alert(message: str):
    """Log alert detection messages with timestamp"""
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] [ALERT] {message}")


class AlertEngine:
    """
    Stateful alert detector owning the alert log.

    Every fired alert is prepended to the log, published as AlertFired and
    handed to the notifier. Notification failures are logged and never
    touch the log.
    """

    def __init__(
        self,
        preferences: PreferencesStore,
        events: EventBus,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.preferences = preferences
        self.events = events
        self.notifier = notifier
        self.clock = clock

        self._lock = threading.Lock()
        self._alerts: List[AlertItem] = []
        self._has_unread = False
        self._last_high_alert: Optional[datetime] = None
        self._last_low_alert: Optional[datetime] = None

    # ============================================================
    # 📡 STATE
    # ============================================================

    @property
    def alerts(self) -> Tuple[AlertItem, ...]:
        """Newest first"""
        with self._lock:
            return tuple(self._alerts)

    @property
    def has_unread(self) -> bool:
        with self._lock:
            return self._has_unread

    def mark_all_as_read(self) -> None:
        with self._lock:
            self._has_unread = False

    def clear_alerts(self) -> None:
        with self._lock:
            self._alerts = []
            self._has_unread = False

    # ============================================================
    # 🔍 DETECTION
    # ============================================================

    def check_thresholds(self, active_users: int, previous_users: int) -> List[AlertItem]:
        """
        Evaluate one realtime sample against thresholds and the previous sample.

        Returns:
            Alerts fired by this sample (possibly empty)
        """
        prefs = self.preferences.current
        if not prefs.alerts_enabled:
            return []

        fired: List[AlertItem] = []

        with self._lock:
            now = self.clock()

            if prefs.alert_on_traffic_spike and active_users >= prefs.alert_threshold_high:
                if self._cooldown_passed(self._last_high_alert, now):
                    fired.append(self._record(
                        AlertType.SPIKE,
                        "Traffic spike!",
                        f"You have {active_users} active users right now",
                        now,
                    ))
                    self._last_high_alert = now

            if (prefs.alert_on_traffic_drop
                    and active_users <= prefs.alert_threshold_low
                    and previous_users > prefs.alert_threshold_low):
                if self._cooldown_passed(self._last_low_alert, now):
                    fired.append(self._record(
                        AlertType.DROP,
                        "Low traffic",
                        f"Only {active_users} active users - is everything OK?",
                        now,
                    ))
                    self._last_low_alert = now

            if previous_users > SUDDEN_CHANGE_FLOOR:
                change_pct = (active_users - previous_users) / previous_users * 100

                if prefs.alert_on_traffic_spike and change_pct >= SUDDEN_CHANGE_PCT:
                    if self._cooldown_passed(self._last_high_alert, now):
                        fired.append(self._record(
                            AlertType.SPIKE,
                            "You're trending!",
                            f"Traffic up {int(change_pct)}% - {active_users} users now",
                            now,
                        ))
                        self._last_high_alert = now

                if prefs.alert_on_traffic_drop and -change_pct >= SUDDEN_CHANGE_PCT:
                    if self._cooldown_passed(self._last_low_alert, now):
                        fired.append(self._record(
                            AlertType.DROP,
                            "Traffic dropped",
                            f"Down {int(-change_pct)}% to {active_users} users",
                            now,
                        ))
                        self._last_low_alert = now

        self._dispatch(fired)
        return fired

    def check_goal_progress(self, today_users: int) -> List[AlertItem]:
        """
        Fire goal alerts for today's user count. The exceeded level is
        checked first; a sample fires at most one goal alert.
        """
        prefs = self.preferences.current
        goal = prefs.daily_user_goal
        if not prefs.show_goal_progress or goal <= 0:
            return []

        progress = today_users / goal
        fired: List[AlertItem] = []

        with self._lock:
            now = self.clock()

            if progress >= GOAL_EXCEEDED_RATIO and not self._has_recent(AlertType.GOAL_EXCEEDED, now):
                fired.append(self._record(
                    AlertType.GOAL_EXCEEDED,
                    "Goal crushed!",
                    f"150% of daily goal reached ({today_users}/{goal})",
                    now,
                ))
            elif progress >= GOAL_REACHED_RATIO and not self._has_recent(AlertType.GOAL_REACHED, now):
                fired.append(self._record(
                    AlertType.GOAL_REACHED,
                    "Goal reached!",
                    f"Daily goal of {goal} users achieved!",
                    now,
                ))

        self._dispatch(fired)
        return fired

    # ============================================================
    # 🧰 INTERNALS (caller holds the lock)
    # ============================================================

    @staticmethod
    def _cooldown_passed(last_fired: Optional[datetime], now: datetime) -> bool:
        return last_fired is None or now - last_fired >= ALERT_COOLDOWN

    def _has_recent(self, alert_type: AlertType, now: datetime) -> bool:
        cutoff = now - GOAL_DEDUP_WINDOW
        return any(a.type == alert_type and a.timestamp > cutoff for a in self._alerts)

    def _record(self, alert_type: AlertType, title: str, message: str, now: datetime) -> AlertItem:
        alert = AlertItem(type=alert_type, title=title, message=message, timestamp=now)
        self._alerts.insert(0, alert)
        del self._alerts[MAX_ALERTS:]
        self._has_unread = True
        log_alert(f"✅ Triggered {alert_type.value}: {title} {message}")
        return alert

    # ============================================================
    # 📣 DISPATCH
    # ============================================================

    def _dispatch(self, fired: List[AlertItem]) -> None:
        for alert in fired:
            self.events.publish(AlertFired(alert))

            if self.notifier is None:
                continue
            try:
                self.notifier.notify(alert.title, alert.message)
            except Exception as e:
                log_dispatcher(f"❌ Notification failed for '{alert.title}': {e}")
