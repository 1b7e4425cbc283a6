from __future__ import annotations
"""
User preferences consumed by the refresh pipeline.

The settings UI owns these values; the core only reads them, except for the
selected property/site which the refreshers write back when the user
makes a selection.
"""

import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError


def log_prefs(message: str):
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] [PREFS] {message}")


class RefreshInterval(str, Enum):
    FIFTEEN_SECONDS = "15s"
    THIRTY_SECONDS = "30s"
    ONE_MINUTE = "1m"
    FIVE_MINUTES = "5m"

    @property
    def seconds(self) -> float:
        return {
            RefreshInterval.FIFTEEN_SECONDS: 15.0,
            RefreshInterval.THIRTY_SECONDS: 30.0,
            RefreshInterval.ONE_MINUTE: 60.0,
            RefreshInterval.FIVE_MINUTES: 300.0,
        }[self]


class Preferences(BaseModel):
    selected_property_id: Optional[str] = None
    selected_site_url: Optional[str] = None
    refresh_interval: RefreshInterval = RefreshInterval.THIRTY_SECONDS

    # Alerts
    alerts_enabled: bool = True
    alert_threshold_high: int = Field(default=500, ge=0)
    alert_threshold_low: int = Field(default=10, ge=0)
    alert_on_traffic_spike: bool = True
    alert_on_traffic_drop: bool = True

    # Goals
    daily_user_goal: int = Field(default=1000, ge=0)
    show_goal_progress: bool = True


class PreferencesStore:
    """
    JSON-file backed holder of the current Preferences.
    Readers always get an immutable copy via `current`.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._prefs = self._load()

    def _load(self) -> Preferences:
        if not self.path or not self.path.exists():
            return Preferences()
        try:
            return Preferences.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as e:
            log_prefs(f"⚠️  Unreadable preferences at {self.path}, using defaults: {e}")
            return Preferences()

    def _save(self, prefs: Preferences) -> None:
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(prefs.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            log_prefs(f"❌ Failed to save preferences: {e}")

    @property
    def current(self) -> Preferences:
        with self._lock:
            return self._prefs.model_copy()

    def update(self, **changes) -> Preferences:
        """
        Apply field changes, validate, persist and return the new Preferences.

        Raises:
            pydantic.ValidationError: if a changed value is invalid
        """
        with self._lock:
            merged = self._prefs.model_dump()
            merged.update(changes)
            self._prefs = Preferences.model_validate(merged)
            self._save(self._prefs)
            return self._prefs.model_copy()
