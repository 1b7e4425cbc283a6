"""
Preferences Tests
"""

import pytest
from pydantic import ValidationError

from pulsebar.preferences import Preferences, PreferencesStore, RefreshInterval


class TestPreferences:

    def test_defaults(self):
        prefs = Preferences()

        assert prefs.refresh_interval == RefreshInterval.THIRTY_SECONDS
        assert prefs.alerts_enabled is True
        assert prefs.alert_threshold_high == 500
        assert prefs.alert_threshold_low == 10
        assert prefs.daily_user_goal == 1000

    @pytest.mark.parametrize("interval, seconds", [
        (RefreshInterval.FIFTEEN_SECONDS, 15),
        (RefreshInterval.THIRTY_SECONDS, 30),
        (RefreshInterval.ONE_MINUTE, 60),
        (RefreshInterval.FIVE_MINUTES, 300),
    ])
    def test_interval_seconds(self, interval, seconds):
        assert interval.seconds == seconds


class TestPreferencesStore:

    def test_update_persists(self, tmp_path):
        path = tmp_path / "prefs" / "preferences.json"
        store = PreferencesStore(str(path))

        store.update(selected_property_id="properties/42", refresh_interval="1m")

        reloaded = PreferencesStore(str(path)).current
        assert reloaded.selected_property_id == "properties/42"
        assert reloaded.refresh_interval == RefreshInterval.ONE_MINUTE

    def test_invalid_update_rejected(self):
        store = PreferencesStore()

        with pytest.raises(ValidationError):
            store.update(alert_threshold_high=-1)

        assert store.current.alert_threshold_high == 500

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "preferences.json"
        path.write_text("{broken", encoding="utf-8")

        assert PreferencesStore(str(path)).current == Preferences()

    def test_current_is_a_copy(self):
        store = PreferencesStore()
        prefs = store.current
        prefs.daily_user_goal = 5

        assert store.current.daily_user_goal == 1000
