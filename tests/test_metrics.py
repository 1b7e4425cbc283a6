"""
Numeric and Formatting Tests

percentChange semantics, tolerant parsing and display formatting.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from pulsebar.models import MetricComparison
from pulsebar.utils.formatting import (
    format_change,
    format_duration,
    format_number,
    format_percentage,
    time_ago,
    time_ago_compact,
)
from pulsebar.utils.metrics import parse_int, parse_number, percent_of_total, safe_delta_pct


class TestPercentChange:
    """yesterday > 0 → ratio; otherwise 100 if today > 0 else 0"""

    def test_both_zero(self):
        assert MetricComparison(today=0, yesterday=0).percent_change == 0

    def test_from_zero_to_positive(self):
        assert MetricComparison(today=42, yesterday=0).percent_change == 100

    def test_standard_increase(self):
        assert MetricComparison(today=150, yesterday=100).percent_change == 50.0

    def test_decrease_is_negative(self):
        comparison = MetricComparison(today=75, yesterday=100)
        assert comparison.percent_change == -25.0
        assert comparison.is_positive is False

    def test_unchanged_counts_as_positive(self):
        assert MetricComparison(today=10, yesterday=10).is_positive is True

    def test_negative_previous_treated_as_zero_baseline(self):
        assert safe_delta_pct(5, -3) == 100.0
        assert safe_delta_pct(0, -3) == 0.0


class TestParsing:

    @pytest.mark.parametrize("raw, expected", [
        ("12", 12.0),
        ("0.4231", 0.4231),
        ("", 0.0),
        ("abc", 0.0),
        (None, 0.0),
        ("NaN", 0.0),
        ("inf", 0.0),
    ])
    def test_parse_number_never_raises(self, raw, expected):
        assert parse_number(raw) == expected

    def test_parse_int_truncates(self):
        assert parse_int("12.0") == 12
        assert parse_int("oops") == 0

    def test_percent_of_total_zero_total(self):
        assert percent_of_total(5, 0) == 0.0
        assert percent_of_total(0, 0) == 0.0

    def test_percent_of_total(self):
        assert percent_of_total(25, 200) == 12.5


class TestFormatting:

    def test_format_number_millions(self):
        assert format_number(1_500_000) == "1.5M"

    def test_format_number_thousands(self):
        assert format_number(2_300) == "2.3K"

    def test_format_number_small(self):
        assert format_number(999) == "999"

    @pytest.mark.parametrize("value", [math.nan, math.inf, -5])
    def test_format_number_invalid(self, value):
        assert format_number(value) == "0"

    def test_format_percentage_nan(self):
        assert format_percentage(math.nan) == "0.0%"

    def test_format_percentage_clamped(self):
        assert format_percentage(140) == "100.0%"
        assert format_percentage(-3) == "0.0%"
        assert format_percentage(42.5) == "42.5%"

    def test_format_change_infinity(self):
        assert format_change(math.inf) == "+0.0%"

    def test_format_change_sign_and_clamp(self):
        assert format_change(12.34) == "+12.3%"
        assert format_change(0) == "+0.0%"
        assert format_change(-4.5) == "-4.5%"
        assert format_change(5000) == "+999.0%"
        assert format_change(-5000) == "-999.0%"

    def test_format_duration(self):
        assert format_duration(125) == "2m 05s"
        assert format_duration(math.nan) == "0m 00s"
        assert format_duration(-1) == "0m 00s"


class TestTimeAgo:

    NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

    def test_recent(self):
        assert time_ago(self.NOW - timedelta(seconds=20), now=self.NOW) == "just now"
        assert time_ago_compact(self.NOW - timedelta(seconds=20), now=self.NOW) == "now"

    def test_minutes_and_hours(self):
        assert time_ago(self.NOW - timedelta(minutes=5), now=self.NOW) == "5m ago"
        assert time_ago(self.NOW - timedelta(hours=2), now=self.NOW) == "2h ago"

    def test_compact_days(self):
        assert time_ago_compact(self.NOW - timedelta(days=3), now=self.NOW) == "3d"

    def test_future_moment_clamps_to_now(self):
        assert time_ago(self.NOW + timedelta(minutes=5), now=self.NOW) == "just now"
