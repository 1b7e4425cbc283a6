"""
Canonical report windows and limits.
Request builders and normalizers both read these values so row bucketing
always matches the ranges that were requested.
"""

# Extended (GA4 overview style) comparison
EXTENDED_WINDOW_DAYS = 28  # current period = [end - 28, end], end = yesterday
REPORT_END_OFFSET_DAYS = 1  # newest complete day is yesterday

# Realtime sparkline
SPARKLINE_CAPACITY = 30

# Row limits
GA4_TOP_ROWS = 5
GSC_TOP_ROWS = 10
GSC_DEFAULT_ROW_LIMIT = 1000
