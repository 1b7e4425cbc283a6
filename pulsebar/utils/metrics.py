from __future__ import annotations
"""
Centralized numeric utilities for Pulsebar metrics
"""

import math
from typing import Any, Sequence


def safe_delta_pct(current: float, previous: float) -> float:
    """
    Unified delta logic:
    - previous > 0 → standard percentage delta
    - previous <= 0 and current > 0 → 100.0
    - otherwise → 0.0
    """
    if previous > 0:
        return ((current - previous) / previous) * 100
    elif current > 0:
        return 100.0
    else:
        return 0.0


def parse_number(value: Any) -> float:
    """
    Parse a GA4 string-typed metric value. Never raises:
    unparseable, missing and non-finite values all become 0.0
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_int(value: Any) -> int:
    """Integer flavour of parse_number ('12.0' → 12, 'abc' → 0)"""
    return int(parse_number(value))


def percent_of_total(part: float, total: float) -> float:
    """Share of total in percent; a zero total yields 0 for every part"""
    if total <= 0:
        return 0.0
    return part / total * 100


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0
