"""Unit normalization helpers (everything ends up in degC and 0..1 ratios)."""
from __future__ import annotations

import math
from typing import Optional

ABSOLUTE_ZERO_C = -273.15


def kelvin_to_celsius(value: float) -> float:
    return float(value) + ABSOLUTE_ZERO_C


def fahrenheit_to_celsius(value: float) -> float:
    return (float(value) - 32.0) * 5.0 / 9.0


def percent_to_ratio(value: Optional[float]) -> Optional[float]:
    """Convert 0..100 % to a 0..1 ratio, clamping small sensor overshoots.

    NaN means "no reading" and maps to None.
    """
    if value is None:
        return None
    ratio = float(value) / 100.0
    if math.isnan(ratio):
        return None
    return min(1.0, max(0.0, ratio))


__all__ = ["kelvin_to_celsius", "fahrenheit_to_celsius", "percent_to_ratio", "ABSOLUTE_ZERO_C"]
