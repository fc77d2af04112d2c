"""Fibonacci retracement analysis over the recent swing."""

from __future__ import annotations

import pandas as pd  # type: ignore[import-untyped]

from ai_futures.errors import InsufficientDataError
from ai_futures.types import FibonacciAnalysis, FibPosition

MIN_CANDLES = 30
SWING_LOOKBACK = 20

FIB_RATIOS: dict[str, float] = {
    "23.6": 0.236,
    "38.2": 0.382,
    "50.0": 0.500,
    "61.8": 0.618,
    "70.5": 0.705,
    "78.6": 0.786,
}


def identify_swing_points(df: pd.DataFrame, lookback: int = SWING_LOOKBACK) -> tuple[float, float]:
    """Highest high and lowest low over the last ``lookback`` candles."""
    recent = df.iloc[-lookback:]
    return float(recent["high"].max()), float(recent["low"].min())


def calculate_fibonacci_levels(swing_high: float, swing_low: float) -> dict[str, float]:
    """Retracement prices measured down from the swing high."""
    if swing_high <= swing_low:
        return {}
    diff = swing_high - swing_low
    return {label: swing_high - diff * ratio for label, ratio in FIB_RATIOS.items()}


def classify_price_position(price: float, levels: dict[str, float]) -> FibPosition:
    """Locate ``price`` relative to the 61.8-70.5 optimal entry band.

    Prices above the band are refined into the 38.2-61.8 retracement zone or the
    strong zone beyond the 23.6 level; prices below it into the weak zone past
    the 78.6 level.
    """
    if not levels:
        raise InsufficientDataError("fibonacci_levels_empty")

    ote_top = levels["61.8"]
    ote_bottom = levels["70.5"]

    if ote_bottom <= price <= ote_top:
        return "in_ote"
    if price > ote_top:
        if price <= levels["38.2"]:
            return "in_retracement_zone"
        if price > levels["23.6"]:
            return "strong_zone"
        return "above_ote"
    if price < levels["78.6"]:
        return "weak_zone"
    return "below_ote"


def calculate_fibonacci(df: pd.DataFrame) -> FibonacciAnalysis:
    """Full retracement analysis for the last close of ``df``."""
    if len(df) < MIN_CANDLES:
        raise InsufficientDataError("not_enough_data")

    swing_high, swing_low = identify_swing_points(df)
    levels = calculate_fibonacci_levels(swing_high, swing_low)
    if not levels:
        raise InsufficientDataError("swing_range_empty")

    current_price = float(df["close"].iloc[-1])
    return FibonacciAnalysis(
        swing_high=swing_high,
        swing_low=swing_low,
        levels=levels,
        price_position=classify_price_position(current_price, levels),
    )
