"""Wyckoff-style phase, candle pattern and volume regime classification."""

from __future__ import annotations

from collections.abc import Callable, Sequence

import pandas as pd  # type: ignore[import-untyped]

from ai_futures.errors import InsufficientDataError
from ai_futures.features.indicators import candles_from_frame
from ai_futures.types import Candle, MarketPhase, PriceAction, VolumePattern, WyckoffAnalysis

MIN_CANDLES = 20
PHASE_WINDOW = 10
SIGNAL_WINDOW = 5
VOLUME_WINDOW = 20


def volatility_pct(candles: Sequence[Candle]) -> float:
    """Mean true range as a percentage of the previous close."""
    if len(candles) < 2:
        return 0.0
    total = 0.0
    for prev, cur in zip(candles[:-1], candles[1:]):
        tr = max(cur.high - cur.low, abs(cur.high - prev.close), abs(cur.low - prev.close))
        total += tr / prev.close * 100
    return total / (len(candles) - 1)


def identify_market_phase(candles: Sequence[Candle]) -> MarketPhase:
    if len(candles) < PHASE_WINDOW:
        return "consolidation"

    recent = candles[-PHASE_WINDOW:]
    changes = [
        (cur.close - prev.close) / prev.close * 100 for prev, cur in zip(recent[:-1], recent[1:])
    ]
    avg_change = sum(changes) / len(changes)
    volatility = volatility_pct(recent)

    if volatility < 2.0 and abs(avg_change) < 1.0:
        return "consolidation"
    if avg_change > 2.0:
        return "uptrend"
    if avg_change < -2.0:
        return "downtrend"

    high = max(c.high for c in recent)
    low = min(c.low for c in recent)
    if high - low <= 0:
        return "consolidation"
    position_in_range = (recent[-1].close - low) / (high - low)
    if position_in_range < 0.3:
        return "accumulation"
    if position_in_range > 0.7:
        return "distribution"
    return "consolidation"


def is_spring(candles: Sequence[Candle]) -> bool:
    """Long lower shadow on the prior bar, then a higher close."""
    if len(candles) < 2:
        return False
    previous, current = candles[-2], candles[-1]
    return previous.lower_shadow > previous.body * 2 and current.close > previous.close


def is_upthrust(candles: Sequence[Candle]) -> bool:
    """Long upper shadow on the prior bar, then a lower close."""
    if len(candles) < 2:
        return False
    previous, current = candles[-2], candles[-1]
    return previous.upper_shadow > previous.body * 2 and current.close < previous.close


def is_sign_of_strength(candles: Sequence[Candle]) -> bool:
    if not candles:
        return False
    current = candles[-1]
    return current.close > current.open and (current.close - current.open) > current.range * 0.6


def is_sign_of_weakness(candles: Sequence[Candle]) -> bool:
    if not candles:
        return False
    current = candles[-1]
    return current.close < current.open and (current.open - current.close) > current.range * 0.6


def is_climax(candles: Sequence[Candle]) -> bool:
    if not candles or candles[-1].open <= 0:
        return False
    current = candles[-1]
    return current.range / current.open * 100 > 5.0


def is_test(candles: Sequence[Candle]) -> bool:
    if not candles:
        return False
    current = candles[-1]
    return current.range > 0 and current.body / current.range < 0.3


def is_breakout(candles: Sequence[Candle]) -> bool:
    """Close above the highest high of the preceding bars."""
    if len(candles) < 2:
        return False
    return candles[-1].close > max(c.high for c in candles[:-1])


def is_breakdown(candles: Sequence[Candle]) -> bool:
    """Close below the lowest low of the preceding bars."""
    if len(candles) < 2:
        return False
    return candles[-1].close < min(c.low for c in candles[:-1])


_SIGNAL_DETECTORS: tuple[tuple[str, Callable[[Sequence[Candle]], bool]], ...] = (
    ("spring", is_spring),
    ("upthrust", is_upthrust),
    ("sign_of_strength", is_sign_of_strength),
    ("sign_of_weakness", is_sign_of_weakness),
    ("climax", is_climax),
    ("test", is_test),
    ("breakout", is_breakout),
    ("breakdown", is_breakdown),
)


def detect_wyckoff_signals(candles: Sequence[Candle]) -> list[str]:
    """All patterns matching the last few candles, in a fixed order."""
    if len(candles) < SIGNAL_WINDOW:
        return []
    recent = candles[-SIGNAL_WINDOW:]
    return [name for name, detector in _SIGNAL_DETECTORS if detector(recent)]


def analyze_volume_pattern(candles: Sequence[Candle]) -> VolumePattern:
    if len(candles) < SIGNAL_WINDOW:
        return "normal_volume"

    recent = candles[-SIGNAL_WINDOW:]
    recent_avg = sum(c.volume for c in recent) / len(recent)
    historical = candles[max(0, len(candles) - VOLUME_WINDOW) : len(candles) - SIGNAL_WINDOW]
    historical_avg = sum(c.volume for c in historical) / len(historical) if historical else 0.0
    current_volume = recent[-1].volume

    if historical_avg > 0:
        ratio = current_volume / historical_avg
        if ratio > 2.0:
            return "high_volume"
        if ratio < 0.5:
            return "low_volume"

    if recent[0].open > 0 and recent_avg > 0:
        price_change = (recent[-1].close - recent[0].open) / recent[0].open * 100
        volume_change = (current_volume - recent_avg) / recent_avg * 100
        if abs(price_change) > 2.0 and abs(volume_change) < 1.0:
            return "divergence"

    return "normal_volume"


def identify_price_action(candles: Sequence[Candle]) -> PriceAction:
    if len(candles) < 3:
        return "consolidation"

    recent = candles[-3:]
    total_change = (recent[-1].close - recent[0].open) / recent[0].open * 100
    if abs(total_change) > 3.0:
        return "breakout" if total_change > 0 else "breakdown"

    volatility = volatility_pct(recent)
    if volatility > 2.0:
        return "false_move"
    if volatility < 1.0:
        return "consolidation"
    return "trending"


def analyze_wyckoff(df: pd.DataFrame) -> WyckoffAnalysis:
    """Bundle phase, signals, volume pattern and price action for a frame."""
    if len(df) < MIN_CANDLES:
        raise InsufficientDataError("not_enough_data")

    candles = candles_from_frame(df)
    return WyckoffAnalysis(
        phase=identify_market_phase(candles),
        signals=tuple(detect_wyckoff_signals(candles)),
        volume_pattern=analyze_volume_pattern(candles),
        price_action=identify_price_action(candles),
    )
