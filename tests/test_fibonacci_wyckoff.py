from __future__ import annotations

import pandas as pd
import pytest

from ai_futures.errors import InsufficientDataError
from ai_futures.features.fibonacci import (
    FIB_RATIOS,
    calculate_fibonacci,
    calculate_fibonacci_levels,
    classify_price_position,
)
from ai_futures.features.wyckoff import (
    analyze_wyckoff,
    detect_wyckoff_signals,
    identify_market_phase,
    is_climax,
    is_sign_of_strength,
    is_sign_of_weakness,
    is_spring,
    is_test,
    is_upthrust,
)
from ai_futures.types import Candle


def _candles(rows: list[tuple[float, float, float, float]]) -> list[Candle]:
    return [Candle(open=o, high=h, low=low, close=c) for o, h, low, c in rows]


def test_fibonacci_midpoint_is_exact() -> None:
    levels = calculate_fibonacci_levels(110_000, 90_000)
    assert levels["50.0"] == 100_000


def test_fibonacci_levels_decrease_with_ratio() -> None:
    levels = calculate_fibonacci_levels(110_000, 90_000)
    ordered = [levels[label] for label in sorted(FIB_RATIOS, key=lambda k: FIB_RATIOS[k])]
    assert ordered == sorted(ordered, reverse=True)
    assert len(set(ordered)) == len(ordered)


def test_fibonacci_levels_empty_for_flat_swing() -> None:
    assert calculate_fibonacci_levels(100.0, 100.0) == {}


@pytest.mark.parametrize(
    ("price", "expected"),
    [
        (96_500, "in_ote"),
        (101_000, "in_retracement_zone"),
        (104_000, "above_ote"),
        (108_000, "strong_zone"),
        (95_000, "below_ote"),
        (92_000, "weak_zone"),
    ],
)
def test_classify_price_position(price: float, expected: str) -> None:
    levels = calculate_fibonacci_levels(110_000, 90_000)
    assert classify_price_position(price, levels) == expected


def test_calculate_fibonacci_requires_history() -> None:
    closes = [100.0 + i for i in range(29)]
    df = pd.DataFrame(
        {"open": closes, "high": [c + 1 for c in closes], "low": [c - 1 for c in closes], "close": closes}
    )
    with pytest.raises(InsufficientDataError):
        calculate_fibonacci(df)

    longer = pd.concat([df, df.iloc[-1:]], ignore_index=True)
    analysis = calculate_fibonacci(longer)
    assert analysis.swing_high > analysis.swing_low


def test_individual_patterns() -> None:
    assert is_spring(
        _candles(
            [
                (100_000, 101_000, 99_000, 100_500),
                (100_500, 100_800, 98_000, 100_200),
                (100_200, 101_000, 99_500, 100_800),
            ]
        )
    )
    assert is_upthrust(
        _candles(
            [
                (105_000, 106_000, 104_500, 105_500),
                (105_500, 108_000, 105_000, 105_800),
                (105_800, 106_000, 105_000, 105_200),
            ]
        )
    )
    assert is_sign_of_strength(
        _candles([(100_000, 100_500, 99_500, 100_200), (100_200, 105_000, 100_000, 104_500)])
    )
    assert is_sign_of_weakness(
        _candles([(105_000, 105_500, 104_500, 105_200), (105_200, 105_500, 101_000, 101_500)])
    )
    assert is_climax(
        _candles([(100_000, 100_500, 99_500, 100_000), (100_000, 108_000, 92_000, 104_000)])
    )
    assert is_test(
        _candles([(101_000, 102_000, 100_000, 101_500), (101_500, 101_800, 101_200, 101_600)])
    )


def test_signals_need_five_candles() -> None:
    rows = [(100.0, 101.0, 99.0, 100.5)] * 4
    assert detect_wyckoff_signals(_candles(rows)) == []


def test_flat_market_is_consolidation() -> None:
    rows = [(100.0, 100.5, 99.5, 100.0)] * 12
    assert identify_market_phase(_candles(rows)) == "consolidation"


def test_strong_rise_is_uptrend() -> None:
    closes = [100.0 * 1.03**i for i in range(12)]
    rows = [(c / 1.03, c * 1.001, c / 1.03 * 0.999, c) for c in closes]
    assert identify_market_phase(_candles(rows)) == "uptrend"


def test_analyze_wyckoff_requires_twenty_candles() -> None:
    closes = [100.0 + i for i in range(19)]
    df = pd.DataFrame(
        {
            "open": closes,
            "high": [c + 1 for c in closes],
            "low": [c - 1 for c in closes],
            "close": closes,
            "volume": [1000.0] * len(closes),
        }
    )
    with pytest.raises(InsufficientDataError):
        analyze_wyckoff(df)
