"""Indicator computation over candle frames.

All functions are pure. Frames must be ordered oldest to newest and carry
``open``, ``high``, ``low``, ``close`` and ``volume`` columns. Indicators return
0.0 when the frame is shorter than their warm-up period.
"""

from __future__ import annotations

import numpy as np
import pandas as pd  # type: ignore[import-untyped]

from ai_futures.types import Candle, IntradaySeries, LongerTermContext

SERIES_POINTS = 10


def calculate_ema(df: pd.DataFrame, period: int) -> float:
    """EMA of closes, seeded with the SMA of the first ``period`` candles."""
    return _ema(_closes(df), period)


def calculate_macd(df: pd.DataFrame) -> float:
    """MACD line (EMA12 - EMA26)."""
    return _macd(_closes(df))


def calculate_rsi(df: pd.DataFrame, period: int) -> float:
    """Wilder-smoothed RSI."""
    return _rsi(_closes(df), period)


def calculate_atr(df: pd.DataFrame, period: int) -> float:
    """Wilder-smoothed average true range."""
    high = df["high"].to_numpy(dtype=float)
    low = df["low"].to_numpy(dtype=float)
    close = df["close"].to_numpy(dtype=float)
    if len(close) <= period:
        return 0.0

    tr = true_range(high, low, close)
    atr = float(tr[1 : period + 1].mean())
    for value in tr[period + 1 :]:
        atr = (atr * (period - 1) + float(value)) / period
    return atr


def true_range(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> np.ndarray:
    """True range per bar; the first bar has no previous close and is 0."""
    tr = np.zeros(len(close), dtype=float)
    if len(close) < 2:
        return tr
    prev_close = close[:-1]
    tr[1:] = np.maximum(
        high[1:] - low[1:],
        np.maximum(np.abs(high[1:] - prev_close), np.abs(low[1:] - prev_close)),
    )
    return tr


def price_change_pct(df: pd.DataFrame, bars_back: int) -> float:
    """Percent change of the last close against the close ``bars_back`` bars earlier."""
    closes = _closes(df)
    if len(closes) < bars_back + 1:
        return 0.0
    reference = closes[-(bars_back + 1)]
    if reference <= 0:
        return 0.0
    return float((closes[-1] - reference) / reference * 100)


def calculate_intraday_series(df: pd.DataFrame) -> IntradaySeries:
    """Rolling indicator values over the last few short-timeframe candles."""
    closes = _closes(df)
    start = max(0, len(closes) - SERIES_POINTS)

    mid_prices: list[float] = []
    ema20: list[float] = []
    macd: list[float] = []
    rsi7: list[float] = []
    rsi14: list[float] = []
    for i in range(start, len(closes)):
        window = closes[: i + 1]
        mid_prices.append(float(closes[i]))
        if i >= 19:
            ema20.append(_ema(window, 20))
        if i >= 25:
            macd.append(_macd(window))
        if i >= 7:
            rsi7.append(_rsi(window, 7))
        if i >= 14:
            rsi14.append(_rsi(window, 14))

    return IntradaySeries(
        mid_prices=tuple(mid_prices),
        ema20_values=tuple(ema20),
        macd_values=tuple(macd),
        rsi7_values=tuple(rsi7),
        rsi14_values=tuple(rsi14),
    )


def calculate_longer_term_context(df: pd.DataFrame) -> LongerTermContext:
    """Trend, volatility and volume context from long-timeframe candles."""
    closes = _closes(df)
    volumes = df["volume"].to_numpy(dtype=float)

    current_volume = float(volumes[-1]) if len(volumes) else 0.0
    average_volume = float(volumes.mean()) if len(volumes) else 0.0

    start = max(0, len(closes) - SERIES_POINTS)
    macd: list[float] = []
    rsi14: list[float] = []
    for i in range(start, len(closes)):
        window = closes[: i + 1]
        if i >= 25:
            macd.append(_macd(window))
        if i >= 14:
            rsi14.append(_rsi(window, 14))

    return LongerTermContext(
        ema20=_ema(closes, 20),
        ema50=_ema(closes, 50),
        atr3=calculate_atr(df, 3),
        atr14=calculate_atr(df, 14),
        current_volume=current_volume,
        average_volume=average_volume,
        macd_values=tuple(macd),
        rsi14_values=tuple(rsi14),
    )


def latest_candle(df: pd.DataFrame) -> Candle | None:
    """Last bar of the frame as a ``Candle``."""
    if df.empty:
        return None
    row = df.iloc[-1]
    return Candle(
        open=float(row["open"]),
        high=float(row["high"]),
        low=float(row["low"]),
        close=float(row["close"]),
        volume=float(row["volume"]),
    )


def candles_from_frame(df: pd.DataFrame) -> list[Candle]:
    """Convert a frame into ``Candle`` records, oldest first."""
    return [
        Candle(
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df[["open", "high", "low", "close", "volume"]].itertuples(index=False)
    ]


def _closes(df: pd.DataFrame) -> np.ndarray:
    return df["close"].to_numpy(dtype=float)


def _ema(values: np.ndarray, period: int) -> float:
    if period <= 0 or len(values) < period:
        return 0.0
    ema = float(values[:period].mean())
    multiplier = 2.0 / (period + 1)
    for value in values[period:]:
        ema = (float(value) - ema) * multiplier + ema
    return ema


def _macd(values: np.ndarray) -> float:
    if len(values) < 26:
        return 0.0
    return _ema(values, 12) - _ema(values, 26)


def _rsi(values: np.ndarray, period: int) -> float:
    if period <= 0 or len(values) <= period:
        return 0.0

    deltas = np.diff(values)
    seed = deltas[:period]
    avg_gain = float(seed[seed > 0].sum()) / period
    avg_loss = float(-seed[seed < 0].sum()) / period

    for delta in deltas[period:]:
        gain = float(delta) if delta > 0 else 0.0
        loss = float(-delta) if delta < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)
