"""Shared domain types for the decision core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol

import pandas as pd  # type: ignore[import-untyped]

PositionSide = Literal["long", "short"]
FibPosition = Literal[
    "in_ote",
    "in_retracement_zone",
    "above_ote",
    "strong_zone",
    "below_ote",
    "weak_zone",
]
MarketPhase = Literal["accumulation", "distribution", "uptrend", "downtrend", "consolidation"]
VolumePattern = Literal["high_volume", "low_volume", "normal_volume", "divergence"]
PriceAction = Literal["breakout", "breakdown", "false_move", "consolidation", "trending"]

DEFAULT_MAJOR_SYMBOLS: tuple[str, ...] = ("BTCUSDT", "ETHUSDT")


@dataclass(frozen=True, slots=True)
class Candle:
    """One OHLCV bar."""

    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def upper_shadow(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_shadow(self) -> float:
        return min(self.open, self.close) - self.low


@dataclass(frozen=True, slots=True)
class OpenInterest:
    """Open interest in contracts, latest and averaged."""

    latest: float
    average: float


@dataclass(frozen=True, slots=True)
class IntradaySeries:
    """Last few short-timeframe points, oldest to newest."""

    mid_prices: tuple[float, ...] = ()
    ema20_values: tuple[float, ...] = ()
    macd_values: tuple[float, ...] = ()
    rsi7_values: tuple[float, ...] = ()
    rsi14_values: tuple[float, ...] = ()


@dataclass(frozen=True, slots=True)
class LongerTermContext:
    """Long-timeframe trend, volatility and volume context."""

    ema20: float = 0.0
    ema50: float = 0.0
    atr3: float = 0.0
    atr14: float = 0.0
    current_volume: float = 0.0
    average_volume: float = 0.0
    macd_values: tuple[float, ...] = ()
    rsi14_values: tuple[float, ...] = ()


@dataclass(frozen=True, slots=True)
class FibonacciAnalysis:
    """Swing-based Fibonacci retracement levels."""

    swing_high: float
    swing_low: float
    levels: dict[str, float]
    price_position: FibPosition


@dataclass(frozen=True, slots=True)
class WyckoffAnalysis:
    """Wyckoff phase, candle signals and volume regime."""

    phase: MarketPhase
    signals: tuple[str, ...]
    volume_pattern: VolumePattern
    price_action: PriceAction


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    """Per-symbol computed market view for one cycle."""

    symbol: str
    current_price: float
    price_change_1h: float
    price_change_4h: float
    current_ema20: float
    current_macd: float
    current_rsi7: float
    funding_rate: float
    open_interest: OpenInterest | None
    intraday: IntradaySeries
    longer_term: LongerTermContext
    latest_candle: Candle | None = None
    fibonacci: FibonacciAnalysis | None = None
    wyckoff: WyckoffAnalysis | None = None

    @property
    def open_interest_value(self) -> float:
        """Open interest notional in quote currency (USD)."""
        if self.open_interest is None:
            return 0.0
        return self.open_interest.latest * self.current_price


@dataclass(frozen=True, slots=True)
class OIRankEntry:
    """Open-interest growth ranking entry from the external coin pool."""

    symbol: str
    rank: int
    oi_delta_pct: float
    oi_delta_value: float
    price_delta_pct: float
    net_long: float
    net_short: float


@dataclass(slots=True)
class Position:
    """Snapshot copy of one open futures position."""

    symbol: str
    side: PositionSide
    entry_price: float
    mark_price: float
    quantity: float
    leverage: int
    unrealized_pnl: float = 0.0
    unrealized_pnl_pct: float = 0.0
    liquidation_price: float = 0.0
    margin_used: float = 0.0
    update_time_ms: int = 0


@dataclass(slots=True)
class AccountState:
    """Account balance summary."""

    total_equity: float
    available_balance: float
    total_pnl: float = 0.0
    total_pnl_pct: float = 0.0
    margin_used: float = 0.0
    margin_used_pct: float = 0.0
    position_count: int = 0


@dataclass(frozen=True, slots=True)
class CandidateCoin:
    """Symbol queued for analysis with its provenance tags."""

    symbol: str
    sources: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LeverageCaps:
    """Maximum leverage per symbol class."""

    major: int = 5
    altcoin: int = 5
    major_symbols: tuple[str, ...] = DEFAULT_MAJOR_SYMBOLS

    def cap_for(self, symbol: str) -> int:
        return self.major if symbol in self.major_symbols else self.altcoin


@dataclass(frozen=True, slots=True)
class PerformanceSummary:
    """Trailing performance metrics of the trader."""

    sharpe_ratio: float
    win_rate: float | None = None
    total_trades: int | None = None


@dataclass(slots=True)
class DecisionContext:
    """Aggregate input of one decision cycle."""

    current_time: str
    call_count: int
    runtime_minutes: int
    account: AccountState
    positions: list[Position] = field(default_factory=list)
    candidate_coins: list[CandidateCoin] = field(default_factory=list)
    leverage_caps: LeverageCaps = field(default_factory=LeverageCaps)
    performance: PerformanceSummary | None = None
    market_data: dict[str, MarketSnapshot] = field(default_factory=dict)
    oi_rank: dict[str, OIRankEntry] = field(default_factory=dict)

    @property
    def held_symbols(self) -> set[str]:
        return {position.symbol for position in self.positions}


class MarketDataSource(Protocol):
    """Candle, open-interest and funding-rate provider."""

    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        """Return candles ordered oldest to newest."""

    def fetch_open_interest(self, symbol: str) -> OpenInterest:
        """Return latest and average open interest."""

    def fetch_funding_rate(self, symbol: str) -> float:
        """Return the latest funding rate."""


class OIRankingSource(Protocol):
    """Provider of the open-interest growth ranking."""

    def fetch(self) -> list[OIRankEntry]:
        """Return ranking entries ordered by rank."""


class LLMGateway(Protocol):
    """Single round-trip chat completion."""

    def call(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw text reply of the model."""
