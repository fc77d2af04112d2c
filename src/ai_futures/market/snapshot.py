"""Per-cycle market snapshot assembly."""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from time import perf_counter

import pandas as pd  # type: ignore[import-untyped]

from ai_futures.config import Settings
from ai_futures.errors import InsufficientDataError, MarketDataError
from ai_futures.features.fibonacci import calculate_fibonacci
from ai_futures.features.indicators import (
    calculate_ema,
    calculate_intraday_series,
    calculate_longer_term_context,
    calculate_macd,
    calculate_rsi,
    latest_candle,
    price_change_pct,
)
from ai_futures.features.wyckoff import analyze_wyckoff
from ai_futures.strategy.candidates import analysis_symbols, max_candidates
from ai_futures.types import (
    DecisionContext,
    MarketDataSource,
    MarketSnapshot,
    OIRankEntry,
    OIRankingSource,
    OpenInterest,
)
from ai_futures.utils.logging import get_logger, log_symbol_skipped

# 20 bars of 3m candles is one hour.
_BARS_PER_HOUR_SHORT = 20


def compute_market_snapshot(
    symbol: str,
    df_short: pd.DataFrame,
    df_long: pd.DataFrame,
    open_interest: OpenInterest | None,
    funding_rate: float,
) -> MarketSnapshot:
    """Assemble a snapshot from short- and long-timeframe candles."""
    if df_short.empty or df_long.empty:
        raise MarketDataError("input_ohlcv_empty", symbol=symbol)

    current_price = float(df_short["close"].iloc[-1])

    price_change_4h = 0.0
    if len(df_long) >= 2:
        reference = float(df_long["close"].iloc[-2])
        if reference > 0:
            price_change_4h = (current_price - reference) / reference * 100

    try:
        fibonacci = calculate_fibonacci(df_long)
    except InsufficientDataError:
        fibonacci = None
    try:
        wyckoff = analyze_wyckoff(df_long)
    except InsufficientDataError:
        wyckoff = None

    return MarketSnapshot(
        symbol=symbol,
        current_price=current_price,
        price_change_1h=price_change_pct(df_short, _BARS_PER_HOUR_SHORT),
        price_change_4h=price_change_4h,
        current_ema20=calculate_ema(df_short, 20),
        current_macd=calculate_macd(df_short),
        current_rsi7=calculate_rsi(df_short, 7),
        funding_rate=funding_rate,
        open_interest=open_interest,
        intraday=calculate_intraday_series(df_short),
        longer_term=calculate_longer_term_context(df_long),
        latest_candle=latest_candle(df_short),
        fibonacci=fibonacci,
        wyckoff=wyckoff,
    )


class MarketSnapshotBuilder:
    """Fetches and computes snapshots for every symbol of a decision context."""

    def __init__(
        self,
        source: MarketDataSource,
        settings: Settings,
        oi_ranking: OIRankingSource | None = None,
    ) -> None:
        self._source = source
        self._settings = settings
        self._oi_ranking = oi_ranking
        self._logger = get_logger("ai_futures.market.snapshot")

    def build_snapshot(
        self,
        context: DecisionContext,
        *,
        timeout: float | None = None,
    ) -> DecisionContext:
        """Return a copy of ``context`` with market data and OI ranks attached.

        Symbols whose candles cannot be fetched are dropped; new symbols below the
        liquidity floor are dropped; held symbols always stay. ``timeout`` bounds
        the whole fetch phase and raises ``TimeoutError`` when exceeded.
        """
        started = perf_counter()
        held = context.held_symbols
        symbols = analysis_symbols(context.positions, context.candidate_coins, max_candidates(context))

        market_data: dict[str, MarketSnapshot] = {}
        if symbols:
            workers = min(self._settings.snapshot_workers, len(symbols))
            pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="snapshot")
            futures: dict[Future[MarketSnapshot], str] = {
                pool.submit(self.fetch_symbol, symbol): symbol for symbol in symbols
            }
            try:
                for future in as_completed(futures, timeout=timeout):
                    symbol = futures[future]
                    snapshot = self._collect(symbol, future)
                    if snapshot is None:
                        continue
                    if symbol not in held and not self._passes_liquidity_gate(snapshot):
                        continue
                    market_data[symbol] = snapshot
            except BaseException:
                pool.shutdown(wait=False, cancel_futures=True)
                raise
            pool.shutdown(wait=True)

        oi_rank = self._load_oi_rank(set(market_data))
        self._logger.info(
            "snapshot_built",
            requested=len(symbols),
            analyzed=len(market_data),
            oi_ranked=len(oi_rank),
            elapsed_ms=round((perf_counter() - started) * 1000, 2),
        )
        return dataclasses.replace(context, market_data=market_data, oi_rank=oi_rank)

    def fetch_symbol(self, symbol: str) -> MarketSnapshot:
        """Fetch one symbol's candles, open interest and funding, then compute."""
        df_short = self._source.fetch_ohlcv(
            symbol, self._settings.short_interval, self._settings.short_limit
        )
        df_long = self._source.fetch_ohlcv(
            symbol, self._settings.long_interval, self._settings.long_limit
        )

        try:
            open_interest: OpenInterest | None = self._source.fetch_open_interest(symbol)
        except MarketDataError as exc:
            self._logger.warning("open_interest_unavailable", symbol=symbol, error=str(exc))
            open_interest = None
        try:
            funding_rate = self._source.fetch_funding_rate(symbol)
        except MarketDataError as exc:
            self._logger.warning("funding_rate_unavailable", symbol=symbol, error=str(exc))
            funding_rate = 0.0

        return compute_market_snapshot(symbol, df_short, df_long, open_interest, funding_rate)

    def _collect(self, symbol: str, future: Future[MarketSnapshot]) -> MarketSnapshot | None:
        try:
            return future.result()
        except CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - one symbol must not fail the cycle.
            log_symbol_skipped(self._logger, symbol=symbol, reason="fetch_failed", error=str(exc))
            return None

    def _passes_liquidity_gate(self, snapshot: MarketSnapshot) -> bool:
        floor = self._settings.liquidity_floor_usd
        oi_value = snapshot.open_interest_value
        if snapshot.open_interest is None or snapshot.current_price <= 0:
            return True
        if oi_value < floor:
            log_symbol_skipped(
                self._logger,
                symbol=snapshot.symbol,
                reason="low_liquidity",
                oi_value_musd=round(oi_value / 1_000_000, 2),
                floor_musd=round(floor / 1_000_000, 2),
            )
            return False
        return True

    def _load_oi_rank(self, symbols: set[str]) -> dict[str, OIRankEntry]:
        if self._oi_ranking is None:
            return {}
        try:
            entries = self._oi_ranking.fetch()
        except MarketDataError as exc:
            self._logger.warning("oi_rank_unavailable", error=str(exc))
            return {}
        return {entry.symbol: entry for entry in entries if entry.symbol in symbols}


def format_market_snapshot(snapshot: MarketSnapshot) -> str:
    """Plain-text dump of a snapshot's current values and series."""
    lines = [
        (
            f"current_price = {snapshot.current_price:.2f}, "
            f"current_ema20 = {snapshot.current_ema20:.3f}, "
            f"current_macd = {snapshot.current_macd:.3f}, "
            f"current_rsi (7 period) = {snapshot.current_rsi7:.3f}"
        ),
        "",
        f"Latest {snapshot.symbol} open interest and funding rate for perps:",
        "",
    ]
    if snapshot.open_interest is not None:
        lines += [
            (
                f"Open Interest: Latest: {snapshot.open_interest.latest:.2f} "
                f"Average: {snapshot.open_interest.average:.2f}"
            ),
            "",
        ]
    lines += [f"Funding Rate: {snapshot.funding_rate:.2e}", ""]

    intraday = snapshot.intraday
    lines += ["Intraday series (oldest -> latest):", ""]
    for label, values in (
        ("Mid prices", intraday.mid_prices),
        ("EMA indicators (20-period)", intraday.ema20_values),
        ("MACD indicators", intraday.macd_values),
        ("RSI indicators (7-period)", intraday.rsi7_values),
        ("RSI indicators (14-period)", intraday.rsi14_values),
    ):
        if values:
            lines += [f"{label}: {_format_series(values)}", ""]

    longer = snapshot.longer_term
    lines += [
        "Longer-term context:",
        "",
        f"20-Period EMA: {longer.ema20:.3f} vs. 50-Period EMA: {longer.ema50:.3f}",
        "",
        f"3-Period ATR: {longer.atr3:.3f} vs. 14-Period ATR: {longer.atr14:.3f}",
        "",
        (
            f"Current Volume: {longer.current_volume:.3f} vs. "
            f"Average Volume: {longer.average_volume:.3f}"
        ),
        "",
    ]
    if longer.macd_values:
        lines += [f"MACD indicators: {_format_series(longer.macd_values)}", ""]
    if longer.rsi14_values:
        lines += [f"RSI indicators (14-period): {_format_series(longer.rsi14_values)}", ""]

    return "\n".join(lines)


def _format_series(values: Sequence[float]) -> str:
    return "[" + ", ".join(f"{value:.3f}" for value in values) + "]"
