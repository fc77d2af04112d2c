"""Binance USDT-M futures market data client."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import pandas as pd  # type: ignore[import-untyped]
from binance.client import Client  # type: ignore[import-untyped]
from binance.exceptions import BinanceAPIException, BinanceRequestException  # type: ignore[import-untyped]
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ai_futures.config import Settings
from ai_futures.errors import MarketDataError
from ai_futures.types import OpenInterest
from ai_futures.utils.logging import get_logger

T = TypeVar("T")

_KLINE_COLUMNS = [
    "open_time",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "close_time",
    "quote_asset_volume",
    "number_of_trades",
    "taker_buy_base_asset_volume",
    "taker_buy_quote_asset_volume",
    "ignore",
]


class BinanceDataClient:
    """Read-only client for futures klines, open interest and funding."""

    _INTERVAL_MAP = {
        "1m": Client.KLINE_INTERVAL_1MINUTE,
        "3m": Client.KLINE_INTERVAL_3MINUTE,
        "5m": Client.KLINE_INTERVAL_5MINUTE,
        "15m": Client.KLINE_INTERVAL_15MINUTE,
        "30m": Client.KLINE_INTERVAL_30MINUTE,
        "1h": Client.KLINE_INTERVAL_1HOUR,
        "2h": Client.KLINE_INTERVAL_2HOUR,
        "4h": Client.KLINE_INTERVAL_4HOUR,
        "1d": Client.KLINE_INTERVAL_1DAY,
    }

    _OI_HISTORY_PERIOD = "5m"
    _OI_HISTORY_LIMIT = 30

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._logger = get_logger("ai_futures.data.binance")
        self._client = Client(
            api_key=settings.binance_api_key or None,
            api_secret=settings.binance_api_secret or None,
            testnet=settings.binance_testnet,
        )

    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        """Fetch futures klines and return a normalized dataframe."""
        resolved_interval = self._INTERVAL_MAP.get(interval.lower())
        if resolved_interval is None:
            raise ValueError(f"unsupported_interval: {interval}")

        rows = self._request(
            symbol,
            lambda: self._client.futures_klines(
                symbol=symbol, interval=resolved_interval, limit=limit
            ),
        )
        df = pd.DataFrame(rows, columns=_KLINE_COLUMNS)
        if df.empty:
            raise MarketDataError("empty_ohlcv_response", symbol=symbol)

        numeric_cols = ["open", "high", "low", "close", "volume"]
        for col in numeric_cols:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df["open_time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
        df["close_time"] = pd.to_datetime(df["close_time"], unit="ms", utc=True)
        df = df.dropna(subset=numeric_cols).reset_index(drop=True)
        return df[["open_time", "open", "high", "low", "close", "volume", "close_time"]]

    def fetch_open_interest(self, symbol: str) -> OpenInterest:
        """Latest open interest plus its recent average from the 5m history."""
        payload: dict[str, Any] = self._request(
            symbol, lambda: self._client.futures_open_interest(symbol=symbol)
        )
        value = payload.get("openInterest")
        if value is None:
            raise MarketDataError("open_interest_missing", symbol=symbol)
        latest = float(value)

        history: list[dict[str, Any]] = self._request(
            symbol,
            lambda: self._client.futures_open_interest_hist(
                symbol=symbol,
                period=self._OI_HISTORY_PERIOD,
                limit=self._OI_HISTORY_LIMIT,
            ),
        )
        samples = [float(row["sumOpenInterest"]) for row in history if "sumOpenInterest" in row]
        average = sum(samples) / len(samples) if samples else latest
        return OpenInterest(latest=latest, average=average)

    def fetch_funding_rate(self, symbol: str) -> float:
        """Last funding rate from the premium index."""
        payload: dict[str, Any] = self._request(
            symbol, lambda: self._client.futures_mark_price(symbol=symbol)
        )
        value = payload.get("lastFundingRate")
        if value in (None, ""):
            raise MarketDataError("funding_rate_missing", symbol=symbol)
        return float(value)

    def _request(self, symbol: str, call: Callable[[], T]) -> T:
        try:
            return self._call_with_retry(call)
        except (BinanceAPIException, BinanceRequestException, OSError) as exc:
            self._logger.warning("binance_request_failed", symbol=symbol, error=str(exc))
            raise MarketDataError(str(exc), symbol=symbol) from exc

    @retry(
        retry=retry_if_exception_type((BinanceRequestException, OSError)),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_with_retry(self, call: Callable[[], T]) -> T:
        return call()
