"""HTTP client for the external coin pool (ranked symbols and OI growth ranking)."""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ai_futures.config import Settings
from ai_futures.errors import MarketDataError
from ai_futures.strategy.candidates import normalize_symbol
from ai_futures.types import OIRankEntry
from ai_futures.utils.logging import get_logger


class CoinPoolClient:
    """Reads the ranked candidate pool and the open-interest growth top list.

    Both endpoints answer ``{"success": true, "data": {...}}``; the ranked pool
    lists ``data.coins`` (strings or objects with ``pair``), the OI list
    ``data.positions``.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._logger = get_logger("ai_futures.data.pool")

    def fetch_ranked_symbols(self) -> list[str]:
        """Ranked pool symbols, best first."""
        data = self._get_data(self._settings.coin_pool_url)
        symbols: list[str] = []
        coins = data.get("coins")
        for item in coins if isinstance(coins, list) else []:
            raw = (item.get("pair") or item.get("symbol")) if isinstance(item, dict) else item
            if isinstance(raw, str) and raw.strip():
                symbols.append(normalize_symbol(raw))
        return symbols

    def fetch(self) -> list[OIRankEntry]:
        """Open-interest growth ranking ordered by rank. Malformed rows are skipped."""
        data = self._get_data(self._settings.oi_top_url)
        entries: list[OIRankEntry] = []
        rows = data.get("positions")
        for row in rows if isinstance(rows, list) else []:
            if not isinstance(row, dict) or not row.get("symbol"):
                continue
            try:
                entry = OIRankEntry(
                    symbol=normalize_symbol(str(row["symbol"])),
                    rank=int(row.get("rank", 0)),
                    oi_delta_pct=float(row.get("oi_delta_percent", 0.0)),
                    oi_delta_value=float(row.get("oi_delta_value", 0.0)),
                    price_delta_pct=float(row.get("price_delta_percent", 0.0)),
                    net_long=float(row.get("net_long", 0.0)),
                    net_short=float(row.get("net_short", 0.0)),
                )
            except (TypeError, ValueError) as exc:
                self._logger.warning("oi_rank_row_skipped", symbol=row.get("symbol"), error=str(exc))
                continue
            entries.append(entry)
        return sorted(entries, key=lambda entry: entry.rank)

    def _get_data(self, url: str) -> dict[str, Any]:
        if not url:
            raise MarketDataError("coin_pool_url_not_configured")
        try:
            payload = self._request_json(url)
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("coin_pool_request_failed", url=url, error=str(exc))
            raise MarketDataError(str(exc)) from exc

        if not isinstance(payload, dict) or not payload.get("success", True):
            raise MarketDataError("coin_pool_response_unsuccessful")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise MarketDataError("coin_pool_response_missing_data")
        return data

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _request_json(self, url: str) -> Any:
        with httpx.Client(timeout=self._settings.pool_timeout) as client:
            response = client.get(url)
            response.raise_for_status()
        return response.json()
