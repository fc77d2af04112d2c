"""Candidate aggregation: which symbols get analyzed this cycle."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from ai_futures.types import CandidateCoin, DecisionContext, OIRankEntry, Position

SOURCE_RANKED_POOL = "ranked_pool"
SOURCE_OI_TOP = "oi_top"


def normalize_symbol(symbol: str) -> str:
    """Upper-case the symbol and make sure it is a USDT pair."""
    symbol = symbol.strip().upper()
    if symbol.endswith("USDT"):
        return symbol
    return symbol + "USDT"


def merge_candidate_pools(
    ranked_symbols: Sequence[str],
    oi_top: Sequence[OIRankEntry] = (),
    limit: int | None = None,
) -> list[CandidateCoin]:
    """Merge the ranked pool with the OI growth list, ranked pool first.

    A symbol present in both keeps its ranked-pool position and carries both
    provenance tags.
    """
    sources: dict[str, list[str]] = {}
    for raw in ranked_symbols:
        symbol = normalize_symbol(raw)
        tags = sources.setdefault(symbol, [])
        if SOURCE_RANKED_POOL not in tags:
            tags.append(SOURCE_RANKED_POOL)
    for entry in sorted(oi_top, key=lambda e: e.rank):
        symbol = normalize_symbol(entry.symbol)
        tags = sources.setdefault(symbol, [])
        if SOURCE_OI_TOP not in tags:
            tags.append(SOURCE_OI_TOP)

    coins = [CandidateCoin(symbol=symbol, sources=tuple(tags)) for symbol, tags in sources.items()]
    if limit is not None:
        coins = coins[: max(0, limit)]
    return coins


def max_candidates(context: DecisionContext) -> int:
    """Number of candidates to analyze; the pool is already ranked upstream."""
    return len(context.candidate_coins)


def analysis_symbols(
    positions: Iterable[Position],
    candidates: Sequence[CandidateCoin],
    limit: int | None = None,
) -> list[str]:
    """Held symbols first, then up to ``limit`` candidates, without duplicates."""
    symbols: list[str] = []
    for position in positions:
        if position.symbol not in symbols:
            symbols.append(position.symbol)

    bounded = candidates if limit is None else candidates[: max(0, limit)]
    for coin in bounded:
        if coin.symbol not in symbols:
            symbols.append(coin.symbol)
    return symbols
