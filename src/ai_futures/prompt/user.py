"""User prompt: per-cycle account, position and market data for the model."""

from __future__ import annotations

import time

from pydantic import BaseModel, Field

from ai_futures.config import PromptFormat
from ai_futures.market.snapshot import format_market_snapshot
from ai_futures.prompt.system import build_system_prompt
from ai_futures.prompt.templates import DEFAULT_TEMPLATE, TemplateStore
from ai_futures.risk.validator import RiskLimits
from ai_futures.types import Candle, DecisionContext, MarketSnapshot, Position

LEADER_SYMBOL = "BTCUSDT"

VOLUME_EXPANDING_RATIO = 1.5
VOLUME_CONTRACTING_RATIO = 0.8

CLOSING_INSTRUCTION = (
    "Now analyze strictly following the decision process and the risk management "
    "protocol of the system prompt, then output your decisions (chain of thought + JSON)."
)


class CycleInfo(BaseModel):
    current_time: str
    call_count: int
    runtime_minutes: int


class AccountSection(BaseModel):
    total_equity: float
    available_balance: float
    available_pct: float
    total_pnl_pct: float
    margin_used_pct: float
    position_count: int


class PerformanceSection(BaseModel):
    sharpe_ratio: float


class LeaderStatus(BaseModel):
    """Market leader (BTC) trend confirmation."""

    symbol: str
    price: float
    above_ema20: bool
    short_macd: float
    short_macd_label: str
    long_macd: float
    long_macd_label: str


class PositionSection(BaseModel):
    symbol: str
    side: str
    entry_price: float
    mark_price: float
    unrealized_pnl_pct: float
    holding_minutes: int | None = None
    risk_reward: float
    advice: str


class CandidateSection(BaseModel):
    symbol: str
    sources: list[str] = Field(default_factory=list)
    price: float
    above_ema20: bool
    candle_flags: list[str] = Field(default_factory=list)
    short_macd: float
    short_macd_label: str
    long_macd: float
    long_macd_label: str
    rsi7: float
    rsi7_label: str
    rsi14: float
    rsi14_label: str
    funding_rate: float
    oi_delta_pct: float | None = None
    volume_ratio: float | None = None
    volume_regime: str
    fibonacci_position: str | None = None
    wyckoff_phase: str | None = None
    wyckoff_signals: list[str] = Field(default_factory=list)
    series: str | None = None


class UserPromptPayload(BaseModel):
    cycle: CycleInfo
    account: AccountSection
    performance: PerformanceSection | None = None
    leader: LeaderStatus | None = None
    positions: list[PositionSection] = Field(default_factory=list)
    candidates: list[CandidateSection] = Field(default_factory=list)
    instruction: str = CLOSING_INSTRUCTION


def macd_label(value: float) -> str:
    if value > 0:
        return "bullish"
    if value < 0:
        return "bearish"
    return "near zero"


def rsi_label(value: float) -> str:
    if value < 30:
        return "oversold"
    if value > 70:
        return "overbought"
    if value < 35:
        return "low"
    if value > 65:
        return "high"
    if value < 50:
        return "weak"
    return "strong"


def position_risk_reward(position: Position) -> float:
    """Reward so far against the distance to liquidation; 0 when undefined."""
    if position.side == "long":
        risk = position.entry_price - position.liquidation_price
        reward = position.mark_price - position.entry_price
    else:
        risk = position.liquidation_price - position.entry_price
        reward = position.entry_price - position.mark_price
    if risk > 0:
        return reward / risk
    return 0.0


def position_advice(position: Position, snapshot: MarketSnapshot) -> str:
    """Rule-based management hint shown next to each open position."""
    advice: list[str] = []
    if position.unrealized_pnl_pct > 5.0:
        advice.append("profit > 5%, consider partial_close (50%) to lock in gains")
    elif position.unrealized_pnl_pct > 3.0:
        advice.append("profit > 3%, consider update_stop_loss to break-even")

    macd = snapshot.current_macd
    if (position.side == "long" and macd < 0) or (position.side == "short" and macd > 0):
        advice.append("MACD against the position, consider close")

    if not advice:
        return "trend as expected, hold"
    return "; ".join(advice)


def candle_flags(candle: Candle | None) -> list[str]:
    if candle is None or candle.range <= 0:
        return []
    flags: list[str] = []
    if candle.upper_shadow > candle.body * 2:
        flags.append("long upper shadow")
    if candle.lower_shadow > candle.body * 2:
        flags.append("long lower shadow")
    if candle.body < candle.range * 0.2:
        flags.append("doji")
    return flags


def volume_regime(current: float, average: float) -> tuple[float | None, str]:
    if average <= 0:
        return None, "normal"
    ratio = current / average
    if ratio > VOLUME_EXPANDING_RATIO:
        return ratio, "expanding"
    if ratio < VOLUME_CONTRACTING_RATIO:
        return ratio, "contracting"
    return ratio, "normal"


def _long_macd(snapshot: MarketSnapshot) -> float:
    values = snapshot.longer_term.macd_values
    return values[-1] if values else 0.0


def _long_rsi14(snapshot: MarketSnapshot) -> float:
    values = snapshot.longer_term.rsi14_values
    return values[-1] if values else 0.0


def _holding_minutes(position: Position, now_ms: int) -> int | None:
    if position.update_time_ms <= 0:
        return None
    return max(0, (now_ms - position.update_time_ms) // 60_000)


def build_user_payload(
    context: DecisionContext,
    *,
    include_series: bool = False,
    now_ms: int | None = None,
) -> UserPromptPayload:
    """Collect everything the user prompt shows into one typed payload."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    account = context.account
    equity = account.total_equity
    available_pct = account.available_balance / equity * 100 if equity > 0 else 0.0

    performance = None
    if context.performance is not None:
        performance = PerformanceSection(sharpe_ratio=context.performance.sharpe_ratio)

    leader = None
    leader_snapshot = context.market_data.get(LEADER_SYMBOL)
    if leader_snapshot is not None:
        long_macd = _long_macd(leader_snapshot)
        leader = LeaderStatus(
            symbol=LEADER_SYMBOL,
            price=leader_snapshot.current_price,
            above_ema20=leader_snapshot.current_price >= leader_snapshot.current_ema20,
            short_macd=leader_snapshot.current_macd,
            short_macd_label=macd_label(leader_snapshot.current_macd),
            long_macd=long_macd,
            long_macd_label=macd_label(long_macd),
        )

    positions: list[PositionSection] = []
    for position in context.positions:
        snapshot = context.market_data.get(position.symbol)
        if snapshot is None:
            continue
        positions.append(
            PositionSection(
                symbol=position.symbol,
                side=position.side,
                entry_price=position.entry_price,
                mark_price=position.mark_price,
                unrealized_pnl_pct=position.unrealized_pnl_pct,
                holding_minutes=_holding_minutes(position, now_ms),
                risk_reward=position_risk_reward(position),
                advice=position_advice(position, snapshot),
            )
        )

    candidates: list[CandidateSection] = []
    for coin in context.candidate_coins:
        snapshot = context.market_data.get(coin.symbol)
        if snapshot is None:
            continue
        long_macd = _long_macd(snapshot)
        rsi14 = _long_rsi14(snapshot)
        ratio, regime = volume_regime(
            snapshot.longer_term.current_volume, snapshot.longer_term.average_volume
        )
        rank = context.oi_rank.get(coin.symbol)
        candidates.append(
            CandidateSection(
                symbol=coin.symbol,
                sources=list(coin.sources),
                price=snapshot.current_price,
                above_ema20=snapshot.current_price >= snapshot.current_ema20,
                candle_flags=candle_flags(snapshot.latest_candle),
                short_macd=snapshot.current_macd,
                short_macd_label=macd_label(snapshot.current_macd),
                long_macd=long_macd,
                long_macd_label=macd_label(long_macd),
                rsi7=snapshot.current_rsi7,
                rsi7_label=rsi_label(snapshot.current_rsi7),
                rsi14=rsi14,
                rsi14_label=rsi_label(rsi14),
                funding_rate=snapshot.funding_rate,
                oi_delta_pct=rank.oi_delta_pct if rank is not None else None,
                volume_ratio=ratio,
                volume_regime=regime,
                fibonacci_position=(
                    snapshot.fibonacci.price_position if snapshot.fibonacci is not None else None
                ),
                wyckoff_phase=snapshot.wyckoff.phase if snapshot.wyckoff is not None else None,
                wyckoff_signals=list(snapshot.wyckoff.signals) if snapshot.wyckoff is not None else [],
                series=format_market_snapshot(snapshot) if include_series else None,
            )
        )

    return UserPromptPayload(
        cycle=CycleInfo(
            current_time=context.current_time,
            call_count=context.call_count,
            runtime_minutes=context.runtime_minutes,
        ),
        account=AccountSection(
            total_equity=equity,
            available_balance=account.available_balance,
            available_pct=available_pct,
            total_pnl_pct=account.total_pnl_pct,
            margin_used_pct=account.margin_used_pct,
            position_count=account.position_count,
        ),
        performance=performance,
        leader=leader,
        positions=positions,
        candidates=candidates,
    )


def render_user_prompt(
    payload: UserPromptPayload,
    fmt: PromptFormat = PromptFormat.TEXT,
) -> str:
    """Render the payload as structured text or as JSON with the same field names."""
    if fmt == PromptFormat.JSON:
        return payload.model_dump_json(indent=2, exclude_none=True)
    return _render_text(payload)


def _ema_relation(above: bool) -> str:
    return "price > EMA20" if above else "price < EMA20"


def _render_text(payload: UserPromptPayload) -> str:
    cycle = payload.cycle
    account = payload.account
    lines = [
        (
            f"Time: {cycle.current_time} | Cycle: #{cycle.call_count} | "
            f"Runtime: {cycle.runtime_minutes} min"
        ),
        "",
        "### Account",
        (
            f"Equity: {account.total_equity:.2f} USDT | "
            f"Available: {account.available_balance:.2f} ({account.available_pct:.1f}%) | "
            f"Total PnL: {account.total_pnl_pct:+.2f}%"
        ),
        f"Margin usage: {account.margin_used_pct:.1f}% | Positions: {account.position_count}",
        "",
    ]

    if payload.performance is not None:
        lines += [f"### Sharpe ratio: {payload.performance.sharpe_ratio:.2f}", ""]

    leader = payload.leader
    if leader is not None:
        lines += [
            f"### {leader.symbol} status (market leader)",
            f"Price: ${leader.price:.2f} | {_ema_relation(leader.above_ema20)}",
            f"- short MACD: {leader.short_macd:.4f} ({leader.short_macd_label})",
            f"- long MACD: {leader.long_macd:.4f} ({leader.long_macd_label})",
            "",
        ]

    if payload.positions:
        lines.append("### Open positions")
        for i, pos in enumerate(payload.positions, start=1):
            holding = f" | held {pos.holding_minutes} min" if pos.holding_minutes is not None else ""
            lines += [
                (
                    f"{i}. **{pos.symbol}** {pos.side.upper()} | entry: {pos.entry_price:.4f} | "
                    f"mark: {pos.mark_price:.4f} | PnL: {pos.unrealized_pnl_pct:+.2f}% | "
                    f"R/R: {pos.risk_reward:.2f}{holding}"
                ),
                f"   advice: {pos.advice}",
                "",
            ]
    else:
        lines += ["### Open positions: none", ""]

    lines.append("### New opportunities")
    for i, coin in enumerate(payload.candidates, start=1):
        flags = "".join(f" | {flag}" for flag in coin.candle_flags)
        oi = f"OI change: {coin.oi_delta_pct:+.2f}%" if coin.oi_delta_pct is not None else "no OI rank"
        if coin.volume_ratio is not None and coin.volume_regime != "normal":
            volume = f"volume {coin.volume_regime} ({coin.volume_ratio:.1f}x)"
        else:
            volume = "volume normal"
        lines += [
            f"#### {i}. **{coin.symbol}**",
            f"- price: ${coin.price:.4f} ({_ema_relation(coin.above_ema20)}{flags})",
            (
                f"- trend: short MACD: {coin.short_macd:.4f} ({coin.short_macd_label}) | "
                f"long MACD: {coin.long_macd:.4f} ({coin.long_macd_label})"
            ),
            (
                f"- momentum: RSI7: {coin.rsi7:.2f} ({coin.rsi7_label}) | "
                f"RSI14: {coin.rsi14:.2f} ({coin.rsi14_label})"
            ),
            f"- market: funding rate: {coin.funding_rate:.2e} | {oi} | {volume}",
        ]
        if coin.fibonacci_position is not None:
            lines.append(f"- fibonacci: {coin.fibonacci_position}")
        if coin.wyckoff_phase is not None:
            signals = ", ".join(coin.wyckoff_signals) or "none"
            lines.append(f"- wyckoff: phase {coin.wyckoff_phase} | signals: {signals}")
        if coin.series is not None:
            lines += ["", coin.series]
        lines.append("")

    lines += ["", "---", "", payload.instruction, ""]
    return "\n".join(lines)


def build_prompts(
    context: DecisionContext,
    templates: TemplateStore,
    limits: RiskLimits,
    *,
    template_name: str = DEFAULT_TEMPLATE,
    custom_prompt: str = "",
    override_base: bool = False,
    fmt: PromptFormat = PromptFormat.TEXT,
    include_series: bool = False,
) -> tuple[str, str]:
    """Return ``(system_prompt, user_prompt)`` for one cycle."""
    system_prompt = build_system_prompt(
        templates,
        context.leverage_caps,
        limits,
        template_name=template_name,
        custom_prompt=custom_prompt,
        override_base=override_base,
    )
    payload = build_user_payload(context, include_series=include_series)
    return system_prompt, render_user_prompt(payload, fmt)
