from __future__ import annotations

import json
from pathlib import Path

import pytest

from ai_futures.config import PromptFormat
from ai_futures.errors import TemplateNotFoundError
from ai_futures.prompt.system import BUILTIN_BASE_PROMPT, CUSTOM_PROMPT_DISCLAIMER, build_system_prompt
from ai_futures.prompt.templates import (
    DirectoryTemplateStore,
    InMemoryTemplateStore,
    load_template_store,
)
from ai_futures.prompt.user import (
    build_prompts,
    build_user_payload,
    candle_flags,
    macd_label,
    position_advice,
    render_user_prompt,
    rsi_label,
    volume_regime,
)
from ai_futures.risk.validator import RiskLimits
from ai_futures.types import (
    AccountState,
    Candle,
    CandidateCoin,
    DecisionContext,
    IntradaySeries,
    LeverageCaps,
    LongerTermContext,
    MarketSnapshot,
    OIRankEntry,
    PerformanceSummary,
    Position,
)

_CAPS = LeverageCaps(major=10, altcoin=5)


def _snapshot(symbol: str, price: float = 100.0, macd: float = 0.5) -> MarketSnapshot:
    return MarketSnapshot(
        symbol=symbol,
        current_price=price,
        price_change_1h=0.5,
        price_change_4h=1.5,
        current_ema20=price * 0.99,
        current_macd=macd,
        current_rsi7=72.0,
        funding_rate=0.0001,
        open_interest=None,
        intraday=IntradaySeries(mid_prices=(price,)),
        longer_term=LongerTermContext(
            ema20=price,
            ema50=price * 0.95,
            current_volume=2000.0,
            average_volume=1000.0,
            macd_values=(-0.2, -0.1),
            rsi14_values=(33.0,),
        ),
        latest_candle=Candle(open=100.0, high=104.0, low=99.9, close=100.1),
    )


def _context() -> DecisionContext:
    return DecisionContext(
        current_time="2024-01-01 00:00:00",
        call_count=7,
        runtime_minutes=21,
        account=AccountState(
            total_equity=1000.0,
            available_balance=800.0,
            total_pnl_pct=2.5,
            margin_used_pct=20.0,
            position_count=1,
        ),
        positions=[
            Position(
                symbol="ETHUSDT",
                side="long",
                entry_price=2000.0,
                mark_price=2120.0,
                quantity=1.0,
                leverage=5,
                unrealized_pnl_pct=6.0,
                liquidation_price=1600.0,
                update_time_ms=1_000_000,
            )
        ],
        candidate_coins=[CandidateCoin(symbol="SOLUSDT", sources=("ranked_pool",))],
        leverage_caps=_CAPS,
        performance=PerformanceSummary(sharpe_ratio=1.25),
        market_data={
            "BTCUSDT": _snapshot("BTCUSDT", 42_000.0),
            "ETHUSDT": _snapshot("ETHUSDT", 2120.0),
            "SOLUSDT": _snapshot("SOLUSDT"),
        },
        oi_rank={
            "SOLUSDT": OIRankEntry(
                symbol="SOLUSDT",
                rank=3,
                oi_delta_pct=7.5,
                oi_delta_value=2e6,
                price_delta_pct=2.0,
                net_long=0.7,
                net_short=0.3,
            )
        },
    )


def test_directory_store_reads_txt_templates(tmp_path: Path) -> None:
    (tmp_path / "default.txt").write_text("base rules\n", encoding="utf-8")
    (tmp_path / "aggressive.txt").write_text("go fast", encoding="utf-8")
    store = DirectoryTemplateStore(tmp_path)
    assert store.names() == ["aggressive", "default"]
    assert store.get("default").content == "base rules"
    with pytest.raises(TemplateNotFoundError):
        store.get("missing")
    with pytest.raises(TemplateNotFoundError):
        store.get("../default")


def test_packaged_default_template_exists() -> None:
    store = load_template_store()
    assert "default" in store.names()
    assert store.get("default").content


def test_system_prompt_contains_template_constraints_and_format() -> None:
    store = InMemoryTemplateStore({"default": "BASE STRATEGY"})
    prompt = build_system_prompt(store, _CAPS, RiskLimits())
    assert prompt.startswith("BASE STRATEGY")
    assert "BTCUSDT/ETHUSDT at most 10x" in prompt
    assert "altcoins at most 5x" in prompt
    assert "confidence >= 0.85" in prompt
    assert '"action": "open_short", "leverage": 10' in prompt


def test_unknown_template_falls_back_to_default() -> None:
    store = InMemoryTemplateStore({"default": "BASE STRATEGY"})
    prompt = build_system_prompt(store, _CAPS, RiskLimits(), template_name="nope")
    assert prompt.startswith("BASE STRATEGY")


def test_empty_store_falls_back_to_builtin_prompt() -> None:
    prompt = build_system_prompt(InMemoryTemplateStore(), _CAPS, RiskLimits(), template_name="nope")
    assert prompt.startswith(BUILTIN_BASE_PROMPT)


def test_custom_prompt_is_appended_or_overrides() -> None:
    store = InMemoryTemplateStore({"default": "BASE STRATEGY"})
    appended = build_system_prompt(store, _CAPS, RiskLimits(), custom_prompt="only trade BTC")
    assert appended.startswith("BASE STRATEGY")
    assert "only trade BTC" in appended
    assert CUSTOM_PROMPT_DISCLAIMER in appended

    overridden = build_system_prompt(
        store, _CAPS, RiskLimits(), custom_prompt="only trade BTC", override_base=True
    )
    assert overridden == "only trade BTC"

    # Override without a custom prompt keeps the base prompt.
    assert build_system_prompt(store, _CAPS, RiskLimits(), override_base=True).startswith("BASE")


def test_labels() -> None:
    assert macd_label(0.1) == "bullish"
    assert macd_label(-0.1) == "bearish"
    assert macd_label(0.0) == "near zero"
    assert [rsi_label(v) for v in (25, 75, 32, 68, 45, 55)] == [
        "oversold",
        "overbought",
        "low",
        "high",
        "weak",
        "strong",
    ]
    assert volume_regime(2000.0, 1000.0) == (2.0, "expanding")
    assert volume_regime(500.0, 1000.0) == (0.5, "contracting")
    assert volume_regime(1.0, 0.0) == (None, "normal")
    assert candle_flags(Candle(open=100.0, high=104.0, low=99.9, close=100.1)) == [
        "long upper shadow",
        "doji",
    ]


def test_position_advice_rules() -> None:
    position = _context().positions[0]
    assert "partial_close" in position_advice(position, _snapshot("ETHUSDT", macd=0.5))

    position.unrealized_pnl_pct = 4.0
    assert "update_stop_loss" in position_advice(position, _snapshot("ETHUSDT", macd=0.5))

    position.unrealized_pnl_pct = 0.0
    assert "close" in position_advice(position, _snapshot("ETHUSDT", macd=-0.5))
    assert position_advice(position, _snapshot("ETHUSDT", macd=0.5)) == "trend as expected, hold"


def test_user_payload_sections() -> None:
    payload = build_user_payload(_context(), now_ms=1_000_000 + 30 * 60_000)
    assert payload.cycle.call_count == 7
    assert payload.account.available_pct == pytest.approx(80.0)
    assert payload.performance is not None and payload.performance.sharpe_ratio == 1.25
    assert payload.leader is not None and payload.leader.long_macd_label == "bearish"

    position = payload.positions[0]
    assert position.holding_minutes == 30
    assert position.risk_reward == pytest.approx(120.0 / 400.0)

    candidate = payload.candidates[0]
    assert candidate.symbol == "SOLUSDT"
    assert candidate.oi_delta_pct == 7.5
    assert candidate.volume_regime == "expanding"
    assert candidate.rsi7_label == "overbought"
    assert candidate.rsi14_label == "low"
    assert candidate.series is None


def test_render_text_and_json() -> None:
    payload = build_user_payload(_context(), include_series=True)
    text = render_user_prompt(payload)
    assert "Cycle: #7" in text
    assert "### Sharpe ratio: 1.25" in text
    assert "**ETHUSDT** LONG" in text
    assert "OI change: +7.50%" in text
    assert "volume expanding (2.0x)" in text
    assert "Intraday series" in text

    decoded = json.loads(render_user_prompt(payload, PromptFormat.JSON))
    assert decoded["account"]["total_equity"] == 1000.0
    assert decoded["candidates"][0]["symbol"] == "SOLUSDT"


def test_build_prompts_uses_context_caps() -> None:
    store = InMemoryTemplateStore({"default": "BASE STRATEGY"})
    system_prompt, user_prompt = build_prompts(_context(), store, RiskLimits())
    assert "at most 10x" in system_prompt
    assert "SOLUSDT" in user_prompt
