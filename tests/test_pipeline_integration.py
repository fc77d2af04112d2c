from __future__ import annotations

import json

import pandas as pd
import pytest

from ai_futures.ai.schemas import dump_decisions
from ai_futures.config import Settings
from ai_futures.errors import DecisionParseError, DecisionValidationError, LLMCallError
from ai_futures.pipeline import DecisionEngine
from ai_futures.prompt.templates import InMemoryTemplateStore
from ai_futures.types import AccountState, CandidateCoin, DecisionContext, OpenInterest, Position

_SCRIPTED_DECISIONS = [
    {
        "symbol": "BTCUSDT",
        "action": "open_long",
        "leverage": 5,
        "stop_loss": 40_000.0,
        "take_profit": 46_000.0,
        "confidence": 0.9,
        "risk_usd": 25.0,
        "reasoning": "trend up, retest of EMA20",
    },
    {
        "symbol": "ETHUSDT",
        "action": "update_stop_loss",
        "new_stop_loss": 2_000.0,
        "reasoning": "lock in profit",
    },
    {"symbol": "SOLUSDT", "action": "wait", "reasoning": "no setup"},
]


def _build_ohlcv(rows: int, start_price: float, drift: float) -> pd.DataFrame:
    closes = [start_price + i * drift for i in range(rows)]
    return pd.DataFrame(
        {
            "open": [c - drift for c in closes],
            "high": [c + 20 for c in closes],
            "low": [c - 20 for c in closes],
            "close": closes,
            "volume": [1000.0 for _ in range(rows)],
        }
    )


class _FakeSource:
    def fetch_ohlcv(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        return _build_ohlcv(rows=limit, start_price=40_000.0, drift=3.0)

    def fetch_open_interest(self, symbol: str) -> OpenInterest:
        return OpenInterest(latest=50_000.0, average=48_000.0)

    def fetch_funding_rate(self, symbol: str) -> float:
        return 0.0001


class _ScriptedLLM:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts: list[tuple[str, str]] = []

    def call(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append((system_prompt, user_prompt))
        return self.reply


class _BrokenLLM:
    def call(self, system_prompt: str, user_prompt: str) -> str:
        raise ConnectionError("connection reset")


def _context() -> DecisionContext:
    return DecisionContext(
        current_time="2024-01-01 00:00:00",
        call_count=3,
        runtime_minutes=9,
        account=AccountState(total_equity=1000.0, available_balance=900.0, position_count=1),
        positions=[
            Position(
                symbol="ETHUSDT",
                side="long",
                entry_price=1_900.0,
                mark_price=2_050.0,
                quantity=0.5,
                leverage=5,
                unrealized_pnl_pct=7.9,
            )
        ],
        candidate_coins=[CandidateCoin(symbol="BTCUSDT"), CandidateCoin(symbol="SOLUSDT")],
    )


def _engine() -> DecisionEngine:
    return DecisionEngine(
        _FakeSource(),
        InMemoryTemplateStore({"default": "BASE STRATEGY"}),
        Settings(),
    )


def test_get_decision_returns_scripted_decisions() -> None:
    reply = "BTC holds above EMA20.\n" + json.dumps(_SCRIPTED_DECISIONS)
    llm = _ScriptedLLM(reply)

    result = _engine().get_decision(_context(), llm)

    assert dump_decisions(result.decisions) == _SCRIPTED_DECISIONS
    assert result.cot_trace == "BTC holds above EMA20."
    assert result.timestamp is not None
    assert result.timestamp.tzinfo is not None
    assert result.system_prompt.startswith("BASE STRATEGY")
    assert llm.prompts == [(result.system_prompt, result.user_prompt)]
    assert "ETHUSDT" in result.user_prompt


def test_custom_prompt_override_reaches_the_llm() -> None:
    llm = _ScriptedLLM("[]")
    result = _engine().get_decision(
        _context(), llm, custom_prompt="custom only", override_base=True
    )
    assert result.decisions == []
    assert llm.prompts[0][0] == "custom only"


def test_validation_failure_carries_partial_decision() -> None:
    rows = [dict(_SCRIPTED_DECISIONS[0], leverage=20)]
    reply = "overconfident\n" + json.dumps(rows)

    with pytest.raises(DecisionValidationError) as exc_info:
        _engine().get_decision(_context(), _ScriptedLLM(reply))

    error = exc_info.value
    assert error.rule == "leverage_out_of_range"
    assert error.index == 0
    assert error.raw_response == reply
    assert error.partial is not None
    assert error.partial.cot_trace == "overconfident"
    assert len(error.partial.decisions) == 1


def test_parse_failure_carries_prompts_and_raw_response() -> None:
    reply = "I think we should wait [unterminated"
    with pytest.raises(DecisionParseError) as exc_info:
        _engine().get_decision(_context(), _ScriptedLLM(reply))
    error = exc_info.value
    assert error.raw_response == reply
    assert error.partial is not None
    assert error.partial.system_prompt.startswith("BASE STRATEGY")
    assert error.partial.cot_trace == "I think we should wait"


def test_gateway_failure_is_an_llm_call_error() -> None:
    with pytest.raises(LLMCallError, match="connection reset") as exc_info:
        _engine().get_decision(_context(), _BrokenLLM())
    assert exc_info.value.partial is not None
    assert exc_info.value.partial.decisions == []
