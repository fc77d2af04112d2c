from __future__ import annotations

import pytest

from ai_futures.ai.parser import (
    extract_cot_trace,
    extract_decision_array,
    find_matching_bracket,
    normalize_quotes,
    parse_decisions,
)
from ai_futures.ai.schemas import Close, OpenLong, PartialClose, decision_from_payload, dump_decisions
from ai_futures.errors import DecisionParseError, DecisionValidationError


def test_cot_and_array_are_split_at_first_bracket() -> None:
    text = "blah [1,2] trailing"
    assert extract_cot_trace(text) == "blah"
    assert extract_decision_array(text) == "[1,2]"


def test_cot_is_whole_text_without_array() -> None:
    assert extract_cot_trace("  just thinking  ") == "just thinking"


def test_nested_brackets_resolve_to_outermost_pair() -> None:
    text = "[[1,2],[3,4]]"
    assert find_matching_bracket(text, 0) == len(text) - 1
    assert extract_decision_array(f"x {text} y") == text


def test_unterminated_array_is_a_parse_error() -> None:
    with pytest.raises(DecisionParseError) as exc_info:
        extract_decision_array("[1,2")
    assert str(exc_info.value) == "unterminated_decision_array"
    assert exc_info.value.fragment == "[1,2"
    assert find_matching_bracket("[1,2", 0) == -1


def test_missing_array_is_a_parse_error() -> None:
    with pytest.raises(DecisionParseError, match="no_decision_array_found"):
        parse_decisions("I will wait this cycle.")


def test_curly_quotes_are_normalized_before_decoding() -> None:
    reply = (
        "BTC is ranging, nothing to do.\n"
        "[{“symbol”: “BTCUSDT”, “action”: “wait”, "
        "“reasoning”: “no setup”}]"
    )
    cot, decisions = parse_decisions(reply)
    assert cot == "BTC is ranging, nothing to do."
    assert len(decisions) == 1
    assert decisions[0].action == "wait"
    assert decisions[0].reasoning == "no setup"
    assert normalize_quotes("‘a’") == "'a'"


def test_invalid_json_keeps_fragment_and_raw_response() -> None:
    reply = "thinking [{'symbol': 'BTCUSDT'}]"
    with pytest.raises(DecisionParseError) as exc_info:
        parse_decisions(reply)
    assert str(exc_info.value).startswith("decision_json_invalid")
    assert exc_info.value.raw_response == reply
    assert exc_info.value.fragment == "[{'symbol': 'BTCUSDT'}]"


def test_variants_carry_their_own_fields() -> None:
    reply = """analysis
    [
      {"symbol": "BTCUSDT", "action": "open_long", "leverage": 5, "stop_loss": 60000,
       "take_profit": 70000, "confidence": 0.9, "risk_usd": 20, "reasoning": "breakout"},
      {"symbol": "ETHUSDT", "action": "partial_close", "close_percentage": 50},
      {"symbol": "SOLUSDT", "action": "close"}
    ]"""
    _, decisions = parse_decisions(reply)
    assert isinstance(decisions[0], OpenLong)
    assert decisions[0].leverage == 5
    assert isinstance(decisions[1], PartialClose)
    assert isinstance(decisions[2], Close)
    assert dump_decisions(decisions)[2] == {"symbol": "SOLUSDT", "action": "close", "reasoning": ""}


def test_unknown_action_is_rejected() -> None:
    with pytest.raises(DecisionValidationError) as exc_info:
        parse_decisions('[{"symbol": "BTCUSDT", "action": "buy_to_enter"}]')
    assert exc_info.value.rule == "invalid_action"
    assert exc_info.value.index == 0


def test_fields_of_other_actions_are_rejected() -> None:
    payload = {"symbol": "BTCUSDT", "action": "close", "leverage": 5}
    with pytest.raises(DecisionValidationError) as exc_info:
        decision_from_payload(2, payload)
    assert exc_info.value.rule == "action_field_contract"
    assert exc_info.value.index == 2


def test_open_without_required_fields_is_rejected() -> None:
    with pytest.raises(DecisionValidationError, match="field contract"):
        decision_from_payload(0, {"symbol": "BTCUSDT", "action": "open_short", "leverage": 3})


def test_non_object_element_is_rejected() -> None:
    with pytest.raises(DecisionValidationError) as exc_info:
        parse_decisions("[1, 2]")
    assert exc_info.value.rule == "decision_not_object"


@pytest.mark.parametrize(
    "numbers",
    [
        '"take_profit": 120, "risk_usd": NaN',
        '"take_profit": Infinity, "risk_usd": 10',
        '"take_profit": 120, "risk_usd": -Infinity',
    ],
)
def test_non_finite_numbers_are_not_json(numbers: str) -> None:
    reply = (
        'x [{"symbol": "BTCUSDT", "action": "open_long", "leverage": 3, '
        '"stop_loss": 90, "confidence": 0.9, ' + numbers + "}]"
    )
    with pytest.raises(DecisionParseError, match="non-finite") as exc_info:
        parse_decisions(reply)
    assert exc_info.value.raw_response == reply


@pytest.mark.parametrize("field", ["risk_usd", "take_profit"])
def test_non_finite_floats_break_the_field_contract(field: str) -> None:
    payload = {
        "symbol": "BTCUSDT",
        "action": "open_long",
        "leverage": 3,
        "stop_loss": 90.0,
        "take_profit": 120.0,
        "risk_usd": 10.0,
    }
    for value in (float("nan"), float("inf")):
        with pytest.raises(DecisionValidationError) as exc_info:
            decision_from_payload(0, dict(payload, **{field: value}))
        assert exc_info.value.rule == "action_field_contract"


@pytest.mark.parametrize("leverage", ["5", 5.0, True])
def test_leverage_is_not_coerced(leverage: object) -> None:
    payload = {
        "symbol": "BTCUSDT",
        "action": "open_short",
        "leverage": leverage,
        "stop_loss": 120.0,
        "take_profit": 90.0,
        "risk_usd": 10.0,
    }
    with pytest.raises(DecisionValidationError, match="leverage"):
        decision_from_payload(0, payload)
