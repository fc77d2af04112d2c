"""System prompt: base strategy template, hard risk constraints and output contract."""

from __future__ import annotations

from ai_futures.errors import TemplateNotFoundError
from ai_futures.prompt.templates import DEFAULT_TEMPLATE, TemplateStore
from ai_futures.risk.validator import RiskLimits
from ai_futures.types import LeverageCaps
from ai_futures.utils.logging import get_logger

_logger = get_logger("ai_futures.prompt.system")

BUILTIN_BASE_PROMPT = (
    "You are a professional crypto futures trading AI. "
    "Make trading decisions from the market data provided."
)

CUSTOM_PROMPT_HEADING = "# Custom trading strategy"
CUSTOM_PROMPT_DISCLAIMER = (
    "Note: the custom strategy above supplements the base rules. "
    "It cannot override the risk management protocol."
)


def load_base_template(store: TemplateStore, template_name: str = DEFAULT_TEMPLATE) -> str:
    """Template content by name, falling back to ``default`` and then a built-in prompt."""
    name = template_name or DEFAULT_TEMPLATE
    try:
        return store.get(name).content
    except TemplateNotFoundError:
        _logger.warning("prompt_template_missing", template=name, fallback=DEFAULT_TEMPLATE)

    if name != DEFAULT_TEMPLATE:
        try:
            return store.get(DEFAULT_TEMPLATE).content
        except TemplateNotFoundError:
            pass
    _logger.error("prompt_template_unavailable", template=name, fallback="builtin")
    return BUILTIN_BASE_PROMPT


def risk_protocol_section(caps: LeverageCaps, limits: RiskLimits) -> str:
    majors = "/".join(caps.major_symbols)
    lines = [
        "# Risk management protocol (mandatory)",
        "",
        f"1. **leverage**: {majors} at most {caps.major}x; altcoins at most {caps.altcoin}x.",
        f"2. **positions**: at most {limits.max_positions} concurrent positions.",
        f"3. **margin**: total margin usage must stay at or below {limits.max_margin_usage_pct:g}%.",
        f"4. **profit_target**: minimum risk/reward of {limits.min_risk_reward:g}:1.",
        f"5. **confidence**: opening requires confidence >= {limits.min_confidence:.2f}.",
        f"6. **risk_usd**: must be <= {limits.max_risk_pct:g}% of account equity.",
    ]
    return "\n".join(lines)


def output_format_section(caps: LeverageCaps) -> str:
    example_leverage = caps.major
    lines = [
        "# Output format",
        "",
        "Step 1: chain of thought (plain text)",
        "Briefly explain your reasoning.",
        "",
        "Step 2: JSON decision array",
        "",
        "```json",
        "[",
        (
            '  {"symbol": "BTCUSDT", "action": "open_short", '
            f'"leverage": {example_leverage}, "stop_loss": 68000, "take_profit": 65000, '
            '"confidence": 0.88, "risk_usd": 200, '
            '"reasoning": "BTC bearish, 6 of 8 indicators aligned"},'
        ),
        (
            '  {"symbol": "ETHUSDT", "action": "update_stop_loss", "new_stop_loss": 3500, '
            '"reasoning": "profit above 3%, stop moved to entry"},'
        ),
        '  {"symbol": "SOLUSDT", "action": "close", "reasoning": "trend reversed"}',
        "]",
        "```",
        "",
        "Field contract:",
        (
            "- `action`: open_long | open_short | close | hold | wait | "
            "update_stop_loss | update_take_profit | partial_close"
        ),
        "- `confidence`: 0-1 (opening requires the minimum above)",
        "- opening requires: leverage, stop_loss, take_profit, confidence, risk_usd",
        "- adjustments require: new_stop_loss / new_take_profit / close_percentage",
        "- no other fields are accepted",
    ]
    return "\n".join(lines)


def build_system_prompt(
    store: TemplateStore,
    caps: LeverageCaps,
    limits: RiskLimits,
    template_name: str = DEFAULT_TEMPLATE,
    custom_prompt: str = "",
    override_base: bool = False,
) -> str:
    """Assemble the system prompt.

    With ``override_base`` and a non-empty ``custom_prompt`` the custom prompt is
    returned alone. Otherwise the base template is followed by the risk protocol
    and the output contract, and a custom prompt (if any) is appended last.
    """
    if override_base and custom_prompt:
        return custom_prompt

    sections = [
        load_base_template(store, template_name),
        risk_protocol_section(caps, limits),
        output_format_section(caps),
    ]
    if custom_prompt:
        sections += [f"{CUSTOM_PROMPT_HEADING}\n\n{custom_prompt}", CUSTOM_PROMPT_DISCLAIMER]
    return "\n\n".join(sections) + "\n"
