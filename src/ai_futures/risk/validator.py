"""Hard risk rules applied to model decisions before execution."""

from __future__ import annotations

from dataclasses import dataclass

from ai_futures.ai.schemas import (
    Close,
    Decision,
    Hold,
    OpenDecision,
    OpenLong,
    OpenShort,
    PartialClose,
    UpdateStopLoss,
    UpdateTakeProfit,
    Wait,
)
from ai_futures.errors import DecisionValidationError
from ai_futures.types import LeverageCaps
from ai_futures.utils.logging import get_logger, log_risk_event

_logger = get_logger("ai_futures.risk.validator")


@dataclass(frozen=True, slots=True)
class RiskLimits:
    """Thresholds enforced on every decision batch."""

    min_confidence: float = 0.85
    max_risk_pct: float = 3.0
    min_risk_reward: float = 2.0
    entry_fraction: float = 0.1
    max_positions: int = 3
    max_margin_usage_pct: float = 90.0


DEFAULT_LIMITS = RiskLimits()


def estimate_entry_price(stop_loss: float, take_profit: float, fraction: float) -> float:
    """Synthetic fill assumed ``fraction`` of the way from stop loss to take profit.

    This is an estimate, not a real fill price; it works for both sides because
    the interpolation runs from the stop towards the target.
    """
    return stop_loss + (take_profit - stop_loss) * fraction


def estimate_risk_reward(stop_loss: float, take_profit: float, fraction: float) -> float:
    """Reward-to-risk ratio measured from the synthetic entry price."""
    entry = estimate_entry_price(stop_loss, take_profit, fraction)
    risk = abs(entry - stop_loss)
    reward = abs(take_profit - entry)
    if risk <= 0:
        return 0.0
    return reward / risk


def validate_decision(
    decision: Decision,
    account_equity: float,
    caps: LeverageCaps,
    limits: RiskLimits = DEFAULT_LIMITS,
) -> None:
    """Raise ``DecisionValidationError`` if ``decision`` breaks a rule."""
    if isinstance(decision, (OpenLong, OpenShort)):
        _validate_open(decision, account_equity, caps, limits)
    elif isinstance(decision, UpdateStopLoss):
        if decision.new_stop_loss <= 0:
            raise _reject(decision, "new_stop_loss_non_positive", "new_stop_loss must be > 0")
    elif isinstance(decision, UpdateTakeProfit):
        if decision.new_take_profit <= 0:
            raise _reject(decision, "new_take_profit_non_positive", "new_take_profit must be > 0")
    elif isinstance(decision, PartialClose):
        if not 0 < decision.close_percentage <= 100:
            raise _reject(
                decision,
                "close_percentage_out_of_range",
                f"close_percentage must be in (0, 100]: {decision.close_percentage}",
            )
    elif isinstance(decision, (Close, Hold, Wait)):
        return
    else:
        raise DecisionValidationError(
            f"invalid action: {getattr(decision, 'action', None)}",
            rule="invalid_action",
            symbol=getattr(decision, "symbol", None),
            action=getattr(decision, "action", None),
        )


def validate_decisions(
    decisions: list[Decision],
    account_equity: float,
    caps: LeverageCaps,
    limits: RiskLimits = DEFAULT_LIMITS,
) -> None:
    """Fail-fast batch validation; the first broken decision rejects the batch."""
    for index, decision in enumerate(decisions):
        try:
            validate_decision(decision, account_equity, caps, limits)
        except DecisionValidationError as exc:
            located = exc.located(index, decisions)
            log_risk_event(
                _logger,
                event_type="decision_rejected",
                action=decision.action,
                symbol=decision.symbol,
                index=index,
                rule=exc.rule,
            )
            raise located from exc


def partition_decisions(
    decisions: list[Decision],
    account_equity: float,
    caps: LeverageCaps,
    limits: RiskLimits = DEFAULT_LIMITS,
) -> tuple[list[Decision], list[DecisionValidationError]]:
    """Split a batch into valid decisions and located rejections without raising."""
    valid: list[Decision] = []
    rejected: list[DecisionValidationError] = []
    for index, decision in enumerate(decisions):
        try:
            validate_decision(decision, account_equity, caps, limits)
        except DecisionValidationError as exc:
            rejected.append(exc.located(index, decisions))
        else:
            valid.append(decision)
    return valid, rejected


def _validate_open(
    decision: OpenDecision,
    account_equity: float,
    caps: LeverageCaps,
    limits: RiskLimits,
) -> None:
    max_leverage = caps.cap_for(decision.symbol)
    if decision.leverage < 1 or decision.leverage > max_leverage:
        raise _reject(
            decision,
            "leverage_out_of_range",
            f"leverage must be within 1-{max_leverage}: {decision.leverage}",
        )
    if decision.stop_loss <= 0 or decision.take_profit <= 0:
        raise _reject(decision, "stop_take_non_positive", "stop_loss and take_profit must be > 0")
    if decision.confidence is not None and decision.confidence < limits.min_confidence:
        raise _reject(
            decision,
            "confidence_too_low",
            f"confidence {decision.confidence:.2f} below {limits.min_confidence:.2f}",
        )
    if decision.risk_usd <= 0:
        raise _reject(decision, "risk_usd_non_positive", "risk_usd must be > 0")

    max_risk = account_equity * limits.max_risk_pct / 100.0
    if decision.risk_usd > max_risk:
        raise _reject(
            decision,
            "risk_usd_too_high",
            f"risk_usd {decision.risk_usd:.2f} exceeds {limits.max_risk_pct:g}% "
            f"of equity ({max_risk:.2f})",
        )

    if isinstance(decision, OpenLong) and decision.stop_loss >= decision.take_profit:
        raise _reject(decision, "stop_take_order", "long stop_loss must be below take_profit")
    if isinstance(decision, OpenShort) and decision.stop_loss <= decision.take_profit:
        raise _reject(decision, "stop_take_order", "short stop_loss must be above take_profit")

    ratio = estimate_risk_reward(decision.stop_loss, decision.take_profit, limits.entry_fraction)
    if ratio < limits.min_risk_reward:
        raise _reject(
            decision,
            "risk_reward_too_low",
            f"risk/reward {ratio:.2f}:1 below {limits.min_risk_reward:.2f}:1",
        )


def _reject(decision: Decision, rule: str, message: str) -> DecisionValidationError:
    return DecisionValidationError(
        message,
        rule=rule,
        symbol=decision.symbol,
        action=decision.action,
    )
