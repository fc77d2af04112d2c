"""LLM decision schemas: one strict model per action."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, TypeAdapter, ValidationError

from ai_futures.errors import DecisionValidationError

ActionName = Literal[
    "open_long",
    "open_short",
    "close",
    "hold",
    "wait",
    "update_stop_loss",
    "update_take_profit",
    "partial_close",
]

ACTIONS: tuple[str, ...] = (
    "open_long",
    "open_short",
    "close",
    "hold",
    "wait",
    "update_stop_loss",
    "update_take_profit",
    "partial_close",
)


class _DecisionBase(BaseModel):
    """Fields shared by every action. Unknown fields and non-finite numbers are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True, allow_inf_nan=False)

    symbol: str = Field(min_length=1)
    confidence: float | None = None
    reasoning: str = ""


class _OpenPosition(_DecisionBase):
    leverage: StrictInt
    stop_loss: float
    take_profit: float
    risk_usd: float
    invalidation_condition: str | None = None
    slippage_buffer: float | None = None


class OpenLong(_OpenPosition):
    action: Literal["open_long"] = "open_long"


class OpenShort(_OpenPosition):
    action: Literal["open_short"] = "open_short"


class Close(_DecisionBase):
    action: Literal["close"] = "close"


class Hold(_DecisionBase):
    action: Literal["hold"] = "hold"


class Wait(_DecisionBase):
    action: Literal["wait"] = "wait"


class UpdateStopLoss(_DecisionBase):
    action: Literal["update_stop_loss"] = "update_stop_loss"
    new_stop_loss: float


class UpdateTakeProfit(_DecisionBase):
    action: Literal["update_take_profit"] = "update_take_profit"
    new_take_profit: float


class PartialClose(_DecisionBase):
    action: Literal["partial_close"] = "partial_close"
    close_percentage: float


Decision = Annotated[
    Union[
        OpenLong,
        OpenShort,
        Close,
        Hold,
        Wait,
        UpdateStopLoss,
        UpdateTakeProfit,
        PartialClose,
    ],
    Field(discriminator="action"),
]

OpenDecision = Union[OpenLong, OpenShort]

_DECISION_ADAPTER: TypeAdapter[Decision] = TypeAdapter(Decision)


class FullDecision(BaseModel):
    """Prompts, chain of thought and decisions of one cycle."""

    model_config = ConfigDict(frozen=True)

    system_prompt: str
    user_prompt: str
    cot_trace: str
    decisions: list[Decision] = Field(default_factory=list)
    timestamp: datetime


def decision_from_payload(index: int, payload: Any) -> Decision:
    """Build the action variant for one decoded JSON element.

    The action must be known and the fields must match that action exactly;
    anything else is a validation error, never a coercion.
    """
    if not isinstance(payload, dict):
        raise DecisionValidationError(
            f"decision #{index + 1} is not an object",
            rule="decision_not_object",
            index=index,
        )

    symbol = payload.get("symbol")
    action = payload.get("action")
    if action not in ACTIONS:
        raise DecisionValidationError(
            f"decision #{index + 1} ({symbol}) has invalid action: {action}",
            rule="invalid_action",
            index=index,
            symbol=symbol if isinstance(symbol, str) else None,
            action=str(action),
        )

    try:
        return _DECISION_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"][1:]) or "decision"
        raise DecisionValidationError(
            f"decision #{index + 1} ({symbol} {action}) field contract broken: "
            f"{location}: {first['msg']}",
            rule="action_field_contract",
            index=index,
            symbol=symbol if isinstance(symbol, str) else None,
            action=action,
            details={"errors": exc.errors(include_url=False)},
        ) from exc


def dump_decisions(decisions: list[Decision]) -> list[dict[str, Any]]:
    """Serialize decisions without unset optional fields."""
    return [decision.model_dump(exclude_none=True) for decision in decisions]
