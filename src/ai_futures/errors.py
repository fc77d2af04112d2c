"""Typed errors raised by the decision core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ai_futures.ai.schemas import Decision, FullDecision


class DecisionCoreError(Exception):
    """Base error for the decision core.

    ``partial`` is filled by the decision engine when a cycle fails after the
    prompts were built, so callers can still inspect what was sent and received.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.partial: FullDecision | None = None


class MarketDataError(DecisionCoreError):
    """Raised when candles, open interest or funding cannot be fetched."""

    def __init__(self, message: str, *, symbol: str | None = None) -> None:
        super().__init__(message)
        self.symbol = symbol


class InsufficientDataError(DecisionCoreError):
    """Raised when an indicator does not have enough candles to run."""


class LLMCallError(DecisionCoreError):
    """Raised when the LLM gateway round-trip fails."""


class TemplateNotFoundError(DecisionCoreError):
    """Raised when a prompt template name is unknown to the store."""

    def __init__(self, name: str) -> None:
        super().__init__(f"prompt_template_not_found: {name}")
        self.name = name


class DecisionParseError(DecisionCoreError):
    """Raised when no decision array can be extracted or decoded."""

    def __init__(
        self,
        message: str,
        *,
        raw_response: str = "",
        fragment: str | None = None,
    ) -> None:
        super().__init__(message)
        self.raw_response = raw_response
        self.fragment = fragment


class DecisionValidationError(DecisionCoreError):
    """Raised when a decision breaks its action contract or a risk rule."""

    def __init__(
        self,
        message: str,
        *,
        rule: str,
        index: int | None = None,
        symbol: str | None = None,
        action: str | None = None,
        decisions: list[Decision] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.rule = rule
        self.index = index
        self.symbol = symbol
        self.action = action
        self.decisions = decisions or []
        self.details = details or {}
        self.raw_response = ""

    def located(
        self,
        index: int,
        decisions: list[Decision] | None = None,
    ) -> "DecisionValidationError":
        """Return a copy of this error pinned to one decision of a batch."""
        return DecisionValidationError(
            f"decision #{index + 1} ({self.symbol} {self.action}) rejected: {self}",
            rule=self.rule,
            index=index,
            symbol=self.symbol,
            action=self.action,
            decisions=decisions,
            details=self.details,
        )
