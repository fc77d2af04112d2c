"""Decision cycle: snapshot -> prompts -> LLM -> parse -> validate."""

from __future__ import annotations

from datetime import datetime, timezone
from time import perf_counter

from ai_futures.ai.parser import extract_cot_trace, parse_decisions
from ai_futures.ai.schemas import Decision, FullDecision
from ai_futures.config import Settings
from ai_futures.errors import DecisionParseError, DecisionValidationError, LLMCallError
from ai_futures.market.snapshot import MarketSnapshotBuilder
from ai_futures.prompt.templates import TemplateStore
from ai_futures.prompt.user import build_prompts
from ai_futures.risk.validator import RiskLimits, validate_decisions
from ai_futures.types import DecisionContext, LLMGateway, MarketDataSource, OIRankingSource
from ai_futures.utils.logging import get_logger, log_decision


class DecisionEngine:
    """Runs one decision cycle for a trading entity."""

    def __init__(
        self,
        source: MarketDataSource,
        templates: TemplateStore,
        settings: Settings,
        oi_ranking: OIRankingSource | None = None,
        limits: RiskLimits | None = None,
    ) -> None:
        self._templates = templates
        self._settings = settings
        self._limits = limits if limits is not None else settings.risk_limits()
        self._snapshots = MarketSnapshotBuilder(source, settings, oi_ranking)
        self._logger = get_logger("ai_futures.pipeline")

    @property
    def limits(self) -> RiskLimits:
        return self._limits

    def build_snapshot(
        self,
        context: DecisionContext,
        *,
        timeout: float | None = None,
    ) -> DecisionContext:
        """Context copy with market data for held symbols and candidates."""
        return self._snapshots.build_snapshot(context, timeout=timeout)

    def build_prompts(
        self,
        context: DecisionContext,
        custom_prompt: str = "",
        override_base: bool = False,
        template_name: str | None = None,
    ) -> tuple[str, str]:
        """System and user prompt for an already-enriched context."""
        return build_prompts(
            context,
            self._templates,
            self._limits,
            template_name=template_name or self._settings.prompt_template,
            custom_prompt=custom_prompt,
            override_base=override_base,
            fmt=self._settings.prompt_format,
            include_series=self._settings.prompt_include_series,
        )

    def get_decision(
        self,
        context: DecisionContext,
        llm: LLMGateway,
        custom_prompt: str = "",
        override_base: bool = False,
        template_name: str | None = None,
        *,
        timeout: float | None = None,
    ) -> FullDecision:
        """Run one full cycle and return validated decisions.

        ``LLMCallError`` is raised when the gateway fails. Parse and validation
        failures are raised with ``partial`` set to a ``FullDecision`` holding the
        prompts, the chain of thought and whatever decisions were decoded.
        """
        started = perf_counter()
        enriched = self.build_snapshot(context, timeout=timeout)
        system_prompt, user_prompt = self.build_prompts(
            enriched, custom_prompt, override_base, template_name
        )

        try:
            raw = llm.call(system_prompt, user_prompt)
        except LLMCallError as exc:
            exc.partial = _full_decision(system_prompt, user_prompt)
            raise
        except Exception as exc:  # noqa: BLE001 - any gateway failure is an LLM call failure.
            error = LLMCallError(f"llm_call_failed: {exc}")
            error.partial = _full_decision(system_prompt, user_prompt)
            raise error from exc

        cot_trace = extract_cot_trace(raw)
        try:
            cot_trace, decisions = parse_decisions(raw)
        except (DecisionParseError, DecisionValidationError) as exc:
            exc.raw_response = raw
            exc.partial = _full_decision(system_prompt, user_prompt, cot_trace)
            self._logger.warning("decision_parse_failed", error=str(exc))
            raise

        full = _full_decision(system_prompt, user_prompt, cot_trace, decisions)
        try:
            validate_decisions(
                decisions,
                enriched.account.total_equity,
                enriched.leverage_caps,
                self._limits,
            )
        except DecisionValidationError as exc:
            exc.raw_response = raw
            exc.partial = full
            raise

        for decision in decisions:
            log_decision(
                self._logger,
                symbol=decision.symbol,
                action=decision.action,
                confidence=decision.confidence,
            )
        self._logger.info(
            "decision_cycle_completed",
            call_count=enriched.call_count,
            analyzed=len(enriched.market_data),
            decisions=len(decisions),
            elapsed_ms=round((perf_counter() - started) * 1000, 2),
        )
        return full


def _full_decision(
    system_prompt: str,
    user_prompt: str,
    cot_trace: str = "",
    decisions: list[Decision] | None = None,
) -> FullDecision:
    return FullDecision(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        cot_trace=cot_trace,
        decisions=decisions or [],
        timestamp=datetime.now(timezone.utc),
    )
