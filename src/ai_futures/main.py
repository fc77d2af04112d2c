"""CLI 入口模块 - AI Futures 决策核心命令行接口。"""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import click

from ai_futures import __version__
from ai_futures.ai.openrouter_client import OpenRouterClient
from ai_futures.config import PromptFormat, Settings, get_settings
from ai_futures.data.binance import BinanceDataClient
from ai_futures.data.pool import CoinPoolClient
from ai_futures.errors import DecisionCoreError
from ai_futures.pipeline import DecisionEngine
from ai_futures.prompt.templates import load_template_store
from ai_futures.strategy.candidates import merge_candidate_pools, normalize_symbol
from ai_futures.types import (
    AccountState,
    CandidateCoin,
    DecisionContext,
    PerformanceSummary,
    Position,
)
from ai_futures.utils.logging import get_logger, setup_logging

_account_option = click.option(
    "--account",
    "-a",
    "account_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="账户与持仓 JSON 文件",
)
_symbol_option = click.option(
    "--symbol",
    "-s",
    "symbols",
    multiple=True,
    help="候选币种，可重复指定",
)
_pool_option = click.option(
    "--pool",
    is_flag=True,
    default=False,
    help="从币种池与 OI 排行拉取候选币种",
)
_template_option = click.option("--template", "-t", default=None, help="系统提示词模板名称")
_custom_prompt_option = click.option("--custom-prompt", default="", help="追加的个性化策略")
_override_option = click.option(
    "--override-base",
    is_flag=True,
    default=False,
    help="仅使用个性化策略作为系统提示词",
)


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """AI Futures - LLM 驱动的加密货币永续合约决策核心。

    拉取行情 → 构建提示词 → 调用 LLM → 解析并校验决策。
    """
    if version:
        click.echo(f"ai-futures version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@_account_option
@_symbol_option
@_pool_option
@_template_option
@_custom_prompt_option
@_override_option
@click.option(
    "--format",
    "prompt_format",
    type=click.Choice([fmt.value for fmt in PromptFormat]),
    default=None,
    help="User prompt 格式（覆盖配置）",
)
def prompt(
    account_file: Path,
    symbols: tuple[str, ...],
    pool: bool,
    template: str | None,
    custom_prompt: str,
    override_base: bool,
    prompt_format: str | None,
) -> None:
    """构建行情快照与提示词并输出，不调用 LLM。"""
    setup_logging()
    logger = get_logger("ai_futures.main")
    settings = get_settings()
    if prompt_format is not None:
        settings = settings.model_copy(update={"prompt_format": PromptFormat(prompt_format)})

    try:
        engine, context = _prepare(settings, account_file, symbols, pool)
        enriched = engine.build_snapshot(context)
        system_prompt, user_prompt = engine.build_prompts(
            enriched, custom_prompt, override_base, template
        )
    except DecisionCoreError as e:
        logger.error("prompt_build_failed", error=str(e))
        sys.exit(1)

    click.echo("=" * 20 + " SYSTEM PROMPT " + "=" * 20)
    click.echo(system_prompt)
    click.echo("=" * 20 + " USER PROMPT " + "=" * 20)
    click.echo(user_prompt)


@cli.command()
@_account_option
@_symbol_option
@_pool_option
@_template_option
@_custom_prompt_option
@_override_option
def once(
    account_file: Path,
    symbols: tuple[str, ...],
    pool: bool,
    template: str | None,
    custom_prompt: str,
    override_base: bool,
) -> None:
    """执行单次决策周期并输出 FullDecision JSON。

    行情快照 → 提示词 → LLM → 解析 → 风控校验
    """
    setup_logging()
    logger = get_logger("ai_futures.main")
    settings = get_settings()

    # 验证配置
    missing = settings.validate_for_live()
    if missing:
        logger.error(
            "missing_required_config",
            missing_keys=missing,
            hint="请在 .env 文件中配置必要的 API 密钥",
        )
        sys.exit(1)

    try:
        engine, context = _prepare(settings, account_file, symbols, pool)
        result = engine.get_decision(
            context,
            OpenRouterClient(settings),
            custom_prompt=custom_prompt,
            override_base=override_base,
            template_name=template,
        )
    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)
    except DecisionCoreError as e:
        logger.error("decision_failed", error=str(e), error_type=type(e).__name__)
        if e.partial is not None:
            click.echo(e.partial.model_dump_json(indent=2, exclude_none=True))
        sys.exit(1)

    click.echo(result.model_dump_json(indent=2, exclude_none=True))


@cli.command()
def templates() -> None:
    """列出可用的系统提示词模板。"""
    settings = get_settings()
    store = load_template_store(settings.prompt_template_dir)
    names = store.names()
    if not names:
        click.echo(f"No templates found in {store.directory}")
        return
    for name in names:
        marker = "*" if name == settings.prompt_template else " "
        click.echo(f" {marker} {name}")


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("AI Futures - Status")
    click.echo("=" * 50)
    click.echo()

    # API 配置状态
    click.echo("[API Configuration]")
    binance_status = "[OK] Configured" if settings.binance_api_key else "[--] Not configured"
    openrouter_status = "[OK] Configured" if settings.openrouter_api_key else "[--] Not configured"
    click.echo(f"   Binance API: {binance_status}")
    click.echo(f"   OpenRouter API: {openrouter_status}")
    click.echo(f"   Binance Testnet: {'Yes' if settings.binance_testnet else 'No'}")
    click.echo(f"   LLM Model: {settings.openrouter_model}")
    click.echo(f"   Coin pool: {settings.coin_pool_url or '-'}")
    click.echo(f"   OI top: {settings.oi_top_url or '-'}")
    click.echo()

    # 行情参数
    click.echo("[Market Data]")
    click.echo(f"   Intervals: {settings.short_interval} / {settings.long_interval}")
    click.echo(f"   Liquidity floor: {settings.liquidity_floor_usd / 1_000_000:.1f}M USD")
    click.echo()

    # 风控参数
    caps = settings.leverage_caps()
    limits = settings.risk_limits()
    click.echo("[Risk Parameters]")
    click.echo(f"   Leverage caps: {'/'.join(caps.major_symbols)} {caps.major}x, altcoins {caps.altcoin}x")
    click.echo(f"   Min confidence: {limits.min_confidence:.2f}")
    click.echo(f"   Max risk per trade: {limits.max_risk_pct}%")
    click.echo(f"   Min risk/reward: {limits.min_risk_reward}:1")
    click.echo(f"   Max positions: {limits.max_positions}")
    click.echo(f"   Max margin usage: {limits.max_margin_usage_pct}%")
    click.echo()

    # 提示词与日志
    click.echo("[Prompt & Logging]")
    click.echo(f"   Template: {settings.prompt_template}")
    click.echo(f"   Template dir: {settings.prompt_template_dir or '(packaged)'}")
    click.echo(f"   User prompt format: {settings.prompt_format.value}")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo()

    # 验证状态
    missing = settings.validate_for_live()
    if missing:
        click.echo("[ERROR] Decision cycle configuration incomplete, missing:")
        for key in missing:
            click.echo(f"   - {key}")
    else:
        click.echo("[OK] Decision cycle configuration complete")

    click.echo()
    click.echo("=" * 50)


def _prepare(
    settings: Settings,
    account_file: Path,
    symbols: tuple[str, ...],
    pool: bool,
) -> tuple[DecisionEngine, DecisionContext]:
    """组装决策引擎与决策上下文。"""
    pool_client = CoinPoolClient(settings) if (pool or settings.oi_top_url) else None

    candidates = [CandidateCoin(symbol=normalize_symbol(s), sources=("cli",)) for s in symbols]
    if pool and pool_client is not None:
        ranked = pool_client.fetch_ranked_symbols() if settings.coin_pool_url else []
        oi_top = pool_client.fetch() if settings.oi_top_url else []
        pooled = merge_candidate_pools(ranked, oi_top)
        known = {coin.symbol for coin in candidates}
        candidates += [coin for coin in pooled if coin.symbol not in known]

    context = load_context(account_file, settings)
    context.candidate_coins = candidates
    engine = DecisionEngine(
        BinanceDataClient(settings),
        load_template_store(settings.prompt_template_dir),
        settings,
        oi_ranking=pool_client if settings.oi_top_url else None,
    )
    return engine, context


def load_context(path: Path, settings: Settings) -> DecisionContext:
    """从 JSON 文件读取账户、持仓与周期信息。

    文件格式::

        {"account": {"total_equity": 1000, "available_balance": 800, ...},
         "positions": [{"symbol": "BTCUSDT", "side": "long", ...}],
         "call_count": 1, "runtime_minutes": 0,
         "performance": {"sharpe_ratio": 1.2}}
    """
    try:
        data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        account = AccountState(**data["account"])
        positions = [Position(**row) for row in data.get("positions", [])]
        performance_data = data.get("performance")
        performance = (
            PerformanceSummary(**performance_data) if isinstance(performance_data, dict) else None
        )
    except (ValueError, KeyError, TypeError) as e:
        raise click.BadParameter(f"invalid account file {path}: {e}") from e

    if not account.position_count:
        account.position_count = len(positions)

    return DecisionContext(
        current_time=data.get("current_time")
        or datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
        call_count=int(data.get("call_count", 1)),
        runtime_minutes=int(data.get("runtime_minutes", 0)),
        account=account,
        positions=positions,
        leverage_caps=settings.leverage_caps(),
        performance=performance,
    )


# 支持 python -m ai_futures.main 调用
if __name__ == "__main__":
    cli()
