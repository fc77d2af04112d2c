"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ai_futures.types import DEFAULT_MAJOR_SYMBOLS, LeverageCaps

if TYPE_CHECKING:
    from ai_futures.risk.validator import RiskLimits


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class PromptFormat(str, Enum):
    """User prompt 渲染格式。"""

    TEXT = "text"
    JSON = "json"


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== Binance API ====================
    binance_api_key: str = Field(default="", description="Binance API Key")
    binance_api_secret: str = Field(default="", description="Binance API Secret")
    binance_testnet: bool = Field(default=False, description="是否使用 Binance 测试网")

    # ==================== OpenRouter API ====================
    openrouter_api_key: str = Field(default="", description="OpenRouter API Key")
    openrouter_model: str = Field(
        default="deepseek/deepseek-chat",
        description="OpenRouter 模型名称",
    )
    openrouter_timeout: int = Field(default=120, description="LLM 调用超时（秒）")
    openrouter_temperature: float = Field(default=0.5, ge=0.0, le=2.0, description="采样温度")

    # ==================== 币种池 ====================
    coin_pool_url: str = Field(default="", description="评分币种池接口地址")
    oi_top_url: str = Field(default="", description="持仓量增长排行接口地址")
    pool_timeout: int = Field(default=30, description="币种池请求超时（秒）")

    # ==================== 行情参数 ====================
    short_interval: str = Field(default="3m", description="短周期 K 线")
    long_interval: str = Field(default="4h", description="长周期 K 线")
    short_limit: int = Field(default=100, ge=30, le=1500, description="短周期 K 线数量")
    long_limit: int = Field(default=100, ge=30, le=1500, description="长周期 K 线数量")
    snapshot_workers: int = Field(default=8, ge=1, le=64, description="并发拉取行情的线程数")
    liquidity_floor_usd: float = Field(
        default=15_000_000.0,
        ge=0.0,
        description="持仓价值下限（USD），低于该值的新币种不分析",
    )

    # ==================== 杠杆上限 ====================
    major_leverage: int = Field(default=5, ge=1, le=125, description="BTC/ETH 杠杆上限")
    altcoin_leverage: int = Field(default=5, ge=1, le=125, description="山寨币杠杆上限")
    major_symbols: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_MAJOR_SYMBOLS),
        description="适用主流币杠杆上限的币种",
    )

    # ==================== 风控参数 ====================
    min_confidence: float = Field(default=0.85, ge=0.0, le=1.0, description="开仓最低信心度")
    max_risk_pct: float = Field(
        default=3.0,
        gt=0.0,
        le=10.0,
        description="单笔最大风险（账户净值百分比）",
    )
    min_risk_reward: float = Field(default=2.0, gt=0.0, description="最低盈亏比")
    entry_fraction: float = Field(
        default=0.1,
        gt=0.0,
        lt=1.0,
        description="估算入场价在止损→止盈之间的位置",
    )
    max_positions: int = Field(default=3, ge=1, le=20, description="最大同时持仓数")
    max_margin_usage_pct: float = Field(
        default=90.0,
        gt=0.0,
        le=100.0,
        description="保证金使用率上限（百分比）",
    )

    # ==================== 提示词 ====================
    prompt_template_dir: Path | None = Field(
        default=None,
        description="提示词模板目录，为空时使用内置模板",
    )
    prompt_template: str = Field(default="default", description="默认系统提示词模板")
    prompt_format: PromptFormat = Field(default=PromptFormat.TEXT, description="User prompt 格式")
    prompt_include_series: bool = Field(default=False, description="是否附带完整指标序列")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    @field_validator("prompt_template_dir", mode="before")
    @classmethod
    def parse_template_dir(cls, v: str | Path | None) -> Path | None:
        """将字符串转换为 Path 对象。"""
        if v is None or v == "":
            return None
        return Path(v) if isinstance(v, str) else v

    @field_validator("major_symbols", mode="before")
    @classmethod
    def parse_major_symbols(cls, v: str | list[str]) -> list[str]:
        """支持逗号分隔的字符串。"""
        if isinstance(v, str):
            return [item.strip().upper() for item in v.split(",") if item.strip()]
        return [item.upper() for item in v]

    def leverage_caps(self) -> LeverageCaps:
        """杠杆上限配置。"""
        return LeverageCaps(
            major=self.major_leverage,
            altcoin=self.altcoin_leverage,
            major_symbols=tuple(self.major_symbols),
        )

    def risk_limits(self) -> "RiskLimits":
        """风控阈值配置。"""
        from ai_futures.risk.validator import RiskLimits

        return RiskLimits(
            min_confidence=self.min_confidence,
            max_risk_pct=self.max_risk_pct,
            min_risk_reward=self.min_risk_reward,
            entry_fraction=self.entry_fraction,
            max_positions=self.max_positions,
            max_margin_usage_pct=self.max_margin_usage_pct,
        )

    def validate_for_live(self) -> list[str]:
        """验证完整决策周期的必要配置，返回缺失项列表。"""
        missing = []
        if not self.openrouter_api_key:
            missing.append("OPENROUTER_API_KEY")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
