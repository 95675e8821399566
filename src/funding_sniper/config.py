"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from funding_sniper.models import EntryTimingPolicy, ExitPolicy, PositionSide


class ExchangeSettings(BaseSettings):
    """Binance USD-M futures connection settings."""

    model_config = SettingsConfigDict(env_prefix="BINANCE_")

    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    testnet: bool = False


class StrategySettings(BaseSettings):
    """Funding capture strategy parameters.

    Entry timing and exit policy are independent axes: any EntryTimingPolicy
    can be combined with any ExitPolicy.
    """

    model_config = SettingsConfigDict(env_prefix="STRATEGY_")

    mode: Literal["paper", "live"] = "paper"
    position_side: PositionSide = PositionSide.LONG
    quote_asset: str = "USDT"
    funding_rate_threshold: Decimal = Decimal("-0.001")  # keep rates strictly below
    require_negative_funding: bool = True
    investment_usd: Decimal = Decimal("300")
    leverage: int = 10
    stop_loss_fraction: Decimal = Decimal("0.007")
    take_profit_fraction: Decimal | None = None  # only used by fixed_bracket exits
    top_list_count: int = 10
    check_interval_seconds: float = 10.0

    entry_timing: EntryTimingPolicy = EntryTimingPolicy.PRE_FUNDING
    entry_window_seconds: float = 10.0

    exit_policy: ExitPolicy = ExitPolicy.PROFIT_CHECK
    profit_check_delay_seconds: float = 10.0

    # Reconciliation heuristics; depend on the instrument's quantity precision
    close_quantity_tolerance: Decimal = Decimal("0.01")  # |size| below 1% of qty = flat
    fill_match_tolerance: Decimal = Decimal("0.005")  # closing fill within 0.5% of qty
    fill_lookback_ms: int = 5000

    @property
    def entry_window_ms(self) -> int:
        return int(self.entry_window_seconds * 1000)

    @property
    def profit_check_delay_ms(self) -> int:
        return int(self.profit_check_delay_seconds * 1000)


class FeeSettings(BaseSettings):
    """Binance USD-M fee structure (regular tier)."""

    model_config = SettingsConfigDict(env_prefix="FEES_")

    maker: Decimal = Decimal("0.0002")  # 0.02%
    taker: Decimal = Decimal("0.0005")  # 0.05%


class PaperSettings(BaseSettings):
    """Simulated execution parameters for paper mode."""

    model_config = SettingsConfigDict(env_prefix="PAPER_")

    slippage: Decimal = Decimal("0.0005")  # 5 basis points


class DashboardSettings(BaseSettings):
    """Status API server configuration."""

    model_config = SettingsConfigDict(env_prefix="DASHBOARD_")

    host: str = "127.0.0.1"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    strategy: StrategySettings = StrategySettings()
    fees: FeeSettings = FeeSettings()
    paper: PaperSettings = PaperSettings()
    dashboard: DashboardSettings = DashboardSettings()
