"""
Configuration management for the trading bot system.

Settings are loaded once at process start and handed to every component.
"""

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from candle_bot.exceptions import ConfigurationError

load_dotenv()


class MongoConfig(BaseSettings):
    """MongoDB connection settings."""

    url: str = Field(default="mongodb://localhost:27017")
    database: str = Field(default="trading_bot")

    model_config = SettingsConfigDict(env_prefix="MONGO_", frozen=True)


class KucoinConfig(BaseSettings):
    """KuCoin public market data settings."""

    enable_rate_limit: bool = Field(default=True)
    quote_currency: str = Field(default="USDT")
    request_timeout: float = Field(default=10.0)

    model_config = SettingsConfigDict(env_prefix="KUCOIN_", frozen=True)


class CandleAnalysisConfig(BaseSettings):
    """Candle building and green-candle pattern settings."""

    lookback_minutes: int = Field(default=30)
    candle_interval_minutes: int = Field(default=5)
    number_of_candles: int = Field(default=5)
    last_three_candles: int = Field(default=3)
    minimum_green_candles: int = Field(default=3)
    # Loaded for compatibility with existing deployments; detection does not read it.
    last_five_candles_threshold: int = Field(default=5)

    model_config = SettingsConfigDict(env_prefix="CANDLE_", frozen=True)

    @field_validator("lookback_minutes", "candle_interval_minutes", "number_of_candles")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("last_three_candles")
    @classmethod
    def validate_window(cls, v):
        if v != 3:
            raise ValueError("The short candle window is fixed at 3")
        return v

    @field_validator("minimum_green_candles")
    @classmethod
    def validate_minimum_green(cls, v):
        if not 0 <= v <= 3:
            raise ValueError("Minimum green candles must be between 0 and 3")
        return v


class TradingConfig(BaseSettings):
    """Trade sizing and exit thresholds."""

    initial_balance: Decimal = Field(default=Decimal("1000"))
    trade_amount: Decimal = Field(default=Decimal("100"))
    take_profit_percentage: Decimal = Field(default=Decimal("5"))
    stop_loss_percentage: Decimal = Field(default=Decimal("3"))
    one_trade_per_symbol: bool = Field(default=False)

    model_config = SettingsConfigDict(env_prefix="TRADING_", frozen=True)

    @field_validator("trade_amount", "take_profit_percentage", "stop_loss_percentage")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Value must be greater than 0")
        return v

    @field_validator("initial_balance")
    @classmethod
    def validate_balance(cls, v):
        if v < 0:
            raise ValueError("Initial balance cannot be negative")
        return v


class SchedulerConfig(BaseSettings):
    """Delays (seconds) between runs of each periodic job."""

    price_update_delay: float = Field(default=10)
    trading_analysis_delay: float = Field(default=5)
    close_evaluation_delay: float = Field(default=5)
    price_log_delay: float = Field(default=60)
    cleanup_delay: float = Field(default=3600)
    price_log_retention_hours: int = Field(default=24)
    lookback_padding_minutes: int = Field(default=5)

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", frozen=True)


class MonitoringConfig(BaseSettings):
    """Logging and metrics settings."""

    log_level: str = Field(default="INFO")
    log_dir: str = Field(default="logs")
    prometheus_port: int = Field(default=0)

    model_config = SettingsConfigDict(env_prefix="MONITORING_", frozen=True)


class Settings(BaseSettings):
    """All settings of the bot as one immutable value."""

    environment: str = Field(default="development")
    mongo: MongoConfig = Field(default_factory=MongoConfig)
    kucoin: KucoinConfig = Field(default_factory=KucoinConfig)
    candles: CandleAnalysisConfig = Field(default_factory=CandleAnalysisConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )


def _from_appsettings(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map the appsettings.json layout (MongoDB/Trading sections) onto Settings fields."""
    values: Dict[str, Any] = {}

    mongo = data.get("MongoDB")
    if mongo:
        values["mongo"] = {
            "url": mongo.get("ConnectionString", MongoConfig().url),
            "database": mongo.get("DatabaseName", MongoConfig().database),
        }

    trading = data.get("Trading")
    if trading:
        trading_values = {}
        for source, target in (
            ("InitialBalance", "initial_balance"),
            ("TradeAmount", "trade_amount"),
            ("TakeProfitPercentage", "take_profit_percentage"),
            ("StopLossPercentage", "stop_loss_percentage"),
            ("OneTradePerSymbol", "one_trade_per_symbol"),
        ):
            if source in trading:
                trading_values[target] = trading[source]
        values["trading"] = trading_values

        analysis = trading.get("CandleAnalysis") or {}
        candle_values = {}
        for source, target in (
            ("LookbackMinutes", "lookback_minutes"),
            ("CandleIntervalMinutes", "candle_interval_minutes"),
            ("NumberOfCandles", "number_of_candles"),
            ("LastFiveCandlesThreshold", "last_five_candles_threshold"),
        ):
            if source in analysis:
                candle_values[target] = analysis[source]
        threshold = analysis.get("GreenCandleThreshold") or {}
        if "LastThreeCandles" in threshold:
            candle_values["last_three_candles"] = threshold["LastThreeCandles"]
        if "MinimumGreenCandles" in threshold:
            candle_values["minimum_green_candles"] = threshold["MinimumGreenCandles"]
        if candle_values:
            values["candles"] = candle_values

    for section in ("kucoin", "scheduler", "monitoring"):
        if section in data:
            values[section] = data[section]

    return values


def load_settings(config_file: Optional[str] = None) -> Settings:
    """Build the process settings from the environment and an optional JSON file.

    Values found in the file take precedence over environment variables.
    """
    overrides: Dict[str, Any] = {}
    if config_file:
        path = Path(config_file)
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read configuration file {path}: {e}") from e
        overrides = _from_appsettings(data)

    try:
        sections = {
            "mongo": MongoConfig(**overrides.get("mongo", {})),
            "kucoin": KucoinConfig(**overrides.get("kucoin", {})),
            "candles": CandleAnalysisConfig(**overrides.get("candles", {})),
            "trading": TradingConfig(**overrides.get("trading", {})),
            "scheduler": SchedulerConfig(**overrides.get("scheduler", {})),
            "monitoring": MonitoringConfig(**overrides.get("monitoring", {})),
        }
        return Settings(**sections)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
