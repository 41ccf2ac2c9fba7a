"""
Configuration management for the daytrader engine.
"""

import json
import os
import re
from datetime import time
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_clock_time(value: str) -> time:
    """Parse an 'HH:MM' string into a time of day."""
    match = _TIME_PATTERN.match(value)
    if not match:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


class ScheduleConfig(BaseModel):
    """Time-of-day gates for the trading session (wall clock in `timezone`)."""

    buy_time: str = Field(default="11:00")
    sell_check_start: str = Field(default="13:00")
    sell_check_interval: float = Field(default=60.0, gt=0.0, description="Seconds between monitoring ticks")
    force_close_time: str = Field(default="15:00")
    timezone: str = Field(default="America/New_York")

    @field_validator("buy_time", "sell_check_start", "force_close_time")
    @classmethod
    def _validate_clock(cls, v: str) -> str:
        parse_clock_time(v)
        return v

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {v!r}") from e
        return v

    @model_validator(mode="after")
    def _validate_order(self) -> "ScheduleConfig":
        if parse_clock_time(self.buy_time) >= parse_clock_time(self.force_close_time):
            raise ValueError("buy_time must be earlier than force_close_time")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def buy_at(self) -> time:
        return parse_clock_time(self.buy_time)

    @property
    def sell_check_at(self) -> time:
        return parse_clock_time(self.sell_check_start)

    @property
    def force_close_at(self) -> time:
        return parse_clock_time(self.force_close_time)


class RiskManagementConfig(BaseModel):
    """Quantitative risk thresholds. Rates are fractions (-0.03 == -3%)."""

    stop_loss: Decimal = Field(default=Decimal("-0.03"), lt=Decimal("0"))
    emergency_stop_loss: Decimal = Field(default=Decimal("-0.05"), lt=Decimal("0"))
    take_profit: Decimal = Field(default=Decimal("0.05"), gt=Decimal("0"))
    take_profit_override: Decimal = Field(
        default=Decimal("0.07"),
        gt=Decimal("0"),
        description="Profit rate that sells without waiting for sell consensus"
    )
    max_position_size: Decimal = Field(default=Decimal("10000"), gt=Decimal("0"))
    max_daily_trades: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "RiskManagementConfig":
        if self.emergency_stop_loss > self.stop_loss:
            raise ValueError("emergency_stop_loss must not be above stop_loss")
        if self.take_profit_override < self.take_profit:
            raise ValueError("take_profit_override must not be below take_profit")
        return self


class ScreeningConfig(BaseModel):
    """Tradable universe filter."""

    min_price: Decimal = Field(default=Decimal("10"), ge=Decimal("0"))
    max_price: Decimal = Field(default=Decimal("500"), gt=Decimal("0"))
    min_volume: int = Field(default=1_000_000, ge=0)
    candidate_count: int = Field(default=10, ge=1)
    exclude_sectors: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "ScreeningConfig":
        if self.min_price > self.max_price:
            raise ValueError("min_price must not exceed max_price")
        return self


class TradingConfig(BaseModel):
    """Execution switches. Disabled and confirm-only by default."""

    enabled: bool = Field(default=False)
    paper_trading: bool = Field(default=True)
    confirm_before_trade: bool = Field(default=True)


class SignalConfig(BaseModel):
    """Signal collection, quorum and source resilience settings."""

    quorum_ratios: Dict[int, float] = Field(
        default_factory=lambda: {3: 0.67, 4: 0.75, 5: 0.80, 6: 0.67}
    )
    default_ratio: float = Field(default=0.67, gt=0.0, le=1.0)
    timeout: float = Field(default=30.0, gt=0.0, description="Per aggregation call, seconds")
    min_sources: int = Field(default=2, ge=1)
    cache_ttl: float = Field(default=300.0, ge=0.0)
    rate_limit_interval: float = Field(default=1.0, ge=0.0)
    max_consecutive_errors: int = Field(default=3, ge=1)
    cooldown: float = Field(default=24 * 60 * 60.0, gt=0.0)

    @field_validator("quorum_ratios")
    @classmethod
    def _validate_ratios(cls, v: Dict[int, float]) -> Dict[int, float]:
        for count, ratio in v.items():
            if count < 1:
                raise ValueError(f"Source count must be positive, got {count}")
            if not 0.0 < ratio <= 1.0:
                raise ValueError(f"Quorum ratio for {count} sources must be in (0, 1], got {ratio}")
        return v


class NotificationConfig(BaseModel):
    """Which events reach the notification sink."""

    enabled: bool = Field(default=True)
    on_buy: bool = Field(default=True)
    on_sell: bool = Field(default=True)
    on_error: bool = Field(default=True)


class BacktestConfig(BaseModel):
    """Backtest portfolio and cost model."""

    initial_capital: Decimal = Field(default=Decimal("100000"), gt=Decimal("0"))
    commission: Decimal = Field(default=Decimal("0.001"), ge=Decimal("0"), description="Fraction of notional")
    slippage: Decimal = Field(default=Decimal("0.0005"), ge=Decimal("0"), description="Fraction of price")
    periods_per_year: int = Field(default=252, ge=1)
    output_path: Optional[str] = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO")
    file_path: Optional[str] = Field(default="./logs/daytrader.log")
    max_size: str = Field(default="10MB")
    backup_count: int = Field(default=5)
    console_output: bool = Field(default=True)


class Config(BaseModel):
    """Main configuration class."""

    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    risk_management: RiskManagementConfig = Field(default_factory=RiskManagementConfig)
    screening: ScreeningConfig = Field(default_factory=ScreeningConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    signals: SignalConfig = Field(default_factory=SignalConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a config from nested dicts, raising ConfigurationError on invalid input."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def load_from_file(cls, path: str) -> "Config":
        """Load configuration from a YAML or JSON file."""
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        with open(file_path, "r", encoding="utf-8") as f:
            if file_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {path}")
        return cls.from_dict(data)

    @classmethod
    def load_from_env(cls, env_file: Optional[str] = None) -> "Config":
        """Load configuration from environment variables (and a .env file if present)."""
        if env_file:
            load_dotenv(env_file)
        else:
            env_path = Path(".env")
            if env_path.exists():
                load_dotenv(env_path)

        env_map = {
            "schedule": {
                "buy_time": "BUY_TIME",
                "sell_check_start": "SELL_CHECK_START",
                "sell_check_interval": "SELL_CHECK_INTERVAL",
                "force_close_time": "FORCE_CLOSE_TIME",
                "timezone": "TRADING_TIMEZONE",
            },
            "risk_management": {
                "stop_loss": "STOP_LOSS",
                "emergency_stop_loss": "EMERGENCY_STOP_LOSS",
                "take_profit": "TAKE_PROFIT",
                "take_profit_override": "TAKE_PROFIT_OVERRIDE",
                "max_position_size": "MAX_POSITION_SIZE",
                "max_daily_trades": "MAX_DAILY_TRADES",
            },
            "screening": {
                "min_price": "SCREEN_MIN_PRICE",
                "max_price": "SCREEN_MAX_PRICE",
                "min_volume": "SCREEN_MIN_VOLUME",
                "candidate_count": "SCREEN_CANDIDATE_COUNT",
            },
            "trading": {
                "enabled": "TRADING_ENABLED",
                "paper_trading": "PAPER_TRADING",
                "confirm_before_trade": "CONFIRM_BEFORE_TRADE",
            },
            "signals": {
                "timeout": "SIGNAL_TIMEOUT",
                "min_sources": "SIGNAL_MIN_SOURCES",
                "cache_ttl": "SIGNAL_CACHE_TTL",
                "rate_limit_interval": "SIGNAL_RATE_LIMIT_INTERVAL",
                "cooldown": "SIGNAL_COOLDOWN",
            },
            "logging": {
                "level": "LOG_LEVEL",
                "file_path": "LOG_FILE_PATH",
                "max_size": "LOG_MAX_SIZE",
                "backup_count": "LOG_BACKUP_COUNT",
            },
        }

        data: Dict[str, Dict[str, Any]] = {}
        for section, fields in env_map.items():
            values = {
                field: os.environ[var]
                for field, var in fields.items()
                if os.getenv(var) is not None
            }
            if values:
                data[section] = values

        ratios = os.getenv("QUORUM_RATIOS")
        if ratios:
            data.setdefault("signals", {})["quorum_ratios"] = _parse_ratio_table(ratios)

        return cls.from_dict(data)

    @classmethod
    def japan(cls) -> "Config":
        """Preset for the Tokyo session."""
        return cls(schedule=ScheduleConfig(
            buy_time="09:30",
            sell_check_start="11:30",
            force_close_time="14:30",
            timezone="Asia/Tokyo",
        ))


def _parse_ratio_table(raw: str) -> Dict[int, float]:
    """Parse '3:0.67,4:0.75' into {3: 0.67, 4: 0.75}."""
    table = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            count, ratio = item.split(":")
            table[int(count)] = float(ratio)
        except ValueError as e:
            raise ConfigurationError(f"Invalid QUORUM_RATIOS entry: {item!r}") from e
    return table


def japan_config() -> Config:
    """Tokyo session preset (09:30 buy, 11:30 monitoring, 14:30 forced close)."""
    return Config.japan()
