"""
Main Settings Module for Agent Trader.

This module provides centralized configuration management: inference
endpoint and per-role models, trading loop cadence, risk defaults,
storage location and paper broker defaults.
"""

from pathlib import Path
from typing import Any, Dict
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment enumeration."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


DEFAULT_ROLE_MODELS: Dict[str, str] = {
    "technical": "anthropic/claude-sonnet-4.5",
    "fundamental": "anthropic/claude-sonnet-4.5",
    "sentiment": "anthropic/claude-haiku-4.5",
    "bull": "anthropic/claude-haiku-4.5",
    "bear": "anthropic/claude-haiku-4.5",
    "trader": "deepseek/deepseek-chat-v3.1",
    "risk_manager": "deepseek/deepseek-chat-v3.1",
}

DEFAULT_ROLE_TEMPERATURES: Dict[str, float] = {
    "technical": 0.3,
    "fundamental": 0.3,
    "sentiment": 0.5,
    "bull": 0.6,
    "bear": 0.6,
    "trader": 0.4,
    "risk_manager": 0.2,
}


class InferenceSettings(BaseModel):
    """Chat-completions endpoint configuration settings."""

    api_key: SecretStr = Field(default=SecretStr(""), description="Inference API key")
    base_url: str = Field(default="https://openrouter.ai/api/v1", description="API base URL")
    app_title: str = Field(default="Agent Trader", description="X-Title header value")
    referer: str = Field(default="", description="HTTP-Referer header value")
    role_models: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_ROLE_MODELS),
        description="Model id per pipeline role"
    )
    role_temperatures: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_ROLE_TEMPERATURES),
        description="Sampling temperature per pipeline role"
    )
    default_model: str = Field(default="deepseek/deepseek-chat-v3.1", description="Fallback model")
    max_tokens: int = Field(default=2048, ge=1, le=128000, description="Max tokens per request")
    timeout: float = Field(default=60.0, ge=1.0, le=300.0, description="HTTP timeout seconds")
    max_retries: int = Field(default=2, ge=1, le=10, description="Attempts on transport errors")
    daily_budget: float = Field(default=25.0, ge=0.0, description="Daily spending budget USD")
    rate_limit_rpm: int = Field(default=60, ge=1, description="Rate limit requests per minute")

    @property
    def is_configured(self) -> bool:
        """Check if an API key is configured."""
        return bool(self.api_key.get_secret_value())

    def model_for(self, role: str) -> str:
        return self.role_models.get(role, self.default_model)

    def temperature_for(self, role: str) -> float:
        return self.role_temperatures.get(role, 0.4)


class LoopSettings(BaseModel):
    """Trading loop and pipeline timing settings."""

    default_interval_seconds: float = Field(
        default=300.0, gt=0.0, description="Seconds between cycles (5 minutes)"
    )
    role_timeout_seconds: float = Field(
        default=90.0, gt=0.0, description="Per-role inference timeout"
    )
    market_data_period: str = Field(default="3mo", description="History range for indicators")
    market_data_interval: str = Field(default="1d", description="Bar interval for indicators")


class RiskSettings(BaseModel):
    """Risk validator defaults."""

    max_open_positions: int = Field(default=10, ge=1, le=100, description="Maximum concurrent positions")
    warning_ratio: float = Field(
        default=0.8, gt=0.0, lt=1.0, description="Fraction of a limit that triggers a warning"
    )
    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0, description="Low-confidence warning floor")
    risk_per_trade_pct: float = Field(default=1.0, gt=0.0, le=10.0, description="Account % risked per trade")
    atr_stop_multiplier: float = Field(default=2.0, ge=0.5, le=5.0, description="ATR stop multiplier")
    reward_risk_ratio: float = Field(default=2.0, gt=0.0, le=10.0, description="Take-profit reward/risk")
    trailing_floor_pct: float = Field(
        default=2.0, ge=0.0, le=20.0, description="Trailing stop never looser than entry -/+ this %"
    )


class StorageSettings(BaseModel):
    """SQLite storage settings."""

    sqlite_path: Path = Field(default=Path("data/agent_trader.db"), description="SQLite file path")
    wal_mode: bool = Field(default=True, description="Enable WAL journal mode")


class BrokerSettings(BaseModel):
    """Paper broker settings."""

    initial_cash: float = Field(default=100000.0, gt=0.0, description="Paper account starting cash")
    default_account_value: float = Field(
        default=100000.0, gt=0.0, description="Account value used when a strategy has none"
    )


class Settings(BaseSettings):
    """
    Main application settings.

    Aggregates all configuration sections and reads overrides from
    AGENT_TRADER_* environment variables (nested with "__").
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AGENT_TRADER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = Field(default="Agent Trader", description="Application name")
    version: str = Field(default="0.1.0", description="Application version")
    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Environment")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    logs_dir: Path = Field(default=Path("logs"), description="Logs directory")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    inference: InferenceSettings = Field(default_factory=InferenceSettings, description="Inference settings")
    loop: LoopSettings = Field(default_factory=LoopSettings, description="Loop settings")
    risk: RiskSettings = Field(default_factory=RiskSettings, description="Risk settings")
    storage: StorageSettings = Field(default_factory=StorageSettings, description="Storage settings")
    broker: BrokerSettings = Field(default_factory=BrokerSettings, description="Broker settings")

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lower-case level names from the environment."""
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def to_dict(self, exclude_secrets: bool = True) -> Dict[str, Any]:
        """
        Convert settings to dictionary.

        Args:
            exclude_secrets: Whether to mask secret values

        Returns:
            Dictionary representation of settings
        """
        data = self.model_dump(mode="json")
        if exclude_secrets:
            sensitive_keys = ['password', 'secret', 'token', 'api_key']

            def mask_secrets(obj: Any) -> Any:
                if isinstance(obj, dict):
                    return {
                        k: '***MASKED***' if any(sk in k.lower() for sk in sensitive_keys) else mask_secrets(v)
                        for k, v in obj.items()
                    }
                elif isinstance(obj, list):
                    return [mask_secrets(item) for item in obj]
                return obj
            data = mask_secrets(data)
        return data


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Cached Settings instance
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings, clearing the cache.

    Returns:
        New Settings instance
    """
    get_settings.cache_clear()
    return get_settings()
