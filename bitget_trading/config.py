"""Configuration loader for the trade command.

Supports YAML format with environment variable interpolation, plus direct
environment overrides. The configuration is built once at startup and passed
explicitly into constructors; nothing re-reads the environment mid-operation.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import yaml

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class ExchangeConfig:
    """Bitget exchange settings."""
    base_url: str = "https://api.bitget.com"
    ws_url: str = "wss://ws.bitget.com/v2/ws/public"
    sandbox_ws_url: str = "wss://wspap.bitget.com/v2/ws/public"
    sandbox: bool = False
    product_type: str = "USDT-FUTURES"
    margin_coin: str = "USDT"
    timeout: int = 25
    max_retries: int = 2


@dataclass
class RateLimitConfig:
    """Request budget per rolling one-second window."""
    requests_per_second: int = 10
    orders_per_second: int = 10


@dataclass
class TradeDefaults:
    """Defaults applied when a command leaves a mode unspecified."""
    margin_mode: str = "isolated"
    position_mode: str = "oneway"
    borrow_margin_mode: str = "cross"
    resting_depth: str = "0.5%"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_file: Optional[str] = None


@dataclass
class TradingConfig:
    """Complete trade-command configuration."""
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    defaults: TradeDefaults = field(default_factory=TradeDefaults)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, config_path: str) -> "TradingConfig":
        """Load configuration from YAML file with env var interpolation.

        Args:
            config_path: Path to YAML config file

        Returns:
            TradingConfig instance

        Example YAML:
            exchange:
              sandbox: true
              timeout: 10
            rate_limit:
              requests_per_second: 8
            logging:
              log_file: "${STATE_DIR}/trade.log"
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        data = yaml.safe_load(raw) or {}

        return cls(
            exchange=ExchangeConfig(**data.get("exchange", {})),
            rate_limit=RateLimitConfig(**data.get("rate_limit", {})),
            defaults=TradeDefaults(**data.get("defaults", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "TradingConfig":
        """Build configuration from environment variables only."""
        return cls().apply_env(env)

    @classmethod
    def load(cls, config_path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> "TradingConfig":
        """Load YAML (explicit path or BITGET_CONFIG) then apply environment overrides."""
        env = os.environ if env is None else env
        config_path = config_path or env.get("BITGET_CONFIG")
        config = cls.from_yaml(config_path) if config_path else cls()
        return config.apply_env(env)

    def apply_env(self, env: Optional[Mapping[str, str]] = None) -> "TradingConfig":
        """Override fields from BITGET_* / LOG_* environment variables."""
        env = os.environ if env is None else env
        if "BITGET_SANDBOX" in env:
            self.exchange.sandbox = env["BITGET_SANDBOX"].strip().lower() in _TRUTHY
        if env.get("BITGET_BASE_URL"):
            self.exchange.base_url = env["BITGET_BASE_URL"]
        if env.get("BITGET_WS_URL"):
            self.exchange.ws_url = env["BITGET_WS_URL"]
        if env.get("BITGET_TIMEOUT"):
            self.exchange.timeout = int(env["BITGET_TIMEOUT"])
        if env.get("BITGET_RATE_LIMIT"):
            self.rate_limit.requests_per_second = int(env["BITGET_RATE_LIMIT"])
        if env.get("LOG_LEVEL"):
            self.logging.level = env["LOG_LEVEL"].upper()
        if env.get("LOG_FILE"):
            self.logging.log_file = env["LOG_FILE"]
        return self

    def ws_url_for(self, sandbox: bool) -> str:
        return self.exchange.sandbox_ws_url if sandbox else self.exchange.ws_url

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        data = {
            "exchange": {
                "base_url": self.exchange.base_url,
                "ws_url": self.exchange.ws_url,
                "sandbox_ws_url": self.exchange.sandbox_ws_url,
                "sandbox": self.exchange.sandbox,
                "product_type": self.exchange.product_type,
                "margin_coin": self.exchange.margin_coin,
                "timeout": self.exchange.timeout,
                "max_retries": self.exchange.max_retries,
            },
            "rate_limit": {
                "requests_per_second": self.rate_limit.requests_per_second,
                "orders_per_second": self.rate_limit.orders_per_second,
            },
            "defaults": {
                "margin_mode": self.defaults.margin_mode,
                "position_mode": self.defaults.position_mode,
                "borrow_margin_mode": self.defaults.borrow_margin_mode,
                "resting_depth": self.defaults.resting_depth,
            },
            "logging": {
                "level": self.logging.level,
                "log_file": self.logging.log_file,
            },
        }

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
