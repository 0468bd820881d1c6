"""Configuration loader with Pydantic validation and environment variable interpolation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables at module level
load_dotenv(find_dotenv(usecwd=True))

from ledgerwatch.constants import (
    DEFAULT_ASSET_DECIMALS,
    DEFAULT_LP_DENOM_PREFIX,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_NATIVE_DENOM,
    DEFAULT_POLLING_INTERVAL,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    DEFAULT_USD_STABLE_DENOM,
    LogLevel,
)


def interpolate_env_vars(value: Any) -> Any:
    """
    Interpolate environment variables in string values.

    Supports formats:
    - ${VAR_NAME} - empty string if not set
    - ${VAR_NAME:default} - optional with default value
    """
    if not isinstance(value, str):
        return value

    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default is not None:
            return default
        else:
            return ""

    return re.sub(pattern, replacer, value)


def process_config_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively process config dict to interpolate env vars."""
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = process_config_dict(value)
        elif isinstance(value, list):
            result[key] = [
                process_config_dict(item) if isinstance(item, dict) else interpolate_env_vars(item)
                for item in value
            ]
        else:
            result[key] = interpolate_env_vars(value)
    return result


# ============================================
# Pydantic Configuration Models
# ============================================


class EnvironmentConfig(BaseModel):
    """Environment and runtime settings."""

    log_level: LogLevel = LogLevel.INFO


class EndpointsConfig(BaseModel):
    """Remote endpoints. Read-only from this package's point of view."""

    rpc_endpoint: str = "https://rpc.getbze.com"
    rest_endpoint: str = "https://rest.getbze.com"
    aggregator_host: str = "https://getbze.com"
    price_oracle_url: str = (
        "https://api.coingecko.com/api/v3/simple/price?ids=bzedge&vs_currencies=usd"
    )
    price_oracle_coin_id: str = "bzedge"
    request_timeout_seconds: float = 10.0

    @field_validator("rpc_endpoint", "rest_endpoint", "aggregator_host")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoints are joined with paths, keep them slash-free at the end."""
        return v.rstrip("/")

    @property
    def websocket_url(self) -> str:
        """Build the event stream URL from the RPC endpoint."""
        url = self.rpc_endpoint
        if url.startswith("https://"):
            url = "wss://" + url[len("https://") :]
        elif url.startswith("http://"):
            url = "ws://" + url[len("http://") :]
        return f"{url}/websocket"


class ChainConfig(BaseModel):
    """Chain-specific denominations."""

    native_denom: str = DEFAULT_NATIVE_DENOM
    usd_stable_denom: str = DEFAULT_USD_STABLE_DENOM
    lp_denom_prefix: str = DEFAULT_LP_DENOM_PREFIX
    default_decimals: int = DEFAULT_ASSET_DECIMALS
    decimals: dict[str, int] = Field(default_factory=dict)

    @field_validator("default_decimals")
    @classmethod
    def validate_decimals(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Decimals must be non-negative, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_distinct_denoms(self) -> ChainConfig:
        """Native and stable denoms must differ or every price collapses to the anchor."""
        if self.native_denom == self.usd_stable_denom:
            raise ValueError("native_denom and usd_stable_denom must be different")
        return self

    def decimals_for(self, denom: str) -> int:
        return self.decimals.get(denom, self.default_decimals)


class StreamConfig(BaseModel):
    """Event stream reconnection settings."""

    reconnect_base_delay_seconds: float = DEFAULT_RECONNECT_BASE_DELAY
    reconnect_max_delay_seconds: float = DEFAULT_RECONNECT_MAX_DELAY
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    ping_interval_seconds: float | None = 20.0

    @field_validator("reconnect_base_delay_seconds", "reconnect_max_delay_seconds")
    @classmethod
    def validate_positive_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Delay must be positive, got: {v}")
        return v

    @field_validator("max_reconnect_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Value must be non-negative, got: {v}")
        return v


class RefreshConfig(BaseModel):
    """Debounce windows (seconds) for event-driven refreshes."""

    assets_delay: float = 0.1
    balances_delay: float = 1.0
    market_data_delay: float = 1.5
    market_data_extra_times: int = 2
    order_book_delay: float = 0.5
    prices_delay: float = 0.2
    pools_delay: float = 0.2


class PollingConfig(BaseModel):
    """Polling fallback used while the stream is down."""

    interval_seconds: float = DEFAULT_POLLING_INTERVAL

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Polling interval must be positive, got: {v}")
        return v


class WalletConfig(BaseModel):
    """Initial wallet address to watch (may be empty)."""

    address: str = ""


class AppConfig(BaseModel):
    """Root application configuration."""

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    endpoints: EndpointsConfig = Field(default_factory=EndpointsConfig)
    chain: ChainConfig = Field(default_factory=ChainConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)


# ============================================
# Configuration Loader
# ============================================


class ConfigLoader:
    """Load and validate configuration from YAML files with env var interpolation."""

    def __init__(self, config_path: str | Path) -> None:
        """
        Initialize config loader.

        Args:
            config_path: Path to the YAML configuration file.
        """
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """
        Load and validate configuration.

        Returns:
            Validated AppConfig instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            yaml.YAMLError: If YAML is invalid.
            pydantic.ValidationError: If config validation fails.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            raw_config = {}

        processed_config = process_config_dict(raw_config)

        self._config = AppConfig.model_validate(processed_config)

        return self._config

    @property
    def config(self) -> AppConfig:
        """Get loaded config, loading if necessary."""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Force reload configuration from disk."""
        self._config = None
        return self.load()


def load_config(config_path: str | Path) -> AppConfig:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated AppConfig instance.
    """
    loader = ConfigLoader(config_path)
    return loader.load()


def load_config_with_overrides(
    config_path: str | Path,
    *,
    address: str | None = None,
    rpc_endpoint: str | None = None,
    log_level: str | None = None,
) -> AppConfig:
    """
    Load configuration with CLI overrides.

    Args:
        config_path: Path to the YAML configuration file.
        address: Override the watched wallet address.
        rpc_endpoint: Override the RPC endpoint.
        log_level: Override the log level.

    Returns:
        Validated AppConfig instance with overrides applied.
    """
    config = load_config(config_path)

    updates: dict[str, Any] = {}

    if address is not None:
        updates["wallet"] = config.wallet.model_copy(update={"address": address})

    if rpc_endpoint is not None:
        updates["endpoints"] = config.endpoints.model_copy(
            update={"rpc_endpoint": rpc_endpoint.rstrip("/")}
        )

    if log_level is not None:
        level = LogLevel(log_level.upper())
        updates["environment"] = config.environment.model_copy(update={"log_level": level})

    if updates:
        return config.model_copy(update=updates)

    return config
