"""
Aggregation - Configuration.

============================================================
RESPONSIBILITY
============================================================
One explicit configuration object per run, built once at
process start and passed to every component.

Sources (in order of use):
1. .env file (python-dotenv), then environment variables
2. YAML file (aggregator / providers sections)

============================================================
ENVIRONMENT
============================================================
DRY_RUN, MAX_RETRIES, DUPLICATE_PROTECTION,
MAX_CONCURRENT_WALLETS, RUN_TIMEOUT_SECONDS,
REQUEST_TIMEOUT_SECONDS, PRICE_BATCH_SIZE,
PRICE_BATCH_DELAY_SECONDS, RPC_BASE_DELAY, API_BASE_DELAY,
ENABLE_TOKEN_DISCOVERY, LOG_LEVEL, LOG_FORMAT, DATABASE_URL

Provider keys / URLs (public fallbacks when unset):
ETHERSCAN_API_KEY, ALCHEMY_API_KEY, TRONGRID_API_KEY,
TONCENTER_API_KEY, COINGECKO_API_KEY, COINGECKO_PRO,
SOLANA_RPC_URL, XRPL_RPC_URL, BLOCKSTREAM_URL, MEMPOOL_URL,
TRONGRID_URL, TONCENTER_URL, KUCOIN_URL, {NETWORK}_RPC_URL

============================================================
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

from core.exceptions import InvalidConfigError, UnsupportedNetworkError
from balance_providers.models import Network


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise InvalidConfigError(name, value, "expected an integer") from e


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise InvalidConfigError(name, value, "expected a number") from e


# =============================================================
# PROVIDER SETTINGS
# =============================================================

@dataclass
class ProviderSettings:
    """
    API keys and endpoint overrides for balance and price providers.

    Every URL left as None falls back to the provider's public default.
    """
    etherscan_api_key: Optional[str] = None
    alchemy_api_key: Optional[str] = None
    trongrid_api_key: Optional[str] = None
    toncenter_api_key: Optional[str] = None
    coingecko_api_key: Optional[str] = None
    coingecko_pro: bool = False

    # Network name -> JSON-RPC URL, e.g. {"ETH": "https://..."}
    evm_rpc_urls: Dict[str, str] = field(default_factory=dict)
    solana_rpc_url: Optional[str] = None
    xrpl_rpc_url: Optional[str] = None
    blockstream_url: Optional[str] = None
    mempool_url: Optional[str] = None
    trongrid_url: Optional[str] = None
    toncenter_url: Optional[str] = None
    kucoin_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ProviderSettings":
        evm_rpc_urls = {}
        for network in Network:
            if network.is_evm:
                url = os.getenv(f"{network.value}_RPC_URL")
                if url:
                    evm_rpc_urls[network.value] = url

        return cls(
            etherscan_api_key=os.getenv("ETHERSCAN_API_KEY") or None,
            alchemy_api_key=os.getenv("ALCHEMY_API_KEY") or None,
            trongrid_api_key=os.getenv("TRONGRID_API_KEY") or None,
            toncenter_api_key=os.getenv("TONCENTER_API_KEY") or None,
            coingecko_api_key=os.getenv("COINGECKO_API_KEY") or None,
            coingecko_pro=_env_bool("COINGECKO_PRO", False),
            evm_rpc_urls=evm_rpc_urls,
            solana_rpc_url=os.getenv("SOLANA_RPC_URL") or None,
            xrpl_rpc_url=os.getenv("XRPL_RPC_URL") or None,
            blockstream_url=os.getenv("BLOCKSTREAM_URL") or None,
            mempool_url=os.getenv("MEMPOOL_URL") or None,
            trongrid_url=os.getenv("TRONGRID_URL") or None,
            toncenter_url=os.getenv("TONCENTER_URL") or None,
            kucoin_url=os.getenv("KUCOIN_URL") or None,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderSettings":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown provider settings: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        """Masked view: keys are reported as set / unset only."""
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name.endswith("_api_key"):
                result[f.name] = "set" if value else "unset"
            else:
                result[f.name] = value
        return result


# =============================================================
# AGGREGATOR CONFIG
# =============================================================

@dataclass
class AggregatorConfig:
    """Run configuration for the aggregation engine."""

    dry_run: bool = False
    max_retries: int = 3
    duplicate_protection: bool = True

    max_concurrent_wallets: int = 4
    run_timeout_seconds: Optional[float] = None
    request_timeout_seconds: float = 10.0

    price_batch_size: int = 100
    price_batch_delay_seconds: float = 1.0

    # Retry base delays per provider class
    rpc_base_delay: float = 0.5
    api_base_delay: float = 1.0

    enable_token_discovery: bool = True

    log_level: str = "INFO"
    log_format: str = "text"
    database_url: Optional[str] = None

    providers: ProviderSettings = field(default_factory=ProviderSettings)

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> "AggregatorConfig":
        """
        Load configuration from environment variables.

        A .env file (or env_file) is loaded first; variables already
        set in the environment win.
        """
        load_dotenv(env_file)

        timeout = _env_float("RUN_TIMEOUT_SECONDS", 0.0)
        return cls(
            dry_run=_env_bool("DRY_RUN", False),
            max_retries=_env_int("MAX_RETRIES", 3),
            duplicate_protection=_env_bool("DUPLICATE_PROTECTION", True),
            max_concurrent_wallets=_env_int("MAX_CONCURRENT_WALLETS", 4),
            run_timeout_seconds=timeout or None,
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 10.0),
            price_batch_size=_env_int("PRICE_BATCH_SIZE", 100),
            price_batch_delay_seconds=_env_float("PRICE_BATCH_DELAY_SECONDS", 1.0),
            rpc_base_delay=_env_float("RPC_BASE_DELAY", 0.5),
            api_base_delay=_env_float("API_BASE_DELAY", 1.0),
            enable_token_discovery=_env_bool("ENABLE_TOKEN_DISCOVERY", True),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
            database_url=os.getenv("DATABASE_URL") or None,
            providers=ProviderSettings.from_env(),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AggregatorConfig":
        """
        Load configuration from a YAML file.

        Layout:
            aggregator:
              dry_run: true
              max_retries: 3
            providers:
              etherscan_api_key: ...
              evm_rpc_urls: {ETH: https://...}

        Raises:
            InvalidConfigError: unreadable file or malformed sections
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InvalidConfigError(str(path), None, f"cannot load YAML: {e}") from e

        if not isinstance(data, dict):
            raise InvalidConfigError(str(path), type(data).__name__, "top level must be a mapping")

        section = data.get("aggregator") or {}
        known = {f.name for f in fields(cls)} - {"providers"}
        config = cls(**{k: v for k, v in section.items() if k in known})
        config.providers = ProviderSettings.from_dict(data.get("providers") or {})
        return config

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.max_retries < 1:
            errors.append("max_retries must be at least 1")
        if self.max_concurrent_wallets < 1:
            errors.append("max_concurrent_wallets must be at least 1")
        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            errors.append("run_timeout_seconds must be positive when set")
        if self.request_timeout_seconds <= 0:
            errors.append("request_timeout_seconds must be positive")
        if not 1 <= self.price_batch_size <= 250:
            errors.append("price_batch_size must be between 1 and 250")
        if self.price_batch_delay_seconds < 0:
            errors.append("price_batch_delay_seconds must be non-negative")
        if self.rpc_base_delay < 0 or self.api_base_delay < 0:
            errors.append("retry base delays must be non-negative")
        if self.log_format not in ("text", "json"):
            errors.append("log_format must be 'text' or 'json'")
        for name in self.providers.evm_rpc_urls:
            try:
                if not Network.parse(name).is_evm:
                    errors.append(f"evm_rpc_urls: {name} is not an EVM network")
            except UnsupportedNetworkError:
                errors.append(f"evm_rpc_urls: unknown network {name}")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "max_retries": self.max_retries,
            "duplicate_protection": self.duplicate_protection,
            "max_concurrent_wallets": self.max_concurrent_wallets,
            "run_timeout_seconds": self.run_timeout_seconds,
            "request_timeout_seconds": self.request_timeout_seconds,
            "price_batch_size": self.price_batch_size,
            "price_batch_delay_seconds": self.price_batch_delay_seconds,
            "rpc_base_delay": self.rpc_base_delay,
            "api_base_delay": self.api_base_delay,
            "enable_token_discovery": self.enable_token_discovery,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "providers": self.providers.to_dict(),
        }


__all__ = [
    "ProviderSettings",
    "AggregatorConfig",
]
