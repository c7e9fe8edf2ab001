"""
Balance Provider Models - Networks, queries, readings and provider metadata.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from core.exceptions import UnsupportedNetworkError


class ProviderStatus(Enum):
    """Health status of a balance provider."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class ProviderTier(Enum):
    """Cost/reliability tier; selects the retry base delay."""
    PUBLIC_RPC = "public_rpc"
    ENRICHMENT = "enrichment"
    EXCHANGE = "exchange"


class QueryKind(Enum):
    """Logical operation requested from a provider."""
    NATIVE = "native"
    TOKEN = "token"
    DISCOVERY = "discovery"


class Network(Enum):
    """Supported networks (plus the exchange account)."""
    ETH = "ETH"
    BSC = "BSC"
    POLYGON = "POLYGON"
    ARBITRUM = "ARBITRUM"
    OPTIMISM = "OPTIMISM"
    BASE = "BASE"
    AVALANCHE = "AVALANCHE"
    BTC = "BTC"
    SOL = "SOL"
    TRX = "TRX"
    XRP = "XRP"
    TON = "TON"
    KUCOIN = "KUCOIN"

    @classmethod
    def parse(cls, value: str) -> "Network":
        """Parse a configured network identifier (case-insensitive, aliases allowed)."""
        key = (value or "").strip().upper()
        if key in cls.__members__:
            return cls[key]
        alias = _NETWORK_ALIASES.get(key)
        if alias is None:
            raise UnsupportedNetworkError(value)
        return alias

    @property
    def is_evm(self) -> bool:
        return self in _EVM_CHAIN_IDS

    @property
    def is_exchange(self) -> bool:
        return self is Network.KUCOIN

    @property
    def chain_id(self) -> Optional[int]:
        return _EVM_CHAIN_IDS.get(self)

    @property
    def native_symbol(self) -> Optional[str]:
        return _NATIVE_SYMBOLS.get(self)

    @property
    def native_decimals(self) -> int:
        if self.is_evm:
            return 18
        return _NATIVE_DECIMALS.get(self, 0)


_EVM_CHAIN_IDS = {
    Network.ETH: 1,
    Network.BSC: 56,
    Network.POLYGON: 137,
    Network.ARBITRUM: 42161,
    Network.OPTIMISM: 10,
    Network.BASE: 8453,
    Network.AVALANCHE: 43114,
}

_NATIVE_SYMBOLS = {
    Network.ETH: "ETH",
    Network.BSC: "BNB",
    Network.POLYGON: "POL",
    Network.ARBITRUM: "ETH",
    Network.OPTIMISM: "ETH",
    Network.BASE: "ETH",
    Network.AVALANCHE: "AVAX",
    Network.BTC: "BTC",
    Network.SOL: "SOL",
    Network.TRX: "TRX",
    Network.XRP: "XRP",
    Network.TON: "TON",
}

_NATIVE_DECIMALS = {
    Network.BTC: 8,
    Network.SOL: 9,
    Network.TON: 9,
    Network.TRX: 6,
    Network.XRP: 6,
}

_NETWORK_ALIASES = {
    "ETHEREUM": Network.ETH,
    "ERC20": Network.ETH,
    "BNB": Network.BSC,
    "BEP20": Network.BSC,
    "MATIC": Network.POLYGON,
    "ARB": Network.ARBITRUM,
    "OP": Network.OPTIMISM,
    "AVAX": Network.AVALANCHE,
    "BITCOIN": Network.BTC,
    "SOLANA": Network.SOL,
    "TRON": Network.TRX,
    "TRC20": Network.TRX,
    "RIPPLE": Network.XRP,
    "XRPL": Network.XRP,
    "TONCOIN": Network.TON,
    "KUCOIN": Network.KUCOIN,
    "EXCHANGE": Network.KUCOIN,
}


@dataclass(frozen=True)
class BalanceQuery:
    """Request descriptor for a single provider call."""
    network: Network
    address: str
    kind: QueryKind = QueryKind.NATIVE
    contract: Optional[str] = None
    symbol: Optional[str] = None
    credentials_ref: Optional[str] = None

    @property
    def target(self) -> str:
        """Short identifier used in log lines."""
        if self.contract:
            return f"{self.address}@{self.contract}"
        return self.address


@dataclass(frozen=True)
class BalanceReading:
    """
    One balance as reported by a provider.

    amount is in base units (wei, satoshi, lamports, drops...) when
    in_base_units is True, otherwise it is already a decimal quantity.
    """
    amount: Decimal
    in_base_units: bool = True
    decimals: Optional[int] = None
    symbol: Optional[str] = None
    contract: Optional[str] = None

    @property
    def is_zero(self) -> bool:
        return self.amount == 0


@dataclass
class ProviderHealth:
    """Health status of a balance provider."""
    status: ProviderStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    requests_total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "requests_total": self.requests_total,
        }


@dataclass
class ProviderMetadata:
    """Metadata about a balance provider."""
    name: str
    display_name: str
    supported_networks: list[Network]
    supported_kinds: list[QueryKind]
    tier: ProviderTier = ProviderTier.PUBLIC_RPC
    requires_api_key: bool = False
    is_free_tier: bool = True
    base_url: str = ""
    documentation_url: str = ""
    tags: list[str] = field(default_factory=list)

    def supports(self, network: Network, kind: QueryKind) -> bool:
        return network in self.supported_networks and kind in self.supported_kinds

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "supported_networks": [n.value for n in self.supported_networks],
            "supported_kinds": [k.value for k in self.supported_kinds],
            "tier": self.tier.value,
            "requires_api_key": self.requires_api_key,
            "is_free_tier": self.is_free_tier,
            "base_url": self.base_url,
            "documentation_url": self.documentation_url,
            "tags": self.tags,
        }


@dataclass
class ProviderIncident:
    """Record of a failed provider call."""
    provider_name: str
    incident_type: str
    timestamp: datetime
    error_message: str
    network: Optional[str] = None
    target: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_name": self.provider_name,
            "incident_type": self.incident_type,
            "timestamp": self.timestamp.isoformat(),
            "error_message": self.error_message,
            "network": self.network,
            "target": self.target,
        }


@dataclass
class CacheEntry:
    """Cached raw provider response."""
    data: Any
    created_at: datetime
    expires_at: datetime
    hits: int = 0

    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expires_at

    def age_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.created_at).total_seconds()
