"""
Aggregation - Domain Model.

============================================================
RESPONSIBILITY
============================================================
Value types shared by the resolver, the orchestrator, the
config sources and the record sinks.

- Wallet / Token: configuration snapshot (read-only per run)
- BalanceEntry: one resolved (wallet, token) balance, transient
- FinancialRecord: immutable output row
- RunSummary / LastRunInfo: run reporting

============================================================
INVARIANTS
============================================================
- Token decimals are never negative
- FinancialRecord.value_usd == quantity * price_usd, computed
  in Decimal at construction and never assigned
- RunSummary.success == not fatal and at least one wallet
  was fully processed

============================================================
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from core.exceptions import InvalidConfigError, UnsupportedNetworkError
from balance_providers.models import Network


# Width of the symbol column in financial_records
MAX_SYMBOL_LENGTH = 32


# ============================================================
# ENUMS
# ============================================================

class TriggerType(Enum):
    """What started a run."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class RunState(Enum):
    """Orchestrator state machine."""
    INIT = "init"
    LOADING_CONFIG = "loading_config"
    FETCHING_PRICES = "fetching_prices"
    PROCESSING_WALLETS = "processing_wallets"
    FINALIZING = "finalizing"
    DONE = "done"


class RecordStatus(Enum):
    """Quality of a produced record."""
    OK = "ok"
    # Balance or price could not be resolved; zero was used instead
    DEGRADED = "degraded"


# ============================================================
# CONFIGURATION SNAPSHOT
# ============================================================

@dataclass(frozen=True)
class Wallet:
    """
    A configured wallet or exchange account.

    For the exchange network, address holds the credentials
    reference unless credentials_ref is set.
    """
    id: str
    name: str
    network: str
    address: str
    active: bool = True
    last_sync: Optional[datetime] = None
    credentials_ref: Optional[str] = None

    @property
    def network_id(self) -> Network:
        """Parsed network; raises UnsupportedNetworkError."""
        try:
            return Network.parse(self.network)
        except UnsupportedNetworkError as e:
            raise UnsupportedNetworkError(self.network, wallet_id=self.id) from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "network": self.network,
            "address": self.address,
            "active": self.active,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
        }


@dataclass(frozen=True)
class Token:
    """A configured token on one network (symbol is unique per network only)."""
    symbol: str
    network: str
    contract: Optional[str] = None
    decimals: Optional[int] = None
    active: bool = True

    def __post_init__(self) -> None:
        if self.decimals is not None and self.decimals < 0:
            raise InvalidConfigError(
                key=f"tokens.{self.network}.{self.symbol}.decimals",
                value=self.decimals,
                reason="decimal precision must be a non-negative integer",
            )
        object.__setattr__(self, "symbol", self.symbol.strip().upper())

    def on_network(self, network: Network) -> bool:
        try:
            return Network.parse(self.network) == network
        except UnsupportedNetworkError:
            return False

    def effective_decimals(self, network: Network) -> int:
        """Explicit precision, else 18 for contract tokens, else native precision."""
        if self.decimals is not None:
            return self.decimals
        if self.contract:
            return 18
        return network.native_decimals


# ============================================================
# RESOLUTION
# ============================================================

@dataclass
class BalanceEntry:
    """One (wallet, token) balance produced by the resolver."""
    wallet_id: str
    network: Network
    symbol: str
    raw_amount: Decimal
    quantity: Decimal
    decimals: int
    contract: Optional[str] = None
    source: Optional[str] = None
    resolved: bool = True
    discovered: bool = False

    @classmethod
    def zero(
        cls,
        wallet_id: str,
        network: Network,
        symbol: str,
        decimals: int,
        contract: Optional[str] = None,
    ) -> "BalanceEntry":
        """Gap-fill entry for a token no provider could answer for."""
        return cls(
            wallet_id=wallet_id,
            network=network,
            symbol=symbol,
            raw_amount=Decimal(0),
            quantity=Decimal(0),
            decimals=decimals,
            contract=contract,
            resolved=False,
        )

    @property
    def key(self) -> tuple:
        return (self.symbol, (self.contract or "").lower())


# ============================================================
# OUTPUT
# ============================================================

@dataclass(frozen=True)
class FinancialRecord:
    """Immutable point-in-time holding record."""
    timestamp: datetime
    network: str
    symbol: str
    wallet_id: str
    address: str
    quantity: Decimal
    price_usd: Decimal
    status: RecordStatus = RecordStatus.OK
    record_type: str = "snapshot"
    source: Optional[str] = None
    run_id: Optional[str] = None
    value_usd: Decimal = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "value_usd", self.quantity * self.price_usd)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "record_type": self.record_type,
            "network": self.network,
            "symbol": self.symbol,
            "wallet_id": self.wallet_id,
            "address": self.address,
            "quantity": str(self.quantity),
            "price_usd": str(self.price_usd),
            "value_usd": str(self.value_usd),
            "status": self.status.value,
            "source": self.source,
            "run_id": self.run_id,
        }


@dataclass
class RunSummary:
    """Result of one orchestrator run. Built fresh every run."""
    trigger: TriggerType
    started_at: datetime
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    finished_at: Optional[datetime] = None
    state: RunState = RunState.INIT
    dry_run: bool = False

    fetched_records: int = 0
    duplicates_skipped: int = 0
    total_value_usd: Decimal = Decimal(0)

    wallets_total: int = 0
    wallets_processed: int = 0
    wallets_failed: int = 0
    wallets_empty: int = 0
    wallets_skipped: int = 0

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    fatal: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """True when the run ran and at least one wallet was fully processed."""
        return not self.fatal and self.wallets_processed >= 1

    @property
    def degraded(self) -> bool:
        return bool(self.errors or self.warnings or self.cancelled)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger.value,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "dry_run": self.dry_run,
            "success": self.success,
            "fatal": self.fatal,
            "cancelled": self.cancelled,
            "fetched_records": self.fetched_records,
            "duplicates_skipped": self.duplicates_skipped,
            "total_value_usd": str(self.total_value_usd),
            "wallets": {
                "total": self.wallets_total,
                "processed": self.wallets_processed,
                "failed": self.wallets_failed,
                "empty": self.wallets_empty,
                "skipped": self.wallets_skipped,
            },
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class LastRunInfo:
    """Timestamp and status of the most recent run."""
    run_id: str
    trigger: TriggerType
    state: RunState
    started_at: datetime
    finished_at: Optional[datetime]
    success: bool
    fetched_records: int = 0
    wallets_processed: int = 0
    wallets_failed: int = 0
    error_count: int = 0
    dry_run: bool = False

    @classmethod
    def from_summary(cls, summary: RunSummary) -> "LastRunInfo":
        return cls(
            run_id=summary.run_id,
            trigger=summary.trigger,
            state=summary.state,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            success=summary.success,
            fetched_records=summary.fetched_records,
            wallets_processed=summary.wallets_processed,
            wallets_failed=summary.wallets_failed,
            error_count=len(summary.errors),
            dry_run=summary.dry_run,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger.value,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "success": self.success,
            "fetched_records": self.fetched_records,
            "wallets_processed": self.wallets_processed,
            "wallets_failed": self.wallets_failed,
            "error_count": self.error_count,
            "dry_run": self.dry_run,
        }


__all__ = [
    "MAX_SYMBOL_LENGTH",
    "TriggerType",
    "RunState",
    "RecordStatus",
    "Wallet",
    "Token",
    "BalanceEntry",
    "FinancialRecord",
    "RunSummary",
    "LastRunInfo",
]
