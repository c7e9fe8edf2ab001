"""
Holdings ORM Models.

============================================================
MODELS
============================================================
- WalletModel: configured wallets / exchange accounts
- TokenModel: configured tokens per network
- FinancialRecordModel: append-only snapshot records
- RunStateModel: one row per orchestrator run

============================================================
DATA LIFECYCLE
============================================================
- wallets / tokens: edited by operators; the engine only
  writes wallets.last_sync_at
- financial_records: IMMUTABLE (append-only)
- run_states: written once per run, when it reaches DONE

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


# Wide enough for 18-decimal token quantities
AMOUNT = Numeric(precision=48, scale=18)


class WalletModel(Base, TimestampMixin):
    """A wallet address (or exchange credentials reference) to aggregate."""

    __tablename__ = "wallets"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Stable wallet identifier"
    )

    name: Mapped[str] = mapped_column(String(128), nullable=False)

    network: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Network identifier (ETH, BTC, SOL, KUCOIN...)"
    )

    address: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="On-chain address or exchange credentials reference"
    )

    credentials_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    last_sync_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set by the engine after each successful run"
    )

    __table_args__ = (
        Index("ix_wallets_active", "active"),
    )

    def __repr__(self) -> str:
        return f"<WalletModel(id={self.id}, network={self.network})>"


class TokenModel(Base, TimestampMixin):
    """A token tracked on one network."""

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    symbol: Mapped[str] = mapped_column(String(32), nullable=False)

    network: Mapped[str] = mapped_column(String(32), nullable=False)

    contract: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Contract, mint, jetton master or issuer address"
    )

    decimals: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_tokens_network_active", "network", "active"),
    )

    def __repr__(self) -> str:
        return f"<TokenModel(symbol={self.symbol}, network={self.network})>"


class FinancialRecordModel(Base):
    """Append-only snapshot of one holding at one run timestamp."""

    __tablename__ = "financial_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Run timestamp shared by every record of the run"
    )

    record_type: Mapped[str] = mapped_column(String(32), nullable=False, default="snapshot")

    network: Mapped[str] = mapped_column(String(32), nullable=False)

    symbol: Mapped[str] = mapped_column(String(32), nullable=False)

    wallet_id: Mapped[str] = mapped_column(String(64), nullable=False)

    address: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    price_usd: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    value_usd: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False)

    source: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    run_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_financial_records_ts_address_symbol", "timestamp", "address", "symbol"),
        Index("ix_financial_records_run", "run_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<FinancialRecordModel(ts={self.timestamp}, address={self.address}, "
            f"symbol={self.symbol}, qty={self.quantity})>"
        )


class RunStateModel(Base):
    """Persisted status of one orchestrator run."""

    __tablename__ = "run_states"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    trigger: Mapped[str] = mapped_column(String(16), nullable=False)

    state: Mapped[str] = mapped_column(String(32), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False)

    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    fetched_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    wallets_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    wallets_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    errors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("ix_run_states_started_at", "started_at"),
    )
