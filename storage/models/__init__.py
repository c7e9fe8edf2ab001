"""
Storage Models Package.

ORM models for the holdings database.

Tables:
- wallets
- tokens
- financial_records (append-only)
- run_states
"""

from storage.models.base import Base, TimestampMixin
from storage.models.holdings import (
    FinancialRecordModel,
    RunStateModel,
    TokenModel,
    WalletModel,
)


__all__ = [
    "Base",
    "TimestampMixin",
    "FinancialRecordModel",
    "RunStateModel",
    "TokenModel",
    "WalletModel",
]
