"""
Storage Repositories Package.

Data access layer for the holdings database. Every SQLAlchemy
error leaves this package as a RepositoryException subclass.
"""

from storage.repositories.base import BaseRepository
from storage.repositories.config import RunStateRepository, TokenRepository, WalletRepository
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RepositoryException,
)
from storage.repositories.records import FinancialRecordRepository


__all__ = [
    "BaseRepository",
    "FinancialRecordRepository",
    "RunStateRepository",
    "TokenRepository",
    "WalletRepository",
    "ConnectionError",
    "DuplicateRecordError",
    "IntegrityError",
    "QueryError",
    "RepositoryException",
]
