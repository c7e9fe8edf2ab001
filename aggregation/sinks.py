"""
Aggregation - Record Sinks.

============================================================
RESPONSIBILITY
============================================================
Append-only destinations for FinancialRecords.

- write_batch(records): one call per wallet, all or nothing
- exists(timestamp, address, symbol[, network]): read-only
  duplicate check for a single record
- existing_keys(timestamp, address): every (network, symbol)
  already stored for one wallet, one lookup per wallet when
  duplicate protection is on

No update or delete path exists.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import sessionmaker

from core.exceptions import SinkError
from aggregation.models import FinancialRecord
from storage.database import DatabasePersistenceError, session_scope
from storage.models import FinancialRecordModel
from storage.repositories import FinancialRecordRepository, RepositoryException


logger = logging.getLogger(__name__)


class RecordSink(ABC):
    """Append-only record destination."""

    @abstractmethod
    def write_batch(self, records: Sequence[FinancialRecord]) -> int:
        """
        Append records. Returns the number written.

        Raises:
            SinkError if the batch could not be stored
        """
        pass

    @abstractmethod
    def exists(
        self,
        timestamp: datetime,
        address: str,
        symbol: str,
        network: Optional[str] = None,
    ) -> bool:
        pass

    @abstractmethod
    def existing_keys(self, timestamp: datetime, address: str) -> Set[Tuple[str, str]]:
        """(network, symbol) pairs already recorded for address at timestamp."""
        pass


class InMemoryRecordSink(RecordSink):
    """Keeps records in a list; used by tests and dry experiments."""

    def __init__(self) -> None:
        self._records: List[FinancialRecord] = []
        self.batches = 0

    @property
    def records(self) -> List[FinancialRecord]:
        return list(self._records)

    def write_batch(self, records: Sequence[FinancialRecord]) -> int:
        self._records.extend(records)
        self.batches += 1
        return len(records)

    def exists(
        self,
        timestamp: datetime,
        address: str,
        symbol: str,
        network: Optional[str] = None,
    ) -> bool:
        return any(
            r.timestamp == timestamp
            and r.address == address
            and r.symbol == symbol
            and (network is None or r.network == network)
            for r in self._records
        )

    def existing_keys(self, timestamp: datetime, address: str) -> Set[Tuple[str, str]]:
        return {
            (r.network, r.symbol)
            for r in self._records
            if r.timestamp == timestamp and r.address == address
        }


class DatabaseRecordSink(RecordSink):
    """Writes records to financial_records, one transaction per batch."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def write_batch(self, records: Sequence[FinancialRecord]) -> int:
        if not records:
            return 0
        rows = [
            FinancialRecordModel(
                timestamp=r.timestamp,
                record_type=r.record_type,
                network=r.network,
                symbol=r.symbol,
                wallet_id=r.wallet_id,
                address=r.address,
                quantity=r.quantity,
                price_usd=r.price_usd,
                value_usd=r.value_usd,
                status=r.status.value,
                source=r.source,
                run_id=r.run_id,
            )
            for r in records
        ]
        try:
            with session_scope(self._session_factory) as session:
                written = FinancialRecordRepository(session).add_many(rows)
        except (RepositoryException, DatabasePersistenceError) as e:
            raise SinkError(
                f"Failed to write {len(rows)} records: {e}",
                context={"wallet_id": records[0].wallet_id},
                cause=e,
            ) from e
        logger.debug(f"[sink] Wrote {written} records for wallet {records[0].wallet_id}")
        return written

    def exists(
        self,
        timestamp: datetime,
        address: str,
        symbol: str,
        network: Optional[str] = None,
    ) -> bool:
        try:
            with session_scope(self._session_factory) as session:
                return FinancialRecordRepository(session).exists_for(timestamp, address, symbol, network)
        except (RepositoryException, DatabasePersistenceError) as e:
            raise SinkError(f"Duplicate check failed: {e}", cause=e) from e

    def existing_keys(self, timestamp: datetime, address: str) -> Set[Tuple[str, str]]:
        try:
            with session_scope(self._session_factory) as session:
                return FinancialRecordRepository(session).existing_keys_for(timestamp, address)
        except (RepositoryException, DatabasePersistenceError) as e:
            raise SinkError(
                f"Duplicate check failed: {e}",
                context={"address": address},
                cause=e,
            ) from e


__all__ = [
    "RecordSink",
    "InMemoryRecordSink",
    "DatabaseRecordSink",
]
