"""
Financial Record Repository.

============================================================
DATA LIFECYCLE
============================================================
- Mutability: IMMUTABLE (append-only, no update/delete)
- Duplicate key: (timestamp, address, symbol), optionally
  narrowed by network

============================================================
"""

from datetime import datetime
from typing import List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.holdings import FinancialRecordModel
from storage.repositories.base import BaseRepository


class FinancialRecordRepository(BaseRepository[FinancialRecordModel]):
    """Append-only access to financial_records."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, FinancialRecordModel, "FinancialRecordRepository")

    def add(self, record: FinancialRecordModel) -> FinancialRecordModel:
        return self._add(record)

    def add_many(self, records: List[FinancialRecordModel]) -> int:
        if not records:
            return 0
        return self._add_all(records)

    def exists_for(
        self,
        timestamp: datetime,
        address: str,
        symbol: str,
        network: Optional[str] = None,
    ) -> bool:
        criteria = [
            FinancialRecordModel.timestamp == timestamp,
            FinancialRecordModel.address == address,
            FinancialRecordModel.symbol == symbol,
        ]
        if network is not None:
            criteria.append(FinancialRecordModel.network == network)
        stmt = select(FinancialRecordModel.id).where(*criteria).limit(1)
        return self._execute_scalar(stmt) is not None

    def existing_keys_for(self, timestamp: datetime, address: str) -> Set[Tuple[str, str]]:
        """(network, symbol) pairs already stored for one address at one timestamp."""
        stmt = select(FinancialRecordModel.network, FinancialRecordModel.symbol).where(
            FinancialRecordModel.timestamp == timestamp,
            FinancialRecordModel.address == address,
        )
        try:
            return {(network, symbol) for network, symbol in self._session.execute(stmt).all()}
        except SQLAlchemyError as e:
            self._handle_db_error(e, "existing_keys")
            raise

    def list_for_timestamp(self, timestamp: datetime) -> List[FinancialRecordModel]:
        stmt = (
            select(FinancialRecordModel)
            .where(FinancialRecordModel.timestamp == timestamp)
            .order_by(FinancialRecordModel.id)
        )
        return self._execute_query(stmt)

    def list_for_run(self, run_id: str) -> List[FinancialRecordModel]:
        stmt = (
            select(FinancialRecordModel)
            .where(FinancialRecordModel.run_id == run_id)
            .order_by(FinancialRecordModel.id)
        )
        return self._execute_query(stmt)

    def count(self) -> int:
        return self._count()
