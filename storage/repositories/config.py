"""
Configuration Repositories.

============================================================
REPOSITORIES
============================================================
- WalletRepository: active wallets, last-sync marker
- TokenRepository: active tokens
- RunStateRepository: one row per run, latest lookup

============================================================
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.holdings import RunStateModel, TokenModel, WalletModel
from storage.repositories.base import BaseRepository


class WalletRepository(BaseRepository[WalletModel]):
    """Wallet configuration rows."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, WalletModel, "WalletRepository")

    def add(self, wallet: WalletModel) -> WalletModel:
        return self._add(wallet)

    def get(self, wallet_id: str) -> Optional[WalletModel]:
        return self._execute_scalar(select(WalletModel).where(WalletModel.id == wallet_id))

    def list_active(self) -> List[WalletModel]:
        stmt = select(WalletModel).where(WalletModel.active.is_(True)).order_by(WalletModel.id)
        return self._execute_query(stmt)

    def update_last_sync(self, wallet_ids: List[str], at: datetime) -> int:
        """Set last_sync_at for the given wallets. Returns rows updated."""
        if not wallet_ids:
            return 0
        try:
            result = self._session.execute(
                update(WalletModel)
                .where(WalletModel.id.in_(wallet_ids))
                .values(last_sync_at=at)
            )
            self._session.flush()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "update_last_sync", {"wallets": len(wallet_ids)})
            raise


class TokenRepository(BaseRepository[TokenModel]):
    """Token configuration rows."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, TokenModel, "TokenRepository")

    def add(self, token: TokenModel) -> TokenModel:
        return self._add(token)

    def list_active(self) -> List[TokenModel]:
        # Configuration order is insertion order
        stmt = select(TokenModel).where(TokenModel.active.is_(True)).order_by(TokenModel.id)
        return self._execute_query(stmt)


class RunStateRepository(BaseRepository[RunStateModel]):
    """Persisted run statuses."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, RunStateModel, "RunStateRepository")

    def save(self, state: RunStateModel) -> RunStateModel:
        return self._add(state)

    def latest(self) -> Optional[RunStateModel]:
        stmt = select(RunStateModel).order_by(RunStateModel.started_at.desc()).limit(1)
        return self._execute_scalar(stmt)

    def count(self) -> int:
        return self._count()
