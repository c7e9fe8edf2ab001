"""
Aggregation - Config Source.

============================================================
RESPONSIBILITY
============================================================
Supplies the per-run snapshot of active wallets and tokens,
and stores the only state the engine owns:
- wallet last-sync timestamps
- run states (for the last-run query)

Implementations:
- InMemoryConfigSource (tests, YAML-configured deployments)
- DatabaseConfigSource (SQLAlchemy repositories)

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

import yaml
from sqlalchemy.orm import sessionmaker

from core.exceptions import FatalConfigError, InvalidConfigError, SinkError
from aggregation.models import LastRunInfo, RunState, RunSummary, Token, TriggerType, Wallet
from storage.database import DatabasePersistenceError, session_scope
from storage.models import RunStateModel, TokenModel, WalletModel
from storage.repositories import (
    RepositoryException,
    RunStateRepository,
    TokenRepository,
    WalletRepository,
)


logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ConfigSource(ABC):
    """Read-only wallet/token snapshot plus engine-owned run state."""

    @abstractmethod
    def load_wallets(self) -> List[Wallet]:
        """Active wallets, in configuration order."""
        pass

    @abstractmethod
    def load_tokens(self) -> List[Token]:
        """Active tokens, in configuration order."""
        pass

    @abstractmethod
    def update_last_sync(self, wallet_ids: Sequence[str], at: datetime) -> None:
        pass

    @abstractmethod
    def save_run_state(self, summary: RunSummary) -> None:
        pass

    @abstractmethod
    def get_last_run(self) -> Optional[LastRunInfo]:
        pass


# =============================================================
# IN-MEMORY
# =============================================================

class InMemoryConfigSource(ConfigSource):
    """
    Config source backed by plain lists.

    Usage:
        source = InMemoryConfigSource(
            wallets=[Wallet("w1", "Main", "ETH", "0xabc...")],
            tokens=[Token("USDT", "ETH", contract="0xdac1...", decimals=6)],
        )
    """

    def __init__(
        self,
        wallets: Optional[Sequence[Wallet]] = None,
        tokens: Optional[Sequence[Token]] = None,
    ) -> None:
        self._wallets = list(wallets or [])
        self._tokens = list(tokens or [])
        self._runs: List[LastRunInfo] = []

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "InMemoryConfigSource":
        """
        Load wallets and tokens from YAML.

        Layout:
            wallets:
              - {id: w1, name: Main, network: ETH, address: "0x..."}
            tokens:
              - {symbol: USDT, network: ETH, contract: "0x...", decimals: 6}
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InvalidConfigError(str(path), None, f"cannot load YAML: {e}") from e

        try:
            wallets = [
                Wallet(
                    id=str(w["id"]),
                    name=str(w.get("name", w["id"])),
                    network=str(w["network"]),
                    address=str(w["address"]),
                    active=bool(w.get("active", True)),
                    credentials_ref=w.get("credentials_ref"),
                )
                for w in data.get("wallets") or []
            ]
            tokens = [
                Token(
                    symbol=str(t["symbol"]),
                    network=str(t["network"]),
                    contract=t.get("contract"),
                    decimals=t.get("decimals"),
                    active=bool(t.get("active", True)),
                )
                for t in data.get("tokens") or []
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise InvalidConfigError(str(path), None, f"malformed wallets/tokens: {e}") from e

        logger.info(f"[config] Loaded {len(wallets)} wallets and {len(tokens)} tokens from {path}")
        return cls(wallets=wallets, tokens=tokens)

    @property
    def wallets(self) -> List[Wallet]:
        return list(self._wallets)

    def load_wallets(self) -> List[Wallet]:
        return [w for w in self._wallets if w.active]

    def load_tokens(self) -> List[Token]:
        return [t for t in self._tokens if t.active]

    def update_last_sync(self, wallet_ids: Sequence[str], at: datetime) -> None:
        ids = set(wallet_ids)
        self._wallets = [replace(w, last_sync=at) if w.id in ids else w for w in self._wallets]

    def save_run_state(self, summary: RunSummary) -> None:
        self._runs.append(LastRunInfo.from_summary(summary))

    def get_last_run(self) -> Optional[LastRunInfo]:
        return self._runs[-1] if self._runs else None


# =============================================================
# DATABASE
# =============================================================

class DatabaseConfigSource(ConfigSource):
    """
    Config source backed by the wallets / tokens / run_states tables.

    Load failures raise FatalConfigError; state writes raise SinkError.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def load_wallets(self) -> List[Wallet]:
        try:
            with session_scope(self._session_factory) as session:
                rows = WalletRepository(session).list_active()
                return [
                    Wallet(
                        id=row.id,
                        name=row.name,
                        network=row.network,
                        address=row.address,
                        active=row.active,
                        last_sync=_as_utc(row.last_sync_at),
                        credentials_ref=row.credentials_ref,
                    )
                    for row in rows
                ]
        except (RepositoryException, DatabasePersistenceError) as e:
            raise FatalConfigError(f"Cannot load wallets: {e}", cause=e) from e

    def load_tokens(self) -> List[Token]:
        try:
            with session_scope(self._session_factory) as session:
                rows = TokenRepository(session).list_active()
                return [
                    Token(
                        symbol=row.symbol,
                        network=row.network,
                        contract=row.contract,
                        decimals=row.decimals,
                        active=row.active,
                    )
                    for row in rows
                ]
        except (RepositoryException, DatabasePersistenceError) as e:
            raise FatalConfigError(f"Cannot load tokens: {e}", cause=e) from e

    def add_wallet(self, wallet: Wallet) -> None:
        with session_scope(self._session_factory) as session:
            WalletRepository(session).add(
                WalletModel(
                    id=wallet.id,
                    name=wallet.name,
                    network=wallet.network,
                    address=wallet.address,
                    credentials_ref=wallet.credentials_ref,
                    active=wallet.active,
                )
            )

    def add_token(self, token: Token) -> None:
        with session_scope(self._session_factory) as session:
            TokenRepository(session).add(
                TokenModel(
                    symbol=token.symbol,
                    network=token.network,
                    contract=token.contract,
                    decimals=token.decimals,
                    active=token.active,
                )
            )

    def update_last_sync(self, wallet_ids: Sequence[str], at: datetime) -> None:
        try:
            with session_scope(self._session_factory) as session:
                WalletRepository(session).update_last_sync(list(wallet_ids), at)
        except (RepositoryException, DatabasePersistenceError) as e:
            raise SinkError(f"Cannot update last sync: {e}", cause=e) from e

    def save_run_state(self, summary: RunSummary) -> None:
        try:
            with session_scope(self._session_factory) as session:
                RunStateRepository(session).save(
                    RunStateModel(
                        run_id=summary.run_id,
                        trigger=summary.trigger.value,
                        state=summary.state.value,
                        started_at=summary.started_at,
                        finished_at=summary.finished_at,
                        success=summary.success,
                        dry_run=summary.dry_run,
                        fetched_records=summary.fetched_records,
                        wallets_processed=summary.wallets_processed,
                        wallets_failed=summary.wallets_failed,
                        errors=list(summary.errors),
                    )
                )
        except (RepositoryException, DatabasePersistenceError) as e:
            raise SinkError(f"Cannot save run state: {e}", cause=e) from e

    def get_last_run(self) -> Optional[LastRunInfo]:
        with session_scope(self._session_factory) as session:
            row = RunStateRepository(session).latest()
            if row is None:
                return None
            return LastRunInfo(
                run_id=row.run_id,
                trigger=TriggerType(row.trigger),
                state=RunState(row.state),
                started_at=_as_utc(row.started_at),
                finished_at=_as_utc(row.finished_at),
                success=row.success,
                fetched_records=row.fetched_records,
                wallets_processed=row.wallets_processed,
                wallets_failed=row.wallets_failed,
                error_count=len(row.errors or []),
                dry_run=row.dry_run,
            )


__all__ = [
    "ConfigSource",
    "InMemoryConfigSource",
    "DatabaseConfigSource",
]
