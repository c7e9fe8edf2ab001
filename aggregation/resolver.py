"""
Aggregation - Balance Resolver.

============================================================
RESPONSIBILITY
============================================================
Turns one wallet plus the active token list into a complete
set of BalanceEntries:

1. Native balance (network's native chain, once)
2. Every configured token on the wallet's network, in order
3. Discovery merge (networks with account-wide enumeration)
4. Gap-fill: any configured token still missing gets zero

A failed chain never aborts the wallet; it degrades to a zero
entry plus a warning.

============================================================
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from balance_providers.models import BalanceQuery, BalanceReading, Network, QueryKind
from balance_providers.registry import ProviderRegistry
from aggregation.models import MAX_SYMBOL_LENGTH, BalanceEntry, Token, Wallet


logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Resolver output for one wallet."""
    wallet_id: str
    entries: List[BalanceEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def unresolved(self) -> List[BalanceEntry]:
        return [e for e in self.entries if not e.resolved]


def normalize_amount(reading: BalanceReading, decimals: int) -> Decimal:
    """Base units -> display units, exact in Decimal."""
    if not reading.in_base_units:
        return reading.amount
    return reading.amount.scaleb(-decimals)


def _contract_key(contract: Optional[str]) -> str:
    return (contract or "").lower()


class BalanceResolver:
    """
    Resolves every (wallet, token) balance through the registry's chains.

    Usage:
        resolver = BalanceResolver(registry)
        resolution = await resolver.resolve(wallet, tokens)
        for entry in resolution.entries:
            print(entry.symbol, entry.quantity)
    """

    def __init__(self, registry: ProviderRegistry, enable_discovery: bool = True) -> None:
        self._registry = registry
        self._enable_discovery = enable_discovery

    async def resolve(self, wallet: Wallet, tokens: Sequence[Token]) -> Resolution:
        """
        Resolve all balances for one wallet.

        Raises:
            UnsupportedNetworkError: wallet network is unknown
        """
        network = wallet.network_id
        address = wallet.address
        resolution = Resolution(wallet_id=wallet.id)

        configured = [t for t in tokens if t.active and t.on_network(network)]
        native_symbol = network.native_symbol

        # (symbol, contract) -> entry, in insertion order
        entries: Dict[tuple, BalanceEntry] = {}

        if native_symbol is not None:
            entry = await self._resolve_native(wallet, network, native_symbol, resolution)
            entries[entry.key] = entry

        for token in configured:
            if not token.contract and token.symbol == native_symbol:
                continue
            key = (token.symbol, _contract_key(token.contract))
            if key in entries:
                continue
            entries[key] = await self._resolve_token(wallet, network, token, resolution)

        if self._enable_discovery and self._registry.supports_discovery(network):
            await self._merge_discovered(wallet, network, configured, entries, resolution)

        # Gap-fill anything a chain never produced an entry for
        for token in configured:
            if not token.contract and token.symbol == native_symbol:
                continue
            key = (token.symbol, _contract_key(token.contract))
            if key not in entries:
                entries[key] = BalanceEntry.zero(
                    wallet.id, network, token.symbol, token.effective_decimals(network), token.contract
                )

        resolution.entries = list(entries.values())
        logger.info(
            f"[resolver] wallet={wallet.id} network={network.value} address={address} "
            f"entries={len(resolution.entries)} unresolved={len(resolution.unresolved)}"
        )
        return resolution

    def _query(self, wallet: Wallet, network: Network, kind: QueryKind, token: Optional[Token] = None) -> BalanceQuery:
        return BalanceQuery(
            network=network,
            address=wallet.address,
            kind=kind,
            contract=token.contract if token else None,
            symbol=token.symbol if token else network.native_symbol,
            credentials_ref=wallet.credentials_ref,
        )

    async def _resolve_native(
        self,
        wallet: Wallet,
        network: Network,
        symbol: str,
        resolution: Resolution,
    ) -> BalanceEntry:
        chain = self._registry.chain_for(network, QueryKind.NATIVE)
        result = await chain.execute(self._query(wallet, network, QueryKind.NATIVE))
        decimals = network.native_decimals

        if not result.succeeded:
            resolution.warnings.append(f"wallet {wallet.id}: {result.failure_summary()}")
            return BalanceEntry.zero(wallet.id, network, symbol, decimals)
        return self._entry_from(wallet, network, symbol, None, decimals, result.value, result.source)

    async def _resolve_token(
        self,
        wallet: Wallet,
        network: Network,
        token: Token,
        resolution: Resolution,
    ) -> BalanceEntry:
        chain = self._registry.chain_for(network, QueryKind.TOKEN)
        result = await chain.execute(self._query(wallet, network, QueryKind.TOKEN, token))
        decimals = token.effective_decimals(network)

        if not result.succeeded:
            resolution.warnings.append(f"wallet {wallet.id} token {token.symbol}: {result.failure_summary()}")
            return BalanceEntry.zero(wallet.id, network, token.symbol, decimals, token.contract)
        return self._entry_from(wallet, network, token.symbol, token.contract, decimals, result.value, result.source)

    def _entry_from(
        self,
        wallet: Wallet,
        network: Network,
        symbol: str,
        contract: Optional[str],
        decimals: int,
        reading: Optional[BalanceReading],
        source: Optional[str],
    ) -> BalanceEntry:
        # EMPTY outcome: provider confirmed there is nothing here
        if reading is None:
            return BalanceEntry(
                wallet_id=wallet.id,
                network=network,
                symbol=symbol,
                raw_amount=Decimal(0),
                quantity=Decimal(0),
                decimals=decimals,
                contract=contract,
                source=source,
            )

        if reading.decimals is not None:
            decimals = reading.decimals
        return BalanceEntry(
            wallet_id=wallet.id,
            network=network,
            symbol=symbol,
            raw_amount=reading.amount,
            quantity=normalize_amount(reading, decimals),
            decimals=decimals,
            contract=contract,
            source=source,
        )

    async def _merge_discovered(
        self,
        wallet: Wallet,
        network: Network,
        configured: Sequence[Token],
        entries: Dict[tuple, BalanceEntry],
        resolution: Resolution,
    ) -> None:
        chain = self._registry.chain_for(network, QueryKind.DISCOVERY)
        result = await chain.execute(self._query(wallet, network, QueryKind.DISCOVERY))
        if not result.succeeded:
            resolution.warnings.append(f"wallet {wallet.id} discovery: {result.failure_summary()}")
            return

        readings: List[BalanceReading] = result.value or []
        by_contract = {_contract_key(t.contract): t for t in configured if t.contract}
        by_symbol = {t.symbol: t for t in configured if not t.contract}

        added = 0
        for reading in readings:
            token = None
            if reading.contract:
                token = by_contract.get(_contract_key(reading.contract))
            if token is None and reading.symbol:
                token = by_symbol.get(reading.symbol.upper())

            if token is not None:
                key = (token.symbol, _contract_key(token.contract))
                existing = entries.get(key)
                if existing is None or not existing.resolved:
                    entries[key] = self._entry_from(
                        wallet, network, token.symbol, token.contract,
                        token.effective_decimals(network), reading, result.source,
                    )
                continue

            if not reading.symbol:
                logger.debug(
                    f"[resolver] wallet={wallet.id} skipping unnamed holding contract={reading.contract}"
                )
                continue
            if reading.is_zero:
                continue
            if len(reading.symbol) > MAX_SYMBOL_LENGTH:
                # Spam airdrops carry URL-like symbols that would not fit the record column
                logger.debug(
                    f"[resolver] wallet={wallet.id} skipping holding with oversized symbol "
                    f"contract={reading.contract} length={len(reading.symbol)}"
                )
                continue

            symbol = reading.symbol.upper()
            key = (symbol, _contract_key(reading.contract))
            if key in entries:
                continue

            decimals = 18 if reading.contract else network.native_decimals
            entry = self._entry_from(wallet, network, symbol, reading.contract, decimals, reading, result.source)
            entry.discovered = True
            entries[key] = entry
            added += 1

        if added:
            logger.info(f"[resolver] wallet={wallet.id} discovered {added} unconfigured token(s)")


__all__ = [
    "Resolution",
    "BalanceResolver",
    "normalize_amount",
]
