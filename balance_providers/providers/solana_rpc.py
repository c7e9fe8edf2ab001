"""
Solana RPC Provider.

Native balance: getBalance(owner) -> lamports
Token balance:  getTokenAccountsByOwner(owner, {mint}) summed over accounts
Discovery:      getTokenAccountsByOwner(owner, {programId}) for the SPL
                Token and Token-2022 programs

An owner without a token account for a mint is a confirmed zero.
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Any, Optional

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.exceptions import InvalidRequestError
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)


DEFAULT_SOLANA_RPC_URL = "https://api.mainnet-beta.solana.com"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"


class SolanaRpcProvider(BaseBalanceProvider):
    """Solana JSON-RPC node."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        name: str = "solana_rpc",
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        self._name = name
        self._rpc_url = rpc_url or DEFAULT_SOLANA_RPC_URL

    @property
    def name(self) -> str:
        return self._name

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="Solana JSON-RPC",
            supported_networks=[Network.SOL],
            supported_kinds=[QueryKind.NATIVE, QueryKind.TOKEN, QueryKind.DISCOVERY],
            tier=ProviderTier.PUBLIC_RPC,
            base_url=self._rpc_url,
            documentation_url="https://solana.com/docs/rpc",
            tags=["solana", "rpc"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return "getBalance" if query.kind == QueryKind.NATIVE else "getTokenAccountsByOwner"

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        if query.kind == QueryKind.NATIVE:
            return await self._rpc(self._rpc_url, "getBalance", [query.address])

        options = {"encoding": "jsonParsed"}

        if query.kind == QueryKind.TOKEN:
            if not query.contract:
                raise InvalidRequestError(
                    message=f"Token {query.symbol} has no mint address",
                    provider_name=self.name,
                    network=query.network.value,
                )
            result = await self._rpc(
                self._rpc_url,
                "getTokenAccountsByOwner",
                [query.address, {"mint": query.contract}, options],
            )
            return result.get("value", [])

        accounts = []
        for program_id in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
            result = await self._rpc(
                self._rpc_url,
                "getTokenAccountsByOwner",
                [query.address, {"programId": program_id}, options],
            )
            accounts.extend(result.get("value", []))
        return accounts

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        if query.kind == QueryKind.NATIVE:
            return BalanceReading(amount=to_decimal(raw_data["value"]), symbol="SOL")

        # mint -> [raw amount, decimals]
        totals: "OrderedDict[str, list]" = OrderedDict()
        for account in raw_data:
            info = account["account"]["data"]["parsed"]["info"]
            token_amount = info["tokenAmount"]
            entry = totals.setdefault(info["mint"], [Decimal(0), int(token_amount["decimals"])])
            entry[0] += to_decimal(token_amount["amount"])

        if query.kind == QueryKind.TOKEN:
            if not totals:
                return None
            amount, decimals = totals.get(query.contract, [Decimal(0), None])
            return BalanceReading(
                amount=amount,
                decimals=decimals,
                symbol=query.symbol,
                contract=query.contract,
            )

        return [
            BalanceReading(amount=amount, decimals=decimals, contract=mint)
            for mint, (amount, decimals) in totals.items()
            if amount > 0
        ]
