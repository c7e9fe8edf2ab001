"""
Alchemy Provider - Enrichment API for EVM networks.

Native balance: eth_getBalance
Token balance:  alchemy_getTokenBalances(address, [contract])
Discovery:      alchemy_getTokenBalances(address, "erc20") plus
                alchemy_getTokenMetadata for symbol/decimals

Requires an API key. Tier: ENRICHMENT (tried after free RPC).
"""

import logging
import os
from typing import Any, Optional

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.exceptions import InvalidRequestError, NetworkNotSupportedError, ParseError
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)
from balance_providers.providers.evm_rpc import validate_evm_address


logger = logging.getLogger(__name__)


class AlchemyProvider(BaseBalanceProvider):
    """Alchemy enhanced JSON-RPC."""

    NETWORK_SUBDOMAINS = {
        Network.ETH: "eth-mainnet",
        Network.POLYGON: "polygon-mainnet",
        Network.ARBITRUM: "arb-mainnet",
        Network.OPTIMISM: "opt-mainnet",
        Network.BASE: "base-mainnet",
        Network.BSC: "bnb-mainnet",
        Network.AVALANCHE: "avax-mainnet",
    }

    MAX_DISCOVERED_TOKENS = 50

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
        cache_ttl: int = 60,
    ) -> None:
        super().__init__(timeout=timeout, cache_ttl=cache_ttl)
        self._api_key = api_key or os.environ.get("ALCHEMY_API_KEY", "")

    @property
    def name(self) -> str:
        return "alchemy"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="Alchemy",
            supported_networks=list(self.NETWORK_SUBDOMAINS.keys()),
            supported_kinds=[QueryKind.NATIVE, QueryKind.TOKEN, QueryKind.DISCOVERY],
            tier=ProviderTier.ENRICHMENT,
            requires_api_key=True,
            is_free_tier=False,
            base_url="https://www.alchemy.com",
            documentation_url="https://docs.alchemy.com/reference/alchemy-gettokenbalances",
            tags=["evm", "enrichment"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return {
            QueryKind.NATIVE: "eth_getBalance",
            QueryKind.TOKEN: "alchemy_getTokenBalances",
            QueryKind.DISCOVERY: "alchemy_getTokenBalances:erc20",
        }[query.kind]

    def _url_for(self, network: Network) -> str:
        subdomain = self.NETWORK_SUBDOMAINS.get(network)
        if subdomain is None:
            raise NetworkNotSupportedError(
                message=f"Network {network.value} not supported",
                provider_name=self.name,
                network=network.value,
            )
        return f"https://{subdomain}.g.alchemy.com/v2/{self._api_key}"

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        url = self._url_for(query.network)
        address = validate_evm_address(query.address, self.name)

        if query.kind == QueryKind.NATIVE:
            return await self._rpc(url, "eth_getBalance", [address, "latest"])

        if query.kind == QueryKind.TOKEN:
            if not query.contract:
                raise InvalidRequestError(
                    message=f"Token {query.symbol} has no contract address",
                    provider_name=self.name,
                    network=query.network.value,
                )
            contract = validate_evm_address(query.contract, self.name, "contract")
            return await self._rpc(url, "alchemy_getTokenBalances", [address, [contract]])

        result = await self._rpc(url, "alchemy_getTokenBalances", [address, "erc20"])
        held = [
            item for item in result.get("tokenBalances", [])
            if not item.get("error") and to_decimal(item.get("tokenBalance") or "0x0") > 0
        ]
        if len(held) > self.MAX_DISCOVERED_TOKENS:
            logger.warning(
                f"[{self.name}] {query.address} holds {len(held)} tokens, "
                f"keeping first {self.MAX_DISCOVERED_TOKENS}"
            )
            held = held[:self.MAX_DISCOVERED_TOKENS]

        tokens = []
        for item in held:
            meta = await self._rpc(url, "alchemy_getTokenMetadata", [item["contractAddress"]])
            tokens.append({**item, "metadata": meta or {}})
        return tokens

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        if query.kind == QueryKind.NATIVE:
            return BalanceReading(amount=to_decimal(raw_data), symbol=query.symbol)

        if query.kind == QueryKind.TOKEN:
            balances = raw_data.get("tokenBalances", [])
            if not balances:
                raise ParseError(
                    message="Empty tokenBalances for explicit contract",
                    provider_name=self.name,
                    raw_data=raw_data,
                )
            item = balances[0]
            if item.get("error"):
                raise InvalidRequestError(
                    message=f"Token lookup failed: {item['error']}",
                    provider_name=self.name,
                    network=query.network.value,
                )
            return BalanceReading(
                amount=to_decimal(item.get("tokenBalance") or "0x0"),
                symbol=query.symbol,
                contract=query.contract,
            )

        readings = []
        for item in raw_data:
            meta = item.get("metadata", {})
            symbol = meta.get("symbol")
            if not symbol:
                continue
            decimals = meta.get("decimals")
            readings.append(BalanceReading(
                amount=to_decimal(item["tokenBalance"]),
                decimals=int(decimals) if decimals is not None else None,
                symbol=str(symbol).upper(),
                contract=item["contractAddress"].lower(),
            ))
        return readings
