"""
EVM JSON-RPC Provider - Public node access for EVM networks.

Native balance: eth_getBalance(address, "latest")
Token balance:  eth_call balanceOf(address) on the ERC-20 contract

Free public endpoints are used unless an RPC URL is configured
per network. Tier: PUBLIC_RPC (cheap, tried first).
"""

import logging
import re
from typing import Any, Optional

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.exceptions import InvalidRequestError, NetworkNotSupportedError
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)


logger = logging.getLogger(__name__)

EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# keccak256("balanceOf(address)")[:4]
BALANCE_OF_SELECTOR = "0x70a08231"


DEFAULT_RPC_URLS = {
    Network.ETH: "https://ethereum-rpc.publicnode.com",
    Network.BSC: "https://bsc-rpc.publicnode.com",
    Network.POLYGON: "https://polygon-bor-rpc.publicnode.com",
    Network.ARBITRUM: "https://arbitrum-one-rpc.publicnode.com",
    Network.OPTIMISM: "https://optimism-rpc.publicnode.com",
    Network.BASE: "https://base-rpc.publicnode.com",
    Network.AVALANCHE: "https://avalanche-c-chain-rpc.publicnode.com",
}

# Second public operator, used as the next link when publicnode fails
BACKUP_RPC_URLS = {
    Network.ETH: "https://1rpc.io/eth",
    Network.BSC: "https://1rpc.io/bnb",
    Network.POLYGON: "https://1rpc.io/matic",
    Network.ARBITRUM: "https://1rpc.io/arb",
    Network.OPTIMISM: "https://1rpc.io/op",
    Network.BASE: "https://1rpc.io/base",
    Network.AVALANCHE: "https://1rpc.io/avax/c",
}


def validate_evm_address(address: str, provider_name: str, field_name: str = "address") -> str:
    if not address or not EVM_ADDRESS_RE.match(address):
        raise InvalidRequestError(
            message=f"Invalid EVM {field_name}: {address!r}",
            provider_name=provider_name,
        )
    return address


def encode_balance_of(address: str) -> str:
    """ABI-encode balanceOf(address) call data."""
    return BALANCE_OF_SELECTOR + address[2:].lower().rjust(64, "0")


class EvmRpcProvider(BaseBalanceProvider):
    """Standard JSON-RPC against an EVM node."""

    def __init__(
        self,
        rpc_urls: Optional[dict[Network, str]] = None,
        name: str = "evm_rpc",
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        self._name = name
        self._rpc_urls = dict(DEFAULT_RPC_URLS)
        if rpc_urls:
            self._rpc_urls.update({k: v for k, v in rpc_urls.items() if v})

    @property
    def name(self) -> str:
        return self._name

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="EVM JSON-RPC",
            supported_networks=list(self._rpc_urls.keys()),
            supported_kinds=[QueryKind.NATIVE, QueryKind.TOKEN],
            tier=ProviderTier.PUBLIC_RPC,
            requires_api_key=False,
            is_free_tier=True,
            documentation_url="https://ethereum.org/en/developers/docs/apis/json-rpc/",
            tags=["evm", "rpc"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return "eth_getBalance" if query.kind == QueryKind.NATIVE else "eth_call:balanceOf"

    def _url_for(self, network: Network) -> str:
        url = self._rpc_urls.get(network)
        if not url:
            raise NetworkNotSupportedError(
                message=f"No RPC URL for {network.value}",
                provider_name=self.name,
                network=network.value,
            )
        return url

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        url = self._url_for(query.network)
        address = validate_evm_address(query.address, self.name)

        if query.kind == QueryKind.NATIVE:
            return await self._rpc(url, "eth_getBalance", [address, "latest"])

        if not query.contract:
            raise InvalidRequestError(
                message=f"Token {query.symbol} has no contract address",
                provider_name=self.name,
                network=query.network.value,
            )
        contract = validate_evm_address(query.contract, self.name, "contract")
        call = {"to": contract, "data": encode_balance_of(address)}
        return await self._rpc(url, "eth_call", [call, "latest"])

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        if query.kind == QueryKind.TOKEN and raw_data in ("0x", "", None):
            # eth_call on an address without code returns empty data
            raise InvalidRequestError(
                message=f"No ERC-20 contract at {query.contract}",
                provider_name=self.name,
                network=query.network.value,
            )
        return BalanceReading(
            amount=to_decimal(raw_data),
            symbol=query.symbol,
            contract=query.contract,
        )
