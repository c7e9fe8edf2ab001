"""
Etherscan Provider - Block explorer REST API (V2, unified multichain).

Native balance: module=account&action=balance
Token balance:  module=account&action=tokenbalance

Free tier limits:
- 5 calls/second
- 100,000 calls/day (API key required since V2)

Used as the explorer fallback behind the public EVM RPC.
"""

import logging
import os
from typing import Any, Optional

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.exceptions import (
    CredentialsError,
    FetchError,
    InvalidRequestError,
    NetworkNotSupportedError,
    RateLimitError,
)
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


class EtherscanProvider(BaseBalanceProvider):
    """
    Etherscan and compatible explorers.

    Uses Etherscan API V2 (single endpoint, chain selected by chainid).
    """

    V2_API_URL = "https://api.etherscan.io/v2/api"

    SUPPORTED_NETWORKS = [
        Network.ETH,
        Network.BSC,
        Network.POLYGON,
        Network.ARBITRUM,
        Network.OPTIMISM,
        Network.BASE,
        Network.AVALANCHE,
    ]

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        self._api_key = api_key or os.environ.get("ETHERSCAN_API_KEY", "")
        self._base_url = base_url or self.V2_API_URL

    @property
    def name(self) -> str:
        return "etherscan"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="Etherscan (Multi-chain)",
            supported_networks=list(self.SUPPORTED_NETWORKS),
            supported_kinds=[QueryKind.NATIVE, QueryKind.TOKEN],
            tier=ProviderTier.ENRICHMENT,
            requires_api_key=True,
            is_free_tier=True,
            base_url="https://etherscan.io",
            documentation_url="https://docs.etherscan.io/",
            tags=["evm", "explorer"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return "account.balance" if query.kind == QueryKind.NATIVE else "account.tokenbalance"

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        chain_id = query.network.chain_id
        if chain_id is None:
            raise NetworkNotSupportedError(
                message=f"Network {query.network.value} not supported",
                provider_name=self.name,
                network=query.network.value,
            )
        address = validate_evm_address(query.address, self.name)

        params = {
            "chainid": str(chain_id),
            "module": "account",
            "address": address,
            "tag": "latest",
            "apikey": self._api_key,
        }
        if query.kind == QueryKind.NATIVE:
            params["action"] = "balance"
        else:
            if not query.contract:
                raise InvalidRequestError(
                    message=f"Token {query.symbol} has no contract address",
                    provider_name=self.name,
                    network=query.network.value,
                )
            params["action"] = "tokenbalance"
            params["contractaddress"] = validate_evm_address(query.contract, self.name, "contract")

        return await self._make_etherscan_request(params)

    async def _make_etherscan_request(self, params: dict[str, str]) -> Any:
        """Make Etherscan V2 API request with result unwrapping."""
        response = await self._make_request("GET", self._base_url, params=params)

        if not isinstance(response, dict):
            return response

        # Etherscan wraps responses in {"status": "1", "message": "OK", "result": ...}
        status = str(response.get("status", "0"))
        message = str(response.get("message", ""))
        result = response.get("result")

        if status == "1":
            return result

        detail = f"{message}: {result}" if isinstance(result, str) else message
        lowered = detail.lower()

        if "rate limit" in lowered:
            raise RateLimitError(
                message="Etherscan rate limit exceeded",
                provider_name=self.name,
                retry_after_seconds=1,
            )
        if "api key" in lowered:
            raise CredentialsError(
                message=f"Etherscan rejected API key: {detail}",
                provider_name=self.name,
            )
        if "invalid" in lowered:
            raise InvalidRequestError(
                message=f"Etherscan API error: {detail}",
                provider_name=self.name,
            )
        raise FetchError(
            message=f"Etherscan API error: {detail}",
            provider_name=self.name,
            response_body=str(response)[:500],
        )

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        return BalanceReading(
            amount=to_decimal(raw_data),
            symbol=query.symbol,
            contract=query.contract,
        )
