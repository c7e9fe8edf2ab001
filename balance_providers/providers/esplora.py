"""
Esplora Provider - Bitcoin address balances over the Esplora REST API.

GET {base}/address/{address}
balance = (funded - spent) for confirmed chain stats plus mempool stats

Two public deployments share the API:
- Blockstream (primary)
- mempool.space (fallback)
"""

from typing import Any, Optional

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)


BLOCKSTREAM_URL = "https://blockstream.info/api"
MEMPOOL_URL = "https://mempool.space/api"


class EsploraProvider(BaseBalanceProvider):
    """Bitcoin balances from an Esplora-compatible server."""

    def __init__(
        self,
        name: str = "blockstream",
        base_url: Optional[str] = None,
        include_mempool: bool = True,
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        self._name = name
        self._base_url = (base_url or BLOCKSTREAM_URL).rstrip("/")
        self._include_mempool = include_mempool

    @property
    def name(self) -> str:
        return self._name

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name=f"Esplora ({self.name})",
            supported_networks=[Network.BTC],
            supported_kinds=[QueryKind.NATIVE],
            tier=ProviderTier.PUBLIC_RPC,
            base_url=self._base_url,
            documentation_url="https://github.com/Blockstream/esplora/blob/master/API.md",
            tags=["bitcoin", "rest"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return "address"

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        return await self._make_request("GET", f"{self._base_url}/address/{query.address}")

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        chain = raw_data["chain_stats"]
        satoshis = to_decimal(chain["funded_txo_sum"]) - to_decimal(chain["spent_txo_sum"])

        if self._include_mempool:
            mempool = raw_data.get("mempool_stats") or {}
            satoshis += to_decimal(mempool.get("funded_txo_sum", 0)) - to_decimal(mempool.get("spent_txo_sum", 0))

        return BalanceReading(amount=satoshis, symbol="BTC")
