"""
TronGrid Provider - TRON account balances.

GET /v1/accounts/{address}
- balance: TRX in sun (6 decimals)
- trc20:   list of {contract: raw_amount}

One account call serves native, token and discovery queries, so the
response cache keeps per-token lookups to a single HTTP request.
An address that was never activated returns no data (confirmed zero).
"""

import os
from typing import Any, Optional

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.exceptions import FetchError
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)


DEFAULT_TRONGRID_URL = "https://api.trongrid.io"


class TronGridProvider(BaseBalanceProvider):
    """TRON balances via TronGrid."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
        cache_ttl: int = 30,
    ) -> None:
        super().__init__(timeout=timeout, cache_ttl=cache_ttl)
        self._api_key = api_key or os.environ.get("TRONGRID_API_KEY", "")
        self._base_url = (base_url or DEFAULT_TRONGRID_URL).rstrip("/")

    @property
    def name(self) -> str:
        return "trongrid"

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="TronGrid",
            supported_networks=[Network.TRX],
            supported_kinds=[QueryKind.NATIVE, QueryKind.TOKEN, QueryKind.DISCOVERY],
            tier=ProviderTier.PUBLIC_RPC,
            requires_api_key=False,
            base_url=self._base_url,
            documentation_url="https://developers.tron.network/reference/get-account-info-by-address",
            tags=["tron", "rest"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return "v1.accounts"

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        headers = {"TRON-PRO-API-KEY": self._api_key} if self._api_key else None
        payload = await self._make_request(
            "GET",
            f"{self._base_url}/v1/accounts/{query.address}",
            headers=headers,
        )
        if isinstance(payload, dict) and payload.get("success") is False:
            raise FetchError(
                message=f"TronGrid error: {payload.get('error', 'unknown')}",
                provider_name=self.name,
                network=query.network.value,
            )
        return payload

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        accounts = raw_data.get("data") or []
        if not accounts:
            return None
        account = accounts[0]

        if query.kind == QueryKind.NATIVE:
            return BalanceReading(amount=to_decimal(account.get("balance", 0)), symbol="TRX")

        holdings: dict[str, Any] = {}
        for item in account.get("trc20") or []:
            holdings.update(item)

        if query.kind == QueryKind.TOKEN:
            return BalanceReading(
                amount=to_decimal(holdings.get(query.contract, "0")),
                symbol=query.symbol,
                contract=query.contract,
            )

        return [
            BalanceReading(amount=to_decimal(raw), contract=contract)
            for contract, raw in holdings.items()
            if to_decimal(raw) > 0
        ]
