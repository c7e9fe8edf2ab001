"""
Toncenter Provider - TON balances over the toncenter v3 REST API.

Native balance: GET /api/v3/account?address (nanotons, 9 decimals)
Token balance:  GET /api/v3/jetton/wallets?owner_address&jetton_address
Discovery:      GET /api/v3/jetton/wallets?owner_address

An address that was never deployed is reported as 404 / status
"nonexist" (confirmed zero). Without an API key toncenter allows
~1 request/second; 429s are absorbed by the retry driver.
"""

import os
from typing import Any, Optional

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.exceptions import FetchError, InvalidRequestError
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)


DEFAULT_TONCENTER_URL = "https://toncenter.com"


class ToncenterProvider(BaseBalanceProvider):
    """TON balances via toncenter."""

    PAGE_LIMIT = 100

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(timeout=timeout)
        self._api_key = api_key or os.environ.get("TONCENTER_API_KEY", "")
        self._base_url = (base_url or DEFAULT_TONCENTER_URL).rstrip("/")

    @property
    def name(self) -> str:
        return "toncenter"

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="Toncenter",
            supported_networks=[Network.TON],
            supported_kinds=[QueryKind.NATIVE, QueryKind.TOKEN, QueryKind.DISCOVERY],
            tier=ProviderTier.PUBLIC_RPC,
            base_url=self._base_url,
            documentation_url="https://toncenter.com/api/v3/",
            tags=["ton", "rest"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return "account" if query.kind == QueryKind.NATIVE else "jetton/wallets"

    def _headers(self) -> Optional[dict[str, str]]:
        return {"X-API-Key": self._api_key} if self._api_key else None

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        if query.kind == QueryKind.NATIVE:
            try:
                return await self._make_request(
                    "GET",
                    f"{self._base_url}/api/v3/account",
                    params={"address": query.address},
                    headers=self._headers(),
                )
            except FetchError as e:
                if e.status_code == 404:
                    return None
                raise

        params: dict[str, Any] = {
            "owner_address": query.address,
            "limit": self.PAGE_LIMIT,
            "offset": 0,
        }
        if query.kind == QueryKind.TOKEN:
            if not query.contract:
                raise InvalidRequestError(
                    message=f"Jetton {query.symbol} has no master address",
                    provider_name=self.name,
                    network=query.network.value,
                )
            params["jetton_address"] = query.contract

        payload = await self._make_request(
            "GET",
            f"{self._base_url}/api/v3/jetton/wallets",
            params=params,
            headers=self._headers(),
        )
        return payload["jetton_wallets"]

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        if query.kind == QueryKind.NATIVE:
            if raw_data is None or raw_data.get("status") == "nonexist":
                return None
            return BalanceReading(amount=to_decimal(raw_data["balance"]), symbol="TON")

        if query.kind == QueryKind.TOKEN:
            if not raw_data:
                return None
            total = sum((to_decimal(w["balance"]) for w in raw_data), to_decimal(0))
            return BalanceReading(amount=total, symbol=query.symbol, contract=query.contract)

        return [
            BalanceReading(amount=to_decimal(w["balance"]), contract=w["jetton"])
            for w in raw_data
            if to_decimal(w["balance"]) > 0
        ]
