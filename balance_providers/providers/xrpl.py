"""
XRPL Provider - XRP Ledger JSON-RPC (rippled).

Native balance: account_info -> account_data.Balance (drops, 6 decimals)
Token balance:  account_lines -> trust line for (issuer, currency)
Discovery:      account_lines -> every trust line with a positive balance

Trust line balances are already decimal quantities.
rippled reports errors inside `result` rather than as JSON-RPC errors.
"""

from typing import Any, Optional

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.exceptions import FetchError, InvalidRequestError, ParseError, RateLimitError
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)


DEFAULT_XRPL_URL = "https://xrplcluster.com"

_NOT_FOUND_ERRORS = {"actNotFound"}
_INVALID_ERRORS = {"actMalformed", "invalidParams", "badSeed"}
_BUSY_ERRORS = {"slowDown", "tooBusy"}


def decode_currency(code: str) -> str:
    """Decode a 160-bit hex currency code to its ASCII ticker when possible."""
    if len(code) == 40:
        try:
            return bytes.fromhex(code).rstrip(b"\x00").decode("ascii").upper()
        except (ValueError, UnicodeDecodeError):
            return code.upper()
    return code.upper()


class XrplProvider(BaseBalanceProvider):
    """XRP Ledger public cluster."""

    MAX_PAGES = 5

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
        cache_ttl: int = 30,
    ) -> None:
        super().__init__(timeout=timeout, cache_ttl=cache_ttl)
        self._rpc_url = rpc_url or DEFAULT_XRPL_URL

    @property
    def name(self) -> str:
        return "xrpl"

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="XRP Ledger",
            supported_networks=[Network.XRP],
            supported_kinds=[QueryKind.NATIVE, QueryKind.TOKEN, QueryKind.DISCOVERY],
            tier=ProviderTier.PUBLIC_RPC,
            base_url=self._rpc_url,
            documentation_url="https://xrpl.org/docs/references/http-websocket-apis/public-api-methods/account-methods",
            tags=["xrp", "rpc"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return "account_info" if query.kind == QueryKind.NATIVE else "account_lines"

    async def _xrpl(self, method: str, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Call a rippled method; returns None for an unknown account."""
        payload = await self._make_request(
            "POST",
            self._rpc_url,
            json_body={"method": method, "params": [params]},
        )
        result = payload.get("result") if isinstance(payload, dict) else None
        if not isinstance(result, dict):
            raise ParseError(
                message=f"{method}: reply has no result",
                provider_name=self.name,
                raw_data=payload,
            )

        error = result.get("error")
        if error in _NOT_FOUND_ERRORS:
            return None
        if error in _INVALID_ERRORS:
            raise InvalidRequestError(
                message=f"{method}: {error}",
                provider_name=self.name,
                network=Network.XRP.value,
            )
        if error in _BUSY_ERRORS:
            raise RateLimitError(
                message=f"{method}: {error}",
                provider_name=self.name,
                network=Network.XRP.value,
            )
        if error:
            raise FetchError(
                message=f"{method}: {error} {result.get('error_message', '')}".strip(),
                provider_name=self.name,
                network=Network.XRP.value,
            )
        return result

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        base = {"account": query.address, "ledger_index": "validated"}

        if query.kind == QueryKind.NATIVE:
            return await self._xrpl("account_info", base)

        params = dict(base)
        if query.kind == QueryKind.TOKEN and query.contract:
            params["peer"] = query.contract

        lines: list[dict[str, Any]] = []
        for _ in range(self.MAX_PAGES):
            result = await self._xrpl("account_lines", params)
            if result is None:
                return None
            lines.extend(result.get("lines", []))
            marker = result.get("marker")
            if not marker:
                break
            params = {**params, "marker": marker}
        return {"lines": lines}

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        if raw_data is None:
            return None

        if query.kind == QueryKind.NATIVE:
            return BalanceReading(
                amount=to_decimal(raw_data["account_data"]["Balance"]),
                symbol="XRP",
            )

        readings = [
            BalanceReading(
                amount=to_decimal(line["balance"]),
                in_base_units=False,
                symbol=decode_currency(line["currency"]),
                contract=line["account"],
            )
            for line in raw_data["lines"]
        ]

        if query.kind == QueryKind.TOKEN:
            wanted = (query.symbol or "").upper()
            for reading in readings:
                if reading.symbol == wanted and (not query.contract or reading.contract == query.contract):
                    return reading
            # Account exists but holds no trust line for this currency
            return BalanceReading(
                amount=to_decimal(0),
                in_base_units=False,
                symbol=query.symbol,
                contract=query.contract,
            )

        return [r for r in readings if r.amount > 0]
