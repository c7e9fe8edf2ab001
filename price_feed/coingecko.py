"""
Price Feed - CoinGecko Quote Provider.

============================================================
RESPONSIBILITY
============================================================
Fetches USD quotes for a batch of ticker symbols.

- GET /coins/markets?vs_currency=usd&symbols=btc,eth,..., paged until a short page
- Demo (free) or Pro API key header
- When several coins share a ticker, the highest market cap wins
- Never raises for HTTP problems: returns a tagged Outcome
  (429 -> rate_limited, 5xx/timeout -> transient, other 4xx -> permanent)

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

import httpx

from core.clock import now_utc
from core.outcome import Outcome
from price_feed.models import PriceQuote


logger = logging.getLogger(__name__)

DEMO_BASE_URL = "https://api.coingecko.com/api/v3"
PRO_BASE_URL = "https://pro-api.coingecko.com/api/v3"

QuoteMap = Dict[str, PriceQuote]


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None


class CoinGeckoQuoteProvider:
    """
    USD quotes from the CoinGecko markets endpoint.

    Usage:
        provider = CoinGeckoQuoteProvider(api_key=os.getenv("COINGECKO_API_KEY"))
        outcome = await provider.fetch_quotes(["BTC", "ETH"])
        if outcome.is_success:
            btc = outcome.value.get("BTC")
    """

    MAX_PER_PAGE = 250
    MAX_PAGES = 10

    def __init__(
        self,
        api_key: Optional[str] = None,
        pro: bool = False,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key or ""
        self._pro = pro
        self._base_url = (base_url or (PRO_BASE_URL if pro else DEMO_BASE_URL)).rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "coingecko"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            # x-cg-demo-api-key for Demo API, x-cg-pro-api-key for Pro API
            header = "x-cg-pro-api-key" if self._pro else "x-cg-demo-api-key"
            headers[header] = self._api_key
        return headers

    async def fetch_quotes(self, symbols: Sequence[str]) -> Outcome[QuoteMap]:
        """
        Fetch quotes for one batch of symbols.

        Pages are read until a short page, so matches past the first
        page are never dropped.

        Returns:
            SUCCESS with {SYMBOL: PriceQuote} for the symbols the API knows
            (possibly a subset of the request), or a failure outcome.
        """
        params = {
            "vs_currency": "usd",
            "symbols": ",".join(s.lower() for s in symbols),
            "per_page": self.MAX_PER_PAGE,
            "sparkline": "false",
        }
        rows: List[Dict[str, Any]] = []

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                for page in range(1, self.MAX_PAGES + 1):
                    response = await client.get(
                        f"{self._base_url}/coins/markets",
                        params={**params, "page": page},
                        headers=self._headers(),
                    )
                    response.raise_for_status()
                    data = response.json()

                    if not isinstance(data, list):
                        return Outcome.transient("Unexpected response shape", self.name)
                    rows.extend(data)
                    if len(data) < self.MAX_PER_PAGE:
                        break
                else:
                    logger.warning(
                        f"[{self.name}] markets still paging after {self.MAX_PAGES} pages "
                        f"for {len(symbols)} symbols"
                    )

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = f"HTTP {status}: {e.response.text[:200]}"
            if status == 429:
                retry_after = e.response.headers.get("Retry-After")
                return Outcome.rate_limited(
                    message,
                    self.name,
                    retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                )
            if status >= 500:
                return Outcome.transient(message, self.name, status_code=status)
            return Outcome.permanent(message, self.name, status_code=status)

        except httpx.TimeoutException as e:
            return Outcome.transient(f"Request timeout: {e}", self.name)

        except httpx.RequestError as e:
            return Outcome.transient(f"Request error: {e}", self.name)

        except ValueError as e:
            return Outcome.transient(f"Response is not valid JSON: {e}", self.name)

        return Outcome.success(self.parse_markets(rows), self.name)

    def parse_markets(self, rows: List[Dict[str, Any]]) -> QuoteMap:
        """Convert markets rows to quotes, keeping the largest market cap per symbol."""
        quotes: QuoteMap = {}
        now = now_utc()

        for row in rows:
            if not isinstance(row, dict):
                continue
            symbol = (row.get("symbol") or "").upper()
            price = _decimal_or_none(row.get("current_price"))
            if not symbol or price is None:
                continue

            quote = PriceQuote(
                symbol=symbol,
                price_usd=price,
                last_updated=_parse_timestamp(row.get("last_updated")) or now,
                market_cap=_decimal_or_none(row.get("market_cap")),
                volume_24h=_decimal_or_none(row.get("total_volume")),
                percent_change_24h=_decimal_or_none(row.get("price_change_percentage_24h")),
                source=self.name,
            )

            existing = quotes.get(symbol)
            if existing is None or (quote.market_cap or 0) > (existing.market_cap or 0):
                quotes[symbol] = quote

        return quotes


__all__ = [
    "CoinGeckoQuoteProvider",
    "QuoteMap",
]
