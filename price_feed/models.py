"""
Price Feed - Types.

============================================================
RESPONSIBILITY
============================================================
Value types exchanged between the quote provider, the price
fetcher and the orchestrator.

- PriceQuote: USD quote for one symbol
- PriceFetchResult: total symbol -> quote map plus failures

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class PriceQuote:
    """USD quote for one symbol."""
    symbol: str
    price_usd: Decimal
    last_updated: datetime
    market_cap: Optional[Decimal] = None
    volume_24h: Optional[Decimal] = None
    percent_change_24h: Optional[Decimal] = None
    source: str = ""
    resolved: bool = True

    @classmethod
    def zero(cls, symbol: str, at: datetime, source: str = "") -> "PriceQuote":
        """Zero-price placeholder for an unresolved symbol."""
        return cls(
            symbol=symbol,
            price_usd=Decimal(0),
            last_updated=at,
            source=source,
            resolved=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price_usd": str(self.price_usd),
            "market_cap": str(self.market_cap) if self.market_cap is not None else None,
            "volume_24h": str(self.volume_24h) if self.volume_24h is not None else None,
            "percent_change_24h": (
                str(self.percent_change_24h) if self.percent_change_24h is not None else None
            ),
            "last_updated": self.last_updated.isoformat(),
            "source": self.source,
            "resolved": self.resolved,
        }


@dataclass
class PriceFetchResult:
    """
    Outcome of one run's price fetch.

    quotes always holds an entry for every requested symbol;
    failures describes batches that exhausted their retries.
    """
    quotes: Dict[str, PriceQuote] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    def price_for(self, symbol: str) -> Decimal:
        quote = self.quotes.get(symbol.upper())
        return quote.price_usd if quote else Decimal(0)

    @property
    def prices(self) -> Dict[str, Decimal]:
        return {symbol: quote.price_usd for symbol, quote in self.quotes.items()}

    @property
    def unresolved(self) -> List[str]:
        return [symbol for symbol, quote in self.quotes.items() if not quote.resolved]

    @property
    def degraded(self) -> bool:
        return bool(self.failures)


__all__ = [
    "PriceQuote",
    "PriceFetchResult",
]
