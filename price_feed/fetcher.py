"""
Price Feed - Price Fetcher.

============================================================
RESPONSIBILITY
============================================================
Turns the run's distinct symbol set into a TOTAL symbol -> quote map.

- Symbols are upper-cased and de-duplicated (first seen order)
- Fixed-size batches (default 100) with an inter-batch delay
- Each batch goes through the shared RetryDriver
- A batch that exhausts its retries gets zero quotes and a
  recorded failure; it never aborts the run
- Symbols absent from the provider reply get zero quotes

============================================================
"""

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

from core.clock import ClockProtocol, SystemClock
from core.outcome import Outcome
from core.retry import RetryDriver, RetryPolicy, SleepFunc
from price_feed.coingecko import QuoteMap
from price_feed.models import PriceFetchResult, PriceQuote


logger = logging.getLogger(__name__)


class QuoteProvider(Protocol):
    """Anything that can quote a batch of symbols."""

    @property
    def name(self) -> str: ...

    async def fetch_quotes(self, symbols: Sequence[str]) -> Outcome[QuoteMap]: ...


def normalize_symbols(symbols: Sequence[str]) -> List[str]:
    """Upper-case, strip and de-duplicate, keeping first-seen order."""
    seen = set()
    result = []
    for symbol in symbols:
        key = (symbol or "").strip().upper()
        if key and key not in seen:
            seen.add(key)
            result.append(key)
    return result


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class PriceFetcher:
    """
    Batched, retried, total price lookup.

    Usage:
        fetcher = PriceFetcher(CoinGeckoQuoteProvider(), batch_size=100)
        result = await fetcher.fetch(["ETH", "USDT"])
        result.price_for("ETH")
    """

    def __init__(
        self,
        provider: QuoteProvider,
        retry: Optional[RetryDriver] = None,
        batch_size: int = 100,
        batch_delay: float = 1.0,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._provider = provider
        self._retry = retry or RetryDriver(RetryPolicy(base_delay=1.0), sleep=sleep)
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._clock = clock or SystemClock()
        self._sleep = sleep or asyncio.sleep

    async def fetch(self, symbols: Sequence[str]) -> PriceFetchResult:
        requested = normalize_symbols(symbols)
        result = PriceFetchResult()
        if not requested:
            return result

        batches = chunked(requested, self._batch_size)
        logger.info(
            f"[price] Fetching {len(requested)} symbols in {len(batches)} batch(es) "
            f"from {self._provider.name}"
        )

        for index, batch in enumerate(batches):
            if index > 0 and self._batch_delay > 0:
                await self._sleep(self._batch_delay)

            outcome = await self._retry.run(
                lambda batch=batch: self._provider.fetch_quotes(batch),
                label=f"prices[{index + 1}/{len(batches)}]",
            )

            now = self._clock.now()
            if outcome.is_success:
                found = outcome.value or {}
                for symbol in batch:
                    quote = found.get(symbol)
                    result.quotes[symbol] = quote or PriceQuote.zero(symbol, now, self._provider.name)
            else:
                failure = f"price batch {index + 1}/{len(batches)} ({len(batch)} symbols) failed: {outcome.describe()}"
                logger.warning(f"[price] {failure}")
                result.failures.append(failure)
                for symbol in batch:
                    result.quotes[symbol] = PriceQuote.zero(symbol, now, self._provider.name)

        unresolved = result.unresolved
        if unresolved:
            logger.warning(f"[price] {len(unresolved)} symbol(s) priced at zero: {', '.join(unresolved)}")
        return result


__all__ = [
    "QuoteProvider",
    "PriceFetcher",
    "normalize_symbols",
    "chunked",
]
