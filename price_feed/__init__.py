"""
Price Feed Package - Batched USD quotes for a run.

Components:
- models: PriceQuote, PriceFetchResult
- coingecko: CoinGecko markets quote provider (httpx)
- fetcher: batching price fetcher with retry and zero-price defaults
"""

from price_feed.coingecko import CoinGeckoQuoteProvider
from price_feed.fetcher import PriceFetcher, QuoteProvider, chunked, normalize_symbols
from price_feed.models import PriceFetchResult, PriceQuote


__all__ = [
    "CoinGeckoQuoteProvider",
    "PriceFetcher",
    "QuoteProvider",
    "chunked",
    "normalize_symbols",
    "PriceFetchResult",
    "PriceQuote",
]
