"""
Shared test fixtures.

Fake balance and quote providers that go through the real
BaseBalanceProvider.query() classification, so retry, fallback
and resolver tests exercise production code paths without HTTP.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import AsyncMock

import pytest

from core.clock import MockClock
from core.outcome import Outcome
from balance_providers.base import BaseBalanceProvider
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)
from balance_providers.registry import NetworkStrategy, ProviderRegistry
from price_feed.models import PriceQuote


FIXED_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeBalanceProvider(BaseBalanceProvider):
    """
    Scripted provider.

    script(kind, key, *responses): responses are returned in order for
    queries of that kind whose contract (or symbol) equals key; the last
    one repeats. A response that is an exception instance is raised from
    fetch_raw, anything else is handed to parse() unchanged.
    """

    def __init__(
        self,
        name: str,
        networks: Sequence[Network] = (Network.ETH,),
        kinds: Sequence[QueryKind] = (QueryKind.NATIVE, QueryKind.TOKEN, QueryKind.DISCOVERY),
        tier: ProviderTier = ProviderTier.PUBLIC_RPC,
        configured: bool = True,
    ) -> None:
        super().__init__()
        self._name = name
        self._networks = list(networks)
        self._kinds = list(kinds)
        self._tier = tier
        self._configured = configured
        self._scripts: Dict[tuple, List[Any]] = {}
        self.calls: List[BalanceQuery] = []

    @property
    def name(self) -> str:
        return self._name

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self._name,
            display_name=self._name,
            supported_networks=self._networks,
            supported_kinds=self._kinds,
            tier=self._tier,
        )

    def is_configured(self) -> bool:
        return self._configured

    def script(self, kind: QueryKind, key: Optional[str], *responses: Any) -> "FakeBalanceProvider":
        self._scripts[(kind, key)] = list(responses)
        return self

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        self.calls.append(query)
        key = query.contract or (query.symbol if query.kind == QueryKind.TOKEN else None)
        responses = self._scripts.get((query.kind, key))
        if responses is None:
            responses = self._scripts.get((query.kind, None))
        if not responses:
            raise AssertionError(f"unscripted query {query.kind.value} {key}")
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def parse(self, raw_data: Any, query: BalanceQuery) -> Any:
        return raw_data

    def calls_for(self, kind: QueryKind) -> List[BalanceQuery]:
        return [q for q in self.calls if q.kind == kind]


class FakeQuoteProvider:
    """Quote provider answering from a fixed price table."""

    def __init__(self, prices: Dict[str, Any], failures: Optional[List[Outcome]] = None) -> None:
        self._prices = {k.upper(): Decimal(str(v)) for k, v in prices.items()}
        self._failures = list(failures or [])
        self.requests: List[List[str]] = []

    @property
    def name(self) -> str:
        return "fake_quotes"

    async def fetch_quotes(self, symbols: Sequence[str]) -> Outcome:
        self.requests.append(list(symbols))
        if self._failures:
            return self._failures.pop(0)
        return Outcome.success(
            {
                s: PriceQuote(symbol=s, price_usd=self._prices[s], last_updated=FIXED_TIME, source=self.name)
                for s in symbols
                if s in self._prices
            },
            self.name,
        )


def reading(amount: Any, **kwargs: Any) -> BalanceReading:
    return BalanceReading(amount=Decimal(str(amount)), **kwargs)


def make_registry(
    *providers: BaseBalanceProvider,
    strategies: Optional[Dict[Network, NetworkStrategy]] = None,
    max_attempts: int = 3,
    sleep: Optional[AsyncMock] = None,
) -> ProviderRegistry:
    registry = ProviderRegistry(
        strategies=strategies or {},
        max_attempts=max_attempts,
        sleep=sleep or AsyncMock(),
    )
    for provider in providers:
        registry.register(provider)
    return registry


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that returns immediately and records delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def clock() -> MockClock:
    return MockClock(FIXED_TIME)
