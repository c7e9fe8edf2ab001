"""
Provider Fallback Chain and Registry Tests.

============================================================
PURPOSE
============================================================
- Fallback ordering and retry budget per link
- A confirmed zero (or EMPTY) stops the chain
- Exhaustion never raises and keeps diagnostics
- Registry strategy table, configured-provider filtering,
  per-tier retry policies

============================================================
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from core.outcome import OutcomeKind
from core.retry import RetryDriver, RetryPolicy
from balance_providers.chain import ChainLink, FallbackChain
from balance_providers.exceptions import FetchError, InvalidRequestError, RateLimitError
from balance_providers.models import BalanceQuery, Network, ProviderStatus, ProviderTier, QueryKind
from balance_providers.registry import (
    DEFAULT_STRATEGIES,
    NetworkStrategy,
    ProviderRegistry,
    build_default_registry,
)
from aggregation.config import AggregatorConfig, ProviderSettings
from tests.conftest import FakeBalanceProvider, make_registry, reading


ETH_QUERY = BalanceQuery(Network.ETH, "0xabc", QueryKind.NATIVE, symbol="ETH")


def link(provider, no_sleep, max_attempts=3):
    return ChainLink(provider, RetryDriver(RetryPolicy(max_attempts=max_attempts), sleep=no_sleep))


# ============================================================
# FALLBACK CHAIN TESTS
# ============================================================

class TestFallbackChain:
    """Tests for FallbackChain.execute."""

    @pytest.mark.asyncio
    async def test_first_provider_answers(self, no_sleep):
        a = FakeBalanceProvider("a").script(QueryKind.NATIVE, None, reading(5))
        b = FakeBalanceProvider("b").script(QueryKind.NATIVE, None, reading(9))
        chain = FallbackChain("native:ETH", [link(a, no_sleep), link(b, no_sleep)])

        result = await chain.execute(ETH_QUERY)

        assert result.succeeded
        assert result.value.amount == Decimal(5)
        assert result.source == "a"
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_fallback_after_transient_exhaustion(self, no_sleep):
        a = FakeBalanceProvider("a").script(
            QueryKind.NATIVE, None, FetchError("HTTP 503", provider_name="a", status_code=503)
        )
        b = FakeBalanceProvider("b").script(QueryKind.NATIVE, None, reading(1234))
        chain = FallbackChain("native:ETH", [link(a, no_sleep, 3), link(b, no_sleep, 3)])

        result = await chain.execute(ETH_QUERY)

        assert result.succeeded
        assert result.value.amount == Decimal(1234)
        assert result.source == "b"
        # A used its whole retry budget before B was tried
        assert len(a.calls) == 3
        assert len(b.calls) == 1
        assert [o.source for o in result.attempts] == ["a", "b"]
        assert result.attempts[0].attempts == 3

    @pytest.mark.asyncio
    async def test_confirmed_zero_stops_chain(self, no_sleep):
        a = FakeBalanceProvider("a").script(QueryKind.NATIVE, None, reading(0))
        b = FakeBalanceProvider("b").script(QueryKind.NATIVE, None, reading(100))
        chain = FallbackChain("native:ETH", [link(a, no_sleep), link(b, no_sleep)])

        result = await chain.execute(ETH_QUERY)

        assert result.succeeded
        assert result.value.amount == Decimal(0)
        assert result.kind == OutcomeKind.SUCCESS
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_empty_outcome_stops_chain(self, no_sleep):
        a = FakeBalanceProvider("a").script(QueryKind.NATIVE, None, None)
        b = FakeBalanceProvider("b").script(QueryKind.NATIVE, None, reading(100))
        chain = FallbackChain("native:ETH", [link(a, no_sleep), link(b, no_sleep)])

        result = await chain.execute(ETH_QUERY)

        assert result.succeeded
        assert result.kind == OutcomeKind.EMPTY
        assert result.value is None
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_permanent_failure_moves_on_without_retry(self, no_sleep):
        a = FakeBalanceProvider("a").script(
            QueryKind.NATIVE, None, InvalidRequestError("bad address", provider_name="a")
        )
        b = FakeBalanceProvider("b").script(QueryKind.NATIVE, None, reading(3))
        chain = FallbackChain("native:ETH", [link(a, no_sleep), link(b, no_sleep)])

        result = await chain.execute(ETH_QUERY)

        assert result.source == "b"
        assert len(a.calls) == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_fail_returns_diagnostics(self, no_sleep):
        a = FakeBalanceProvider("a").script(
            QueryKind.NATIVE, None, FetchError("Timeout after 10.0s", provider_name="a")
        )
        b = FakeBalanceProvider("b").script(
            QueryKind.NATIVE, None, RateLimitError("Rate limit exceeded", provider_name="b")
        )
        chain = FallbackChain("native:ETH", [link(a, no_sleep, 2), link(b, no_sleep, 2)])

        result = await chain.execute(ETH_QUERY)

        assert not result.succeeded
        assert result.value is None
        assert result.kind == OutcomeKind.RATE_LIMITED
        assert len(result.diagnostics) == 2
        summary = result.failure_summary()
        assert summary.startswith("native:ETH: all providers failed")
        assert "a: transient" in summary
        assert "b: rate_limited" in summary

    @pytest.mark.asyncio
    async def test_empty_chain(self):
        chain = FallbackChain("token:BTC", [])

        result = await chain.execute(BalanceQuery(Network.BTC, "bc1q"))

        assert not result.succeeded
        assert result.failure_summary() == "token:BTC: no provider configured"


# ============================================================
# REGISTRY TESTS
# ============================================================

class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_chain_follows_strategy_order(self):
        strategy = NetworkStrategy(native=("b", "a"))
        registry = make_registry(
            FakeBalanceProvider("a"), FakeBalanceProvider("b"),
            strategies={Network.ETH: strategy},
        )

        chain = registry.chain_for(Network.ETH, QueryKind.NATIVE)

        assert chain.provider_names() == ["b", "a"]
        assert chain.operation == "native:ETH"

    def test_unconfigured_and_unregistered_skipped(self):
        strategy = NetworkStrategy(native=("a", "missing", "paid"))
        registry = make_registry(
            FakeBalanceProvider("a"),
            FakeBalanceProvider("paid", tier=ProviderTier.ENRICHMENT, configured=False),
            strategies={Network.ETH: strategy},
        )

        assert registry.chain_for(Network.ETH, QueryKind.NATIVE).provider_names() == ["a"]

    def test_supports_discovery(self):
        registry = make_registry(
            FakeBalanceProvider("a"),
            strategies={
                Network.ETH: NetworkStrategy(native=("a",)),
                Network.SOL: NetworkStrategy(native=("a",), discovery=("a",)),
            },
        )

        assert not registry.supports_discovery(Network.ETH)
        assert registry.supports_discovery(Network.SOL)
        assert not registry.supports_discovery(Network.TON)

    def test_retry_policy_per_tier(self):
        registry = ProviderRegistry(max_attempts=4, rpc_base_delay=0.5, api_base_delay=1.0)
        rpc = FakeBalanceProvider("rpc", tier=ProviderTier.PUBLIC_RPC)
        api = FakeBalanceProvider("api", tier=ProviderTier.ENRICHMENT)
        exchange = FakeBalanceProvider("cex", tier=ProviderTier.EXCHANGE)

        assert registry.retry_driver_for(rpc).policy == RetryPolicy(max_attempts=4, base_delay=0.5)
        assert registry.retry_driver_for(api).policy.base_delay == 1.0
        assert registry.retry_driver_for(exchange).policy.base_delay == 1.0

    def test_register_replaces_and_unregister(self):
        registry = ProviderRegistry()
        first = FakeBalanceProvider("a")
        second = FakeBalanceProvider("a")

        registry.register(first)
        registry.register(second)

        assert registry.get("a") is second
        assert registry.unregister("a") is second
        assert registry.list_providers() == []

    @pytest.mark.asyncio
    async def test_stats_reflect_health(self, no_sleep):
        bad = FakeBalanceProvider("bad").script(
            QueryKind.NATIVE, None, FetchError("HTTP 500", provider_name="bad", status_code=500)
        )
        registry = make_registry(bad, strategies={Network.ETH: NetworkStrategy(native=("bad",))}, max_attempts=3)

        await registry.chain_for(Network.ETH, QueryKind.NATIVE).execute(ETH_QUERY)
        stats = registry.get_stats()

        assert stats["total_providers"] == 1
        assert stats["providers"]["bad"]["error_count"] == 3
        assert stats["providers"]["bad"]["status"] == ProviderStatus.DEGRADED.value
        assert stats["providers"]["bad"]["consecutive_failures"] == 3
        assert stats["providers"]["bad"]["metadata"]["tier"] == ProviderTier.PUBLIC_RPC.value
        incidents = stats["providers"]["bad"]["recent_incidents"]
        assert [i["incident_type"] for i in incidents] == ["FetchError"] * 3
        assert incidents[0]["network"] == "ETH"

    @pytest.mark.asyncio
    async def test_stats_incident_limit(self, no_sleep):
        bad = FakeBalanceProvider("bad").script(
            QueryKind.NATIVE, None, FetchError("HTTP 500", provider_name="bad", status_code=500)
        )
        registry = make_registry(bad, strategies={Network.ETH: NetworkStrategy(native=("bad",))}, max_attempts=3)

        await registry.chain_for(Network.ETH, QueryKind.NATIVE).execute(ETH_QUERY)

        assert len(registry.get_stats(incident_limit=2)["providers"]["bad"]["recent_incidents"]) == 2

    def test_default_strategy_table(self):
        assert DEFAULT_STRATEGIES[Network.ETH].native[0] == "evm_rpc"
        assert DEFAULT_STRATEGIES[Network.BTC].native == ("blockstream", "mempool")
        assert DEFAULT_STRATEGIES[Network.KUCOIN].native == ()
        assert DEFAULT_STRATEGIES[Network.BASE] == DEFAULT_STRATEGIES[Network.ETH]

    def test_default_registry_public_fallbacks(self):
        config = AggregatorConfig(providers=ProviderSettings())

        registry = build_default_registry(config, sleep=AsyncMock())

        eth_native = registry.chain_for(Network.ETH, QueryKind.NATIVE).provider_names()
        # Keyed providers are registered but left out until configured
        assert eth_native == ["evm_rpc", "evm_rpc_backup"]
        assert registry.chain_for(Network.ETH, QueryKind.DISCOVERY).provider_names() == []
        assert registry.chain_for(Network.BTC, QueryKind.NATIVE).provider_names() == ["blockstream", "mempool"]
        assert registry.chain_for(Network.KUCOIN, QueryKind.TOKEN).provider_names() == ["kucoin"]

    def test_default_registry_with_alchemy_key(self):
        config = AggregatorConfig(providers=ProviderSettings(alchemy_api_key="alch-key"))

        registry = build_default_registry(config)

        assert registry.chain_for(Network.ETH, QueryKind.DISCOVERY).provider_names() == ["alchemy"]
        assert registry.supports_discovery(Network.POLYGON)
