"""
Aggregation Orchestrator Tests.

============================================================
PURPOSE
============================================================
End-to-end runs against fake providers, in-memory config
source and in-memory sink.

TEST CATEGORIES:
- Happy path record values and run summary
- Fatal configuration
- Wallet isolation
- Price degradation
- Duplicate protection and dry-run parity
- Cancellation and run timeout

============================================================
"""

import asyncio
from decimal import Decimal

import pytest

from core.exceptions import SinkError
from core.outcome import Outcome
from core.retry import RetryDriver, RetryPolicy
from balance_providers.exceptions import FetchError
from balance_providers.models import Network, QueryKind
from balance_providers.registry import NetworkStrategy
from price_feed.fetcher import PriceFetcher
from aggregation.config import AggregatorConfig
from aggregation.config_source import InMemoryConfigSource
from aggregation.models import (
    FinancialRecord,
    RecordStatus,
    RunState,
    Token,
    TriggerType,
    Wallet,
)
from aggregation.orchestrator import AggregationOrchestrator
from aggregation.sinks import InMemoryRecordSink
from tests.conftest import FIXED_TIME, FakeBalanceProvider, FakeQuoteProvider, make_registry, reading


USDT = "0xdAC17F958D2ee523a2206206994597C13D831ec7"

W1 = Wallet(id="w1", name="Main", network="ETH", address="0x" + "11" * 20)
W2 = Wallet(id="w2", name="Legacy", network="ETH", address="0x" + "22" * 20)
W3 = Wallet(id="w3", name="Cold", network="ETH", address="0x" + "33" * 20)

TOKENS = [
    Token(symbol="ETH", network="ETH"),
    Token(symbol="USDT", network="ETH", contract=USDT, decimals=6),
]
PRICES = {"ETH": 3000, "USDT": 1}


class AddressAwareProvider(FakeBalanceProvider):
    """Scripted provider that hangs or crashes for chosen addresses."""

    def __init__(self, name, blocked=(), broken=(), **kwargs):
        super().__init__(name, **kwargs)
        self.blocked = set(blocked)
        self.broken = set(broken)

    async def fetch_raw(self, query):
        if query.address in self.blocked:
            await asyncio.Event().wait()
        if query.address in self.broken:
            raise RuntimeError("decoder exploded")
        return await super().fetch_raw(query)


class ExplodingQuoteProvider:
    name = "exploding"

    async def fetch_quotes(self, symbols):
        raise RuntimeError("quote client crashed")


class FailingSink(InMemoryRecordSink):
    def write_batch(self, records):
        raise SinkError("disk full")


class CountingSink(InMemoryRecordSink):
    """Counts duplicate lookups."""

    def __init__(self):
        super().__init__()
        self.key_lookups = []
        self.single_lookups = 0

    def existing_keys(self, timestamp, address):
        self.key_lookups.append(address)
        return super().existing_keys(timestamp, address)

    def exists(self, timestamp, address, symbol, network=None):
        self.single_lookups += 1
        return super().exists(timestamp, address, symbol, network)


def eth_provider(cls=FakeBalanceProvider, **kwargs):
    return (
        cls("p", **kwargs)
        .script(QueryKind.NATIVE, None, reading(2 * 10**18))
        .script(QueryKind.TOKEN, USDT, reading(5_000_000))
    )


def make_orchestrator(
    no_sleep,
    clock,
    wallets=(W1,),
    tokens=TOKENS,
    provider=None,
    quotes=None,
    sink=None,
    source=None,
    **config_kwargs,
):
    config_kwargs.setdefault("price_batch_delay_seconds", 0)
    config = AggregatorConfig(**config_kwargs)
    provider = provider or eth_provider()
    registry = make_registry(
        provider,
        strategies={
            Network.ETH: NetworkStrategy(native=(provider.name,), token=(provider.name,)),
            Network.KUCOIN: NetworkStrategy(),
        },
        sleep=no_sleep,
    )
    fetcher = PriceFetcher(
        quotes or FakeQuoteProvider(PRICES),
        retry=RetryDriver(RetryPolicy(max_attempts=2), sleep=no_sleep),
        batch_delay=0,
        clock=clock,
        sleep=no_sleep,
    )
    source = source or InMemoryConfigSource(wallets=list(wallets), tokens=list(tokens))
    sink = sink if sink is not None else InMemoryRecordSink()
    orchestrator = AggregationOrchestrator(
        config=config,
        config_source=source,
        sink=sink,
        registry=registry,
        price_fetcher=fetcher,
        clock=clock,
    )
    return orchestrator, source, sink


# ============================================================
# RECORD VALUE
# ============================================================

class TestFinancialRecord:
    """value_usd is derived, never assigned."""

    def test_value_is_quantity_times_price(self):
        record = FinancialRecord(
            timestamp=FIXED_TIME, network="ETH", symbol="FOO", wallet_id="w1",
            address="0xabc", quantity=Decimal("3.5"), price_usd=Decimal(100),
        )

        assert record.value_usd == Decimal(350)
        assert record.to_dict()["value_usd"] == "350.0"


# ============================================================
# HAPPY PATH
# ============================================================

class TestRunHappyPath:
    """Tests for a fully successful run."""

    @pytest.mark.asyncio
    async def test_records_and_summary(self, no_sleep, clock):
        orchestrator, source, sink = make_orchestrator(no_sleep, clock)

        summary = await orchestrator.run(TriggerType.SCHEDULED)

        records = {r.symbol: r for r in sink.records}
        assert set(records) == {"ETH", "USDT"}
        assert records["ETH"].quantity == Decimal(2)
        assert records["ETH"].value_usd == Decimal(6000)
        assert records["USDT"].quantity == Decimal(5)
        assert records["USDT"].value_usd == Decimal(5)
        assert all(r.status == RecordStatus.OK for r in sink.records)
        assert all(r.timestamp == FIXED_TIME for r in sink.records)
        assert all(r.address == W1.address and r.network == "ETH" for r in sink.records)

        assert summary.success
        assert summary.state == RunState.DONE
        assert summary.trigger == TriggerType.SCHEDULED
        assert summary.fetched_records == 2
        assert summary.total_value_usd == Decimal(6005)
        assert summary.wallets_processed == 1
        assert summary.errors == []
        assert summary.warnings == []
        assert orchestrator.state == RunState.DONE
        assert sink.batches == 1

    @pytest.mark.asyncio
    async def test_prices_fetched_once_before_wallets(self, no_sleep, clock):
        quotes = FakeQuoteProvider(PRICES)
        orchestrator, _, _ = make_orchestrator(no_sleep, clock, wallets=(W1, W2, W3), quotes=quotes)

        await orchestrator.run()

        assert quotes.requests == [["ETH", "USDT"]]

    @pytest.mark.asyncio
    async def test_last_sync_and_run_state(self, no_sleep, clock):
        orchestrator, source, _ = make_orchestrator(no_sleep, clock)

        summary = await orchestrator.run()

        assert source.wallets[0].last_sync == FIXED_TIME
        info = orchestrator.last_run()
        assert info.run_id == summary.run_id
        assert info.success
        assert info.state == RunState.DONE
        assert info.finished_at == FIXED_TIME
        assert info.fetched_records == 2

    @pytest.mark.asyncio
    async def test_wallet_without_records_is_empty(self, no_sleep, clock):
        exchange = Wallet(id="k1", name="Exchange", network="KUCOIN", address="MAIN")
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, wallets=(exchange,))

        summary = await orchestrator.run()

        assert summary.success
        assert summary.wallets_processed == 1
        assert summary.wallets_empty == 1
        assert sink.records == []


# ============================================================
# FATAL CONFIGURATION
# ============================================================

class TestFatalConfig:
    """Nothing runs; only the failed run state is persisted."""

    @pytest.mark.asyncio
    async def test_no_active_wallets(self, no_sleep, clock):
        inactive = Wallet(id="w9", name="Off", network="ETH", address=W1.address, active=False)
        quotes = FakeQuoteProvider(PRICES)
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, wallets=(inactive,), quotes=quotes)

        summary = await orchestrator.run()

        assert summary.fatal
        assert not summary.success
        assert summary.state == RunState.DONE
        assert summary.errors == ["fatal config: No active wallets configured"]
        assert quotes.requests == []
        assert sink.records == []
        info = orchestrator.last_run()
        assert info.run_id == summary.run_id
        assert info.state == RunState.DONE
        assert not info.success
        assert info.error_count == 1

    @pytest.mark.asyncio
    async def test_no_active_tokens(self, no_sleep, clock):
        orchestrator, _, _ = make_orchestrator(no_sleep, clock, tokens=())

        summary = await orchestrator.run()

        assert summary.fatal
        assert summary.errors == ["fatal config: No active tokens configured"]


# ============================================================
# WALLET ISOLATION
# ============================================================

class TestWalletIsolation:
    """One failing wallet never affects the others."""

    @pytest.mark.asyncio
    async def test_unsupported_network_wallet(self, no_sleep, clock):
        bad = Wallet(id="w2", name="Doge", network="DOGE", address="D123")
        orchestrator, source, sink = make_orchestrator(no_sleep, clock, wallets=(W1, bad, W3))

        summary = await orchestrator.run()

        assert summary.success
        assert summary.wallets_processed == 2
        assert summary.wallets_failed == 1
        assert summary.errors == ["wallet w2: Unsupported network: DOGE"]
        assert {r.wallet_id for r in sink.records} == {"w1", "w3"}
        synced = {w.id for w in source.wallets if w.last_sync is not None}
        assert synced == {"w1", "w3"}

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self, no_sleep, clock):
        provider = eth_provider(AddressAwareProvider, broken={W2.address})
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, wallets=(W1, W2), provider=provider)

        summary = await orchestrator.run()

        assert summary.wallets_processed == 1
        assert summary.wallets_failed == 1
        assert len(summary.errors) == 1
        assert summary.errors[0] == "wallet w2: RuntimeError: decoder exploded"
        assert len(sink.records) == 2

    @pytest.mark.asyncio
    async def test_sink_failure_fails_wallet(self, no_sleep, clock):
        orchestrator, _, _ = make_orchestrator(no_sleep, clock, sink=FailingSink())

        summary = await orchestrator.run()

        assert not summary.success
        assert summary.wallets_failed == 1
        assert summary.errors == ["wallet w1: disk full"]

    @pytest.mark.asyncio
    async def test_provider_failure_degrades_records(self, no_sleep, clock):
        provider = (
            FakeBalanceProvider("p")
            .script(QueryKind.NATIVE, None, reading(10**18))
            .script(QueryKind.TOKEN, USDT, FetchError("HTTP 503", provider_name="p", status_code=503))
        )
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, provider=provider)

        summary = await orchestrator.run()

        records = {r.symbol: r for r in sink.records}
        assert records["USDT"].quantity == Decimal(0)
        assert records["USDT"].status == RecordStatus.DEGRADED
        assert records["ETH"].status == RecordStatus.OK
        assert summary.success
        assert summary.errors == []
        assert len(summary.warnings) == 1
        assert summary.warnings[0].startswith("wallet w1 token USDT: token:ETH: all providers failed")


# ============================================================
# PRICE DEGRADATION
# ============================================================

class TestPriceDegradation:
    """Price failures produce zero-priced records, not aborted runs."""

    @pytest.mark.asyncio
    async def test_failed_price_batch(self, no_sleep, clock):
        quotes = FakeQuoteProvider(PRICES, failures=[Outcome.permanent("HTTP 401", "fake_quotes", status_code=401)])
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, quotes=quotes)

        summary = await orchestrator.run()

        assert summary.success
        assert len(sink.records) == 2
        assert all(r.price_usd == Decimal(0) for r in sink.records)
        assert all(r.status == RecordStatus.DEGRADED for r in sink.records)
        assert summary.total_value_usd == Decimal(0)
        assert len(summary.warnings) == 1
        assert "price batch 1/1" in summary.warnings[0]

    @pytest.mark.asyncio
    async def test_unknown_symbol_priced_zero(self, no_sleep, clock):
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, quotes=FakeQuoteProvider({"ETH": 3000}))

        await orchestrator.run()

        records = {r.symbol: r for r in sink.records}
        assert records["USDT"].price_usd == Decimal(0)
        assert records["USDT"].status == RecordStatus.DEGRADED
        assert records["ETH"].status == RecordStatus.OK

    @pytest.mark.asyncio
    async def test_price_fetch_exception(self, no_sleep, clock):
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, quotes=ExplodingQuoteProvider())

        summary = await orchestrator.run()

        assert summary.success
        assert len(sink.records) == 2
        assert summary.errors == ["price fetch failed: RuntimeError: quote client crashed"]


# ============================================================
# DUPLICATES AND DRY RUN
# ============================================================

class TestDuplicatesAndDryRun:
    """Duplicate filter and dry-run reporting."""

    @pytest.mark.asyncio
    async def test_second_run_same_timestamp_skipped(self, no_sleep, clock):
        orchestrator, _, sink = make_orchestrator(no_sleep, clock)

        await orchestrator.run()
        second = await orchestrator.run()

        assert len(sink.records) == 2
        assert second.fetched_records == 0
        assert second.duplicates_skipped == 2
        assert second.success

    @pytest.mark.asyncio
    async def test_next_timestamp_is_not_duplicate(self, no_sleep, clock):
        orchestrator, _, sink = make_orchestrator(no_sleep, clock)

        await orchestrator.run()
        clock.advance(seconds=3600)
        second = await orchestrator.run()

        assert second.fetched_records == 2
        assert len(sink.records) == 4

    @pytest.mark.asyncio
    async def test_same_address_twice_in_one_run(self, no_sleep, clock):
        alias = Wallet(id="w1b", name="Main again", network="ETH", address=W1.address)
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, wallets=(W1, alias), max_concurrent_wallets=1)

        summary = await orchestrator.run()

        assert len(sink.records) == 2
        assert summary.duplicates_skipped == 2
        assert summary.wallets_processed == 2

    @pytest.mark.asyncio
    async def test_one_duplicate_lookup_per_wallet(self, no_sleep, clock):
        sink = CountingSink()
        orchestrator, _, _ = make_orchestrator(no_sleep, clock, wallets=(W1, W2), sink=sink)

        await orchestrator.run()
        second = await orchestrator.run()

        assert sorted(sink.key_lookups) == sorted([W1.address, W2.address] * 2)
        assert sink.single_lookups == 0
        assert second.duplicates_skipped == 4
        assert len(sink.records) == 4

    @pytest.mark.asyncio
    async def test_protection_disabled(self, no_sleep, clock):
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, duplicate_protection=False)

        await orchestrator.run()
        await orchestrator.run()

        assert len(sink.records) == 4

    @pytest.mark.asyncio
    async def test_dry_run_matches_live_counts(self, no_sleep, clock):
        live, _, live_sink = make_orchestrator(no_sleep, clock, wallets=(W1, W2))
        dry, dry_source, dry_sink = make_orchestrator(no_sleep, clock, wallets=(W1, W2), dry_run=True)

        live_summary = await live.run()
        dry_summary = await dry.run()

        assert dry_summary.dry_run
        assert dry_summary.fetched_records == live_summary.fetched_records == 4
        assert dry_summary.total_value_usd == live_summary.total_value_usd
        assert dry_summary.duplicates_skipped == live_summary.duplicates_skipped
        assert len(live_sink.records) == 4
        assert dry_sink.records == []
        assert dry_sink.batches == 0
        assert all(w.last_sync is None for w in dry_source.wallets)
        assert dry.last_run().dry_run


# ============================================================
# CANCELLATION
# ============================================================

class TestCancellation:
    """cancel() and run_timeout_seconds skip unfinished wallets."""

    @pytest.mark.asyncio
    async def test_run_timeout_skips_hanging_wallet(self, no_sleep, clock):
        provider = eth_provider(AddressAwareProvider, blocked={W2.address})
        orchestrator, source, sink = make_orchestrator(
            no_sleep, clock, wallets=(W1, W2), provider=provider, run_timeout_seconds=0.2,
        )

        summary = await orchestrator.run()

        assert summary.cancelled
        assert summary.wallets_processed == 1
        assert summary.wallets_skipped == 1
        assert summary.success
        assert summary.errors == ["Run timed out: 1 wallet(s) skipped"]
        assert {r.wallet_id for r in sink.records} == {"w1"}
        assert [w.id for w in source.wallets if w.last_sync] == ["w1"]
        assert summary.state == RunState.DONE

    @pytest.mark.asyncio
    async def test_cancel_during_run(self, no_sleep, clock):
        provider = eth_provider(AddressAwareProvider, blocked={W1.address})
        orchestrator, _, sink = make_orchestrator(no_sleep, clock, provider=provider)

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.05)
        orchestrator.cancel()
        summary = await asyncio.wait_for(task, timeout=5)

        assert summary.cancelled
        assert summary.wallets_skipped == 1
        assert summary.wallets_processed == 0
        assert not summary.success
        assert summary.errors == ["Run cancelled: 1 wallet(s) skipped"]
        assert sink.records == []
        assert orchestrator.last_run() is not None

    @pytest.mark.asyncio
    async def test_cancel_outside_run_is_noop(self, no_sleep, clock):
        orchestrator, _, _ = make_orchestrator(no_sleep, clock)

        orchestrator.cancel()
        summary = await orchestrator.run()

        assert not summary.cancelled
        assert summary.success
