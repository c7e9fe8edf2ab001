"""
Config Source and Record Sink Tests.

============================================================
PURPOSE
============================================================
- YAML and database-backed wallet/token snapshots
- Last-sync and run-state persistence
- Append-only record sink and duplicate lookup
- A full run against in-memory SQLite

============================================================
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from core.exceptions import FatalConfigError, InvalidConfigError, SinkError
from core.retry import RetryDriver, RetryPolicy
from balance_providers.models import Network, QueryKind
from balance_providers.registry import NetworkStrategy
from price_feed.fetcher import PriceFetcher
from aggregation.config import AggregatorConfig
from aggregation.config_source import DatabaseConfigSource, InMemoryConfigSource
from aggregation.models import FinancialRecord, RecordStatus, RunState, RunSummary, Token, TriggerType, Wallet
from aggregation.orchestrator import AggregationOrchestrator
from aggregation.sinks import DatabaseRecordSink, InMemoryRecordSink
from storage.database import DatabasePersistenceError, create_database_engine, get_session_factory, init_schema
from storage.repositories import FinancialRecordRepository
from tests.conftest import FIXED_TIME, FakeBalanceProvider, FakeQuoteProvider, make_registry, reading


USDT = "0xdAC17F958D2ee523a2206206994597C13D831ec7"

WALLETS_YAML = """
wallets:
  - {id: w1, name: Main, network: ETH, address: "0x1111111111111111111111111111111111111111"}
  - {id: w2, network: BTC, address: bc1qxyz, active: false}
  - {id: k1, name: Exchange, network: KUCOIN, address: MAIN, credentials_ref: MAIN}
tokens:
  - {symbol: eth, network: ETH}
  - {symbol: USDT, network: ETH, contract: "0xdAC17F958D2ee523a2206206994597C13D831ec7", decimals: 6}
  - {symbol: DOGE, network: ETH, active: false}
"""


@pytest.fixture
def session_factory():
    engine = create_database_engine("sqlite://")
    init_schema(engine)
    yield get_session_factory(engine)
    engine.dispose()


def make_record(symbol="ETH", address="0xabc", quantity="2", price="3000", network="ETH"):
    return FinancialRecord(
        timestamp=FIXED_TIME,
        network=network,
        symbol=symbol,
        wallet_id="w1",
        address=address,
        quantity=Decimal(quantity),
        price_usd=Decimal(price),
        run_id="r1",
    )


# ============================================================
# IN-MEMORY / YAML SOURCE
# ============================================================

class TestInMemoryConfigSource:
    """Tests for InMemoryConfigSource."""

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "wallets.yaml"
        path.write_text(WALLETS_YAML)

        source = InMemoryConfigSource.from_yaml(path)

        wallets = source.load_wallets()
        assert [w.id for w in wallets] == ["w1", "k1"]
        assert wallets[1].credentials_ref == "MAIN"
        tokens = source.load_tokens()
        assert [t.symbol for t in tokens] == ["ETH", "USDT"]
        assert tokens[1].decimals == 6
        assert len(source.wallets) == 3

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("wallets:\n  - {name: no id}\n")

        with pytest.raises(InvalidConfigError):
            InMemoryConfigSource.from_yaml(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidConfigError):
            InMemoryConfigSource.from_yaml(tmp_path / "absent.yaml")

    def test_negative_decimals_rejected(self):
        with pytest.raises(InvalidConfigError):
            Token(symbol="BAD", network="ETH", decimals=-1)

    def test_last_sync_and_run_state(self):
        source = InMemoryConfigSource(
            wallets=[Wallet("w1", "A", "ETH", "0x1"), Wallet("w2", "B", "ETH", "0x2")],
            tokens=[Token("ETH", "ETH")],
        )
        summary = RunSummary(trigger=TriggerType.MANUAL, started_at=FIXED_TIME)

        source.update_last_sync(["w2"], FIXED_TIME)
        source.save_run_state(summary)

        assert [w.last_sync for w in source.wallets] == [None, FIXED_TIME]
        assert source.get_last_run().run_id == summary.run_id


# ============================================================
# DATABASE SOURCE
# ============================================================

class TestDatabaseConfigSource:
    """Tests for DatabaseConfigSource."""

    def test_round_trip_configuration(self, session_factory):
        source = DatabaseConfigSource(session_factory)
        source.add_wallet(Wallet("w1", "Main", "ETH", "0x1"))
        source.add_wallet(Wallet("w2", "Off", "ETH", "0x2", active=False))
        source.add_token(Token("USDT", "ETH", contract=USDT, decimals=6))

        wallets = source.load_wallets()
        tokens = source.load_tokens()

        assert [w.id for w in wallets] == ["w1"]
        assert tokens == [Token("USDT", "ETH", contract=USDT, decimals=6)]

    def test_last_sync_is_timezone_aware(self, session_factory):
        source = DatabaseConfigSource(session_factory)
        source.add_wallet(Wallet("w1", "Main", "ETH", "0x1"))

        source.update_last_sync(["w1"], FIXED_TIME)

        assert source.load_wallets()[0].last_sync == FIXED_TIME

    def test_run_state(self, session_factory):
        source = DatabaseConfigSource(session_factory)
        assert source.get_last_run() is None

        summary = RunSummary(trigger=TriggerType.SCHEDULED, started_at=FIXED_TIME, dry_run=True)
        summary.state = RunState.FINALIZING
        summary.finished_at = FIXED_TIME
        summary.add_error("wallet w2: Unsupported network: DOGE")
        source.save_run_state(summary)

        info = source.get_last_run()
        assert info.run_id == summary.run_id
        assert info.trigger == TriggerType.SCHEDULED
        assert info.started_at == FIXED_TIME
        assert info.error_count == 1
        assert info.dry_run
        assert not info.success

    def test_load_failure_is_fatal(self, session_factory):
        source = DatabaseConfigSource(session_factory)

        with patch(
            "aggregation.config_source.WalletRepository.list_active",
            side_effect=DatabasePersistenceError("database is locked"),
        ):
            with pytest.raises(FatalConfigError):
                source.load_wallets()

    def test_state_write_failure_is_sink_error(self, session_factory):
        source = DatabaseConfigSource(session_factory)

        with patch(
            "aggregation.config_source.WalletRepository.update_last_sync",
            side_effect=DatabasePersistenceError("disk I/O error"),
        ):
            with pytest.raises(SinkError):
                source.update_last_sync(["w1"], FIXED_TIME)


# ============================================================
# SINKS
# ============================================================

class TestRecordSinks:
    """Tests for InMemoryRecordSink and DatabaseRecordSink."""

    def test_in_memory_exists(self):
        sink = InMemoryRecordSink()
        sink.write_batch([make_record()])

        assert sink.exists(FIXED_TIME, "0xabc", "ETH")
        assert sink.exists(FIXED_TIME, "0xabc", "ETH", "ETH")
        assert not sink.exists(FIXED_TIME, "0xabc", "ETH", "BASE")
        assert not sink.exists(FIXED_TIME, "0xabc", "USDT")

    def test_in_memory_existing_keys(self):
        sink = InMemoryRecordSink()
        sink.write_batch([make_record("ETH"), make_record("ETH", network="BASE"), make_record("BTC", address="0xdef")])

        assert sink.existing_keys(FIXED_TIME, "0xabc") == {("ETH", "ETH"), ("BASE", "ETH")}
        assert sink.existing_keys(FIXED_TIME, "0xnone") == set()

    def test_database_write_and_exists(self, session_factory):
        sink = DatabaseRecordSink(session_factory)

        written = sink.write_batch([make_record("ETH"), make_record("USDT", quantity="5", price="1")])

        assert written == 2
        assert sink.exists(FIXED_TIME, "0xabc", "USDT", "ETH")
        assert not sink.exists(FIXED_TIME, "0xabc", "BTC")
        assert sink.write_batch([]) == 0
        assert sink.existing_keys(FIXED_TIME, "0xabc") == {("ETH", "ETH"), ("ETH", "USDT")}

    def test_database_existing_keys_failure(self, session_factory):
        sink = DatabaseRecordSink(session_factory)

        with patch(
            "aggregation.sinks.FinancialRecordRepository.existing_keys_for",
            side_effect=DatabasePersistenceError("database is locked"),
        ):
            with pytest.raises(SinkError):
                sink.existing_keys(FIXED_TIME, "0xabc")

    def test_database_write_failure(self, session_factory):
        sink = DatabaseRecordSink(session_factory)

        with patch(
            "aggregation.sinks.FinancialRecordRepository.add_many",
            side_effect=DatabasePersistenceError("disk full"),
        ):
            with pytest.raises(SinkError):
                sink.write_batch([make_record()])


# ============================================================
# FULL RUN ON SQLITE
# ============================================================

class TestDatabaseRun:
    """Orchestrator run persisted through SQLAlchemy."""

    @pytest.mark.asyncio
    async def test_run_persists_records_and_state(self, session_factory, no_sleep, clock):
        source = DatabaseConfigSource(session_factory)
        source.add_wallet(Wallet("w1", "Main", "ETH", "0x" + "11" * 20))
        source.add_token(Token("ETH", "ETH"))
        source.add_token(Token("USDT", "ETH", contract=USDT, decimals=6))

        provider = (
            FakeBalanceProvider("p")
            .script(QueryKind.NATIVE, None, reading(2 * 10**18))
            .script(QueryKind.TOKEN, USDT, reading(5_000_000))
        )
        registry = make_registry(
            provider,
            strategies={Network.ETH: NetworkStrategy(native=("p",), token=("p",))},
            sleep=no_sleep,
        )
        orchestrator = AggregationOrchestrator(
            config=AggregatorConfig(),
            config_source=source,
            sink=DatabaseRecordSink(session_factory),
            registry=registry,
            price_fetcher=PriceFetcher(
                FakeQuoteProvider({"ETH": 3000, "USDT": 1}),
                retry=RetryDriver(RetryPolicy(), sleep=no_sleep),
                batch_delay=0,
                clock=clock,
            ),
            clock=clock,
        )

        first = await orchestrator.run()
        second = await orchestrator.run()

        assert first.fetched_records == 2
        assert second.duplicates_skipped == 2
        with session_factory() as session:
            rows = FinancialRecordRepository(session).list_for_timestamp(FIXED_TIME)
            assert sorted(r.symbol for r in rows) == ["ETH", "USDT"]
            assert all(r.status == RecordStatus.OK.value for r in rows)
        assert source.load_wallets()[0].last_sync == FIXED_TIME
        assert orchestrator.last_run().state == RunState.DONE

    @pytest.mark.asyncio
    async def test_fatal_run_is_recorded(self, session_factory, no_sleep, clock):
        source = DatabaseConfigSource(session_factory)
        orchestrator = AggregationOrchestrator(
            config=AggregatorConfig(),
            config_source=source,
            sink=DatabaseRecordSink(session_factory),
            registry=make_registry(FakeBalanceProvider("p"), sleep=no_sleep),
            price_fetcher=PriceFetcher(
                FakeQuoteProvider({}),
                retry=RetryDriver(RetryPolicy(), sleep=no_sleep),
                batch_delay=0,
                clock=clock,
            ),
            clock=clock,
        )

        summary = await orchestrator.run()

        info = source.get_last_run()
        assert summary.fatal
        assert info.run_id == summary.run_id
        assert info.state == RunState.DONE
        assert info.finished_at == FIXED_TIME
        assert not info.success
