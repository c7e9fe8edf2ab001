"""
Aggregation - Orchestrator.

============================================================
RESPONSIBILITY
============================================================
Runs one aggregation pass end to end and reports it.

- Loads the wallet/token snapshot
- Fetches prices once, before any wallet work
- Resolves wallets as independent, bounded asyncio tasks
- Builds FinancialRecords and writes (or dry-run logs) them
- Persists last-sync and run state

============================================================
STATE MACHINE
============================================================
INIT -> LOADING_CONFIG -> FETCHING_PRICES -> PROCESSING_WALLETS
     -> FINALIZING -> DONE

- LOADING_CONFIG failure is fatal: straight to DONE (run state
  is still saved)
- FETCHING_PRICES failure degrades to all-zero prices
- A wallet exception is recorded and the other wallets go on
- Cancel / run timeout skips remaining wallets and goes to
  FINALIZING with whatever was collected

run() never raises.

============================================================
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Set

from core.clock import ClockProtocol, SystemClock
from core.exceptions import (
    AggregatorException,
    ConfigurationError,
    FatalConfigError,
    ResolutionError,
    RunCancelledError,
    UnsupportedNetworkError,
    wrap_exception,
)
from core.retry import RetryDriver, RetryPolicy, SleepFunc
from balance_providers.models import Network
from balance_providers.registry import ProviderRegistry, build_default_registry
from price_feed.coingecko import CoinGeckoQuoteProvider
from price_feed.fetcher import PriceFetcher
from price_feed.models import PriceFetchResult, PriceQuote
from aggregation.config import AggregatorConfig
from aggregation.config_source import ConfigSource, DatabaseConfigSource
from aggregation.models import (
    BalanceEntry,
    FinancialRecord,
    LastRunInfo,
    RecordStatus,
    RunState,
    RunSummary,
    Token,
    TriggerType,
    Wallet,
)
from aggregation.resolver import BalanceResolver
from aggregation.sinks import DatabaseRecordSink, RecordSink
from storage.database import create_database_engine, get_session_factory, init_schema


logger = logging.getLogger(__name__)


class AggregationOrchestrator:
    """
    Single entry point for aggregation runs.

    Usage:
        orchestrator = build_orchestrator(AggregatorConfig.from_env())
        summary = await orchestrator.run(TriggerType.SCHEDULED)
        print(summary.to_dict())
    """

    def __init__(
        self,
        config: AggregatorConfig,
        config_source: ConfigSource,
        sink: RecordSink,
        registry: ProviderRegistry,
        price_fetcher: PriceFetcher,
        clock: Optional[ClockProtocol] = None,
        resolver: Optional[BalanceResolver] = None,
    ) -> None:
        self._config = config
        self._config_source = config_source
        self._sink = sink
        self._registry = registry
        self._price_fetcher = price_fetcher
        self._clock = clock or SystemClock()
        self._resolver = resolver or BalanceResolver(registry, enable_discovery=config.enable_token_discovery)

        self._state = RunState.INIT
        self._cancel_event: Optional[asyncio.Event] = None
        self._processed_ids: List[str] = []

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def cancel(self) -> None:
        """Abort the current run: in-flight waits stop, remaining wallets are skipped."""
        if self._cancel_event is not None and not self._cancel_event.is_set():
            logger.warning("[orchestrator] Cancellation requested")
            self._cancel_event.set()

    def last_run(self) -> Optional[LastRunInfo]:
        """Most recent persisted run, or None."""
        return self._config_source.get_last_run()

    async def close(self) -> None:
        await self._registry.close()

    # =========================================================
    # RUN
    # =========================================================

    async def run(self, trigger: TriggerType = TriggerType.MANUAL) -> RunSummary:
        """Execute one aggregation run. Never raises."""
        summary = RunSummary(trigger=trigger, started_at=self._clock.now(), dry_run=self._config.dry_run)
        self._cancel_event = asyncio.Event()
        self._processed_ids = []
        loop = asyncio.get_running_loop()
        deadline = None
        if self._config.run_timeout_seconds:
            deadline = loop.time() + self._config.run_timeout_seconds

        self._transition(summary, RunState.INIT)
        logger.info(
            f"[orchestrator] Run {summary.run_id} started trigger={trigger.value} "
            f"dry_run={self._config.dry_run}"
        )

        try:
            loaded = self._load_config(summary)
            if loaded is not None:
                wallets, tokens = loaded
                summary.wallets_total = len(wallets)

                self._transition(summary, RunState.FETCHING_PRICES)
                prices = await self._fetch_prices(summary, wallets, tokens, deadline)

                self._transition(summary, RunState.PROCESSING_WALLETS)
                if summary.cancelled:
                    summary.wallets_skipped = len(wallets)
                else:
                    await self._process_wallets(summary, wallets, tokens, prices, deadline)

                self._transition(summary, RunState.FINALIZING)
                self._finalize(summary)
        except Exception as e:
            # Last-resort boundary; anything here is a bug, not a provider failure
            logger.exception(f"[orchestrator] Run {summary.run_id} aborted: {e}")
            summary.add_error(f"run aborted: {type(e).__name__}: {e}")
            summary.fatal = True
        finally:
            self._cancel_event = None

        if summary.finished_at is None:
            summary.finished_at = self._clock.now()
        self._transition(summary, RunState.DONE)
        # Fatal and aborted runs are persisted too, so last_run() shows them
        self._save_run_state(summary)
        logger.info(
            f"[orchestrator] Run {summary.run_id} done success={summary.success} "
            f"records={summary.fetched_records} processed={summary.wallets_processed}/{summary.wallets_total} "
            f"failed={summary.wallets_failed} skipped={summary.wallets_skipped} "
            f"errors={len(summary.errors)} warnings={len(summary.warnings)}"
        )
        return summary

    def _transition(self, summary: RunSummary, state: RunState) -> None:
        logger.debug(f"[orchestrator] {self._state.value} -> {state.value}")
        self._state = state
        summary.state = state

    # =========================================================
    # LOADING_CONFIG
    # =========================================================

    def _load_config(self, summary: RunSummary) -> Optional[tuple]:
        self._transition(summary, RunState.LOADING_CONFIG)
        try:
            wallets = self._config_source.load_wallets()
            tokens = self._config_source.load_tokens()
            if not wallets:
                raise FatalConfigError("No active wallets configured")
            if not tokens:
                raise FatalConfigError("No active tokens configured")
        except ConfigurationError as e:
            logger.error(f"[orchestrator] {e.to_log_format()}")
            summary.add_error(f"fatal config: {e.message}")
            summary.fatal = True
            return None

        logger.info(f"[orchestrator] Loaded {len(wallets)} active wallets, {len(tokens)} active tokens")
        return wallets, tokens

    # =========================================================
    # FETCHING_PRICES
    # =========================================================

    @staticmethod
    def _price_symbols(wallets: Sequence[Wallet], tokens: Sequence[Token]) -> List[str]:
        symbols = [t.symbol for t in tokens]
        for wallet in wallets:
            try:
                native = Network.parse(wallet.network).native_symbol
            except UnsupportedNetworkError:
                # Reported by the wallet itself during processing
                continue
            if native:
                symbols.append(native)
        return symbols

    async def _fetch_prices(
        self,
        summary: RunSummary,
        wallets: Sequence[Wallet],
        tokens: Sequence[Token],
        deadline: Optional[float],
    ) -> PriceFetchResult:
        symbols = self._price_symbols(wallets, tokens)
        task = asyncio.create_task(self._price_fetcher.fetch(symbols))
        pending = await self._wait_bounded({task}, deadline)

        if pending:
            self._mark_cancelled(summary, "during price fetch")
            return self._zero_prices(symbols)

        try:
            result = task.result()
        except Exception as e:
            logger.error(f"[orchestrator] Price fetch failed, using zero prices: {e}")
            summary.add_error(f"price fetch failed: {type(e).__name__}: {e}")
            return self._zero_prices(symbols)

        for failure in result.failures:
            summary.add_warning(failure)
        return result

    def _zero_prices(self, symbols: Sequence[str]) -> PriceFetchResult:
        now = self._clock.now()
        result = PriceFetchResult()
        for symbol in symbols:
            symbol = symbol.strip().upper()
            if symbol:
                result.quotes[symbol] = PriceQuote.zero(symbol, now)
        return result

    # =========================================================
    # PROCESSING_WALLETS
    # =========================================================

    async def _process_wallets(
        self,
        summary: RunSummary,
        wallets: Sequence[Wallet],
        tokens: Sequence[Token],
        prices: PriceFetchResult,
        deadline: Optional[float],
    ) -> None:
        run_timestamp = self._clock.now()
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrent_wallets))
        # (network, address, symbol) already emitted in this run
        seen: Set[tuple] = set()

        async def process(wallet: Wallet) -> None:
            async with semaphore:
                await self._process_wallet(summary, wallet, tokens, prices, run_timestamp, seen)

        tasks = {asyncio.create_task(process(w), name=f"wallet:{w.id}") for w in wallets}
        pending = await self._wait_bounded(tasks, deadline)
        if pending:
            summary.wallets_skipped = len(pending)
            self._mark_cancelled(summary, f"{len(pending)} wallet(s) skipped")

    async def _process_wallet(
        self,
        summary: RunSummary,
        wallet: Wallet,
        tokens: Sequence[Token],
        prices: PriceFetchResult,
        run_timestamp: datetime,
        seen: Set[tuple],
    ) -> None:
        try:
            resolution = await self._resolver.resolve(wallet, tokens)
            records = self._build_records(summary, wallet, resolution.entries, prices, run_timestamp)
            emitted = self._emit(summary, wallet, records, seen)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e if isinstance(e, AggregatorException) else wrap_exception(
                e, ResolutionError, wallet_id=wallet.id, network=wallet.network
            )
            logger.error(f"[orchestrator] wallet={wallet.id} failed: {error.to_log_format()}")
            summary.wallets_failed += 1
            summary.add_error(f"wallet {wallet.id}: {error.message}")
            return

        for warning in resolution.warnings:
            summary.add_warning(warning)
        summary.wallets_processed += 1
        if not records:
            summary.wallets_empty += 1
        self._processed_ids.append(wallet.id)
        logger.info(f"[orchestrator] wallet={wallet.id} processed records={emitted}")

    def _build_records(
        self,
        summary: RunSummary,
        wallet: Wallet,
        entries: Sequence[BalanceEntry],
        prices: PriceFetchResult,
        run_timestamp: datetime,
    ) -> List[FinancialRecord]:
        records = []
        for entry in entries:
            quote = prices.quotes.get(entry.symbol)
            price = quote.price_usd if quote is not None else Decimal(0)
            degraded = not entry.resolved or quote is None or not quote.resolved
            records.append(
                FinancialRecord(
                    timestamp=run_timestamp,
                    network=entry.network.value,
                    symbol=entry.symbol,
                    wallet_id=wallet.id,
                    address=wallet.address,
                    quantity=entry.quantity,
                    price_usd=price,
                    status=RecordStatus.DEGRADED if degraded else RecordStatus.OK,
                    source=entry.source,
                    run_id=summary.run_id,
                )
            )
        return records

    def _emit(
        self,
        summary: RunSummary,
        wallet: Wallet,
        records: Sequence[FinancialRecord],
        seen: Set[tuple],
    ) -> int:
        """Duplicate filter, then sink write or dry-run log. Same counts either way."""
        kept = []
        stored: Set[tuple] = set()
        if self._config.duplicate_protection and records:
            # All records of one wallet share its address and the run timestamp
            stored = self._sink.existing_keys(records[0].timestamp, wallet.address)
        for record in records:
            if self._config.duplicate_protection:
                key = (record.network, record.address, record.symbol)
                if key in seen or (record.network, record.symbol) in stored:
                    summary.duplicates_skipped += 1
                    logger.info(
                        f"[orchestrator] wallet={wallet.id} duplicate skipped "
                        f"{record.symbol}@{record.address} ts={record.timestamp.isoformat()}"
                    )
                    continue
                seen.add(key)
            kept.append(record)

        if self._config.dry_run:
            for record in kept:
                logger.info(
                    f"[orchestrator] DRY RUN wallet={wallet.id} {record.network} {record.symbol} "
                    f"qty={record.quantity} price={record.price_usd} value={record.value_usd} "
                    f"status={record.status.value}"
                )
        elif kept:
            self._sink.write_batch(kept)

        summary.fetched_records += len(kept)
        summary.total_value_usd += sum((r.value_usd for r in kept), Decimal(0))
        return len(kept)

    # =========================================================
    # CANCELLATION
    # =========================================================

    async def _wait_bounded(self, tasks: Set[asyncio.Task], deadline: Optional[float]) -> Set[asyncio.Task]:
        """
        Wait for tasks until done, cancel() or deadline.

        Unfinished tasks are cancelled (aborting their backoff sleeps)
        and returned.
        """
        loop = asyncio.get_running_loop()
        cancel_waiter = asyncio.create_task(self._cancel_event.wait())
        pending = set(tasks)
        try:
            while pending:
                timeout = None
                if deadline is not None:
                    timeout = max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                pending -= done
                if cancel_waiter in done:
                    break
                if deadline is not None and loop.time() >= deadline:
                    break
        finally:
            cancel_waiter.cancel()

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return pending

    def _mark_cancelled(self, summary: RunSummary, detail: str) -> None:
        reason = "Run cancelled" if self._cancel_event.is_set() else "Run timed out"
        error = RunCancelledError(f"{reason}: {detail}", context={"run_id": summary.run_id})
        logger.warning(f"[orchestrator] {error.to_log_format()}")
        summary.cancelled = True
        summary.add_error(error.message)

    # =========================================================
    # FINALIZING
    # =========================================================

    def _finalize(self, summary: RunSummary) -> None:
        summary.finished_at = self._clock.now()
        processed = list(self._processed_ids)

        if processed and not self._config.dry_run:
            try:
                self._config_source.update_last_sync(processed, summary.finished_at)
            except AggregatorException as e:
                logger.error(f"[orchestrator] {e.to_log_format()}")
                summary.add_error(f"last sync update failed: {e.message}")

    def _save_run_state(self, summary: RunSummary) -> None:
        try:
            self._config_source.save_run_state(summary)
        except AggregatorException as e:
            logger.error(f"[orchestrator] {e.to_log_format()}")
            summary.add_error(f"run state not saved: {e.message}")


# =============================================================
# FACTORY
# =============================================================

def build_orchestrator(
    config: AggregatorConfig,
    config_source: Optional[ConfigSource] = None,
    sink: Optional[RecordSink] = None,
    clock: Optional[ClockProtocol] = None,
    sleep: Optional[SleepFunc] = None,
) -> AggregationOrchestrator:
    """
    Wire the production orchestrator from one config object.

    Config source and sink default to the SQLAlchemy-backed ones
    on config.database_url.
    """
    if config_source is None or sink is None:
        engine = create_database_engine(config.database_url)
        init_schema(engine)
        factory = get_session_factory(engine)
        config_source = config_source or DatabaseConfigSource(factory)
        sink = sink or DatabaseRecordSink(factory)

    settings = config.providers
    price_fetcher = PriceFetcher(
        CoinGeckoQuoteProvider(
            api_key=settings.coingecko_api_key,
            pro=settings.coingecko_pro,
            timeout=config.request_timeout_seconds,
        ),
        retry=RetryDriver(
            RetryPolicy(max_attempts=config.max_retries, base_delay=config.api_base_delay),
            sleep=sleep,
        ),
        batch_size=config.price_batch_size,
        batch_delay=config.price_batch_delay_seconds,
        clock=clock,
        sleep=sleep,
    )

    return AggregationOrchestrator(
        config=config,
        config_source=config_source,
        sink=sink,
        registry=build_default_registry(config, sleep=sleep),
        price_fetcher=price_fetcher,
        clock=clock,
    )


__all__ = [
    "AggregationOrchestrator",
    "build_orchestrator",
]
