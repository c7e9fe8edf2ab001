"""
Aggregation Package - Balance aggregation and price reconciliation.

Components:
- models: Wallet, Token, BalanceEntry, FinancialRecord, RunSummary
- config: AggregatorConfig, ProviderSettings
- config_source: wallet/token snapshot and run state
- sinks: append-only record sinks
- resolver: per-wallet balance resolution with gap-fill
- orchestrator: run state machine and factory
- cli: command-line entry point

Quick Start:
    from aggregation import AggregatorConfig, TriggerType, build_orchestrator

    orchestrator = build_orchestrator(AggregatorConfig.from_env())
    summary = await orchestrator.run(TriggerType.MANUAL)
    await orchestrator.close()
"""

from aggregation.config import AggregatorConfig, ProviderSettings
from aggregation.config_source import ConfigSource, DatabaseConfigSource, InMemoryConfigSource
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
from aggregation.orchestrator import AggregationOrchestrator, build_orchestrator
from aggregation.resolver import BalanceResolver, Resolution
from aggregation.sinks import DatabaseRecordSink, InMemoryRecordSink, RecordSink


__all__ = [
    "AggregatorConfig",
    "ProviderSettings",
    "ConfigSource",
    "DatabaseConfigSource",
    "InMemoryConfigSource",
    "BalanceEntry",
    "FinancialRecord",
    "LastRunInfo",
    "RecordStatus",
    "RunState",
    "RunSummary",
    "Token",
    "TriggerType",
    "Wallet",
    "AggregationOrchestrator",
    "build_orchestrator",
    "BalanceResolver",
    "Resolution",
    "DatabaseRecordSink",
    "InMemoryRecordSink",
    "RecordSink",
]
