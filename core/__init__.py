"""
Core Module Package.

This package contains the infrastructure components
that all other packages depend on.

Components:
- clock: Unified time abstraction
- outcome: Tagged provider call result
- retry: Shared retry/backoff driver
- exceptions: Custom exception hierarchy
- logging_utils: Logging setup and credential masking
"""

from core.clock import ClockProtocol, MockClock, SystemClock, now_utc
from core.exceptions import (
    AggregatorException,
    ConfigurationError,
    FatalConfigError,
    InvalidConfigError,
    MissingConfigError,
    ResolutionError,
    RunCancelledError,
    SinkError,
    UnsupportedNetworkError,
)
from core.logging_utils import mask_value, setup_logging
from core.outcome import Outcome, OutcomeKind
from core.retry import RetryDriver, RetryPolicy


__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "now_utc",
    "AggregatorException",
    "ConfigurationError",
    "FatalConfigError",
    "InvalidConfigError",
    "MissingConfigError",
    "ResolutionError",
    "RunCancelledError",
    "SinkError",
    "UnsupportedNetworkError",
    "mask_value",
    "setup_logging",
    "Outcome",
    "OutcomeKind",
    "RetryDriver",
    "RetryPolicy",
]
