"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy shared by every package.

- Provides clear exception hierarchy
- Separates fatal configuration problems from wallet-level ones
- Supports error categorization for run summaries
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
AggregatorException (base)
├── ConfigurationError
│   ├── MissingConfigError
│   ├── InvalidConfigError
│   └── FatalConfigError
├── ResolutionError
│   └── UnsupportedNetworkError
├── SinkError
└── RunCancelledError

Expected provider degradations are NOT exceptions: they travel
as tagged outcomes (see core.outcome).

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, data for the run is affected."""

    CRITICAL = "critical"
    """The run cannot proceed."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error is isolated and the run continues."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class AggregatorException(Exception):
    """
    Base exception for all aggregation engine errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - classification: for error handling decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(AggregatorException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if expected_type:
            context["expected_type"] = expected_type
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, key: str, source: str = "config"):
        super().__init__(
            message=f"Missing required configuration: {key}",
            config_key=key,
            context={"source": source},
        )


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            actual_value=value,
            context={"reason": reason},
        )


class FatalConfigError(ConfigurationError):
    """Configuration makes the run impossible (e.g. no active wallets)."""

    default_severity = Severity.CRITICAL


# ============================================================
# RESOLUTION ERRORS
# ============================================================

class ResolutionError(AggregatorException):
    """Wallet-level failure while resolving balances."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        wallet_id: Optional[str] = None,
        network: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if wallet_id:
            context["wallet_id"] = wallet_id
        if network:
            context["network"] = network
        super().__init__(message, context=context, **kwargs)
        self.wallet_id = wallet_id
        self.network = network


class UnsupportedNetworkError(ResolutionError):
    """Wallet is configured on a network the engine cannot query."""

    def __init__(self, network: str, wallet_id: Optional[str] = None):
        super().__init__(
            message=f"Unsupported network: {network}",
            wallet_id=wallet_id,
            network=network,
        )


# ============================================================
# OUTPUT / RUN ERRORS
# ============================================================

class SinkError(AggregatorException):
    """Record sink failed to accept records."""

    default_severity = Severity.HIGH


class RunCancelledError(AggregatorException):
    """Run was cancelled or timed out before all wallets finished."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.TRANSIENT


# ============================================================
# EXCEPTION UTILITIES
# ============================================================

def wrap_exception(
    exc: Exception,
    wrapper_class: type = AggregatorException,
    message: Optional[str] = None,
    **kwargs,
) -> AggregatorException:
    """Wrap a standard exception in an AggregatorException."""
    msg = message or f"{type(exc).__name__}: {exc}"
    return wrapper_class(message=msg, cause=exc, **kwargs)


__all__ = [
    "Severity",
    "ErrorClassification",
    "AggregatorException",
    "ConfigurationError",
    "MissingConfigError",
    "InvalidConfigError",
    "FatalConfigError",
    "ResolutionError",
    "UnsupportedNetworkError",
    "SinkError",
    "RunCancelledError",
    "wrap_exception",
]
