"""
Core Module - Provider Outcome.

============================================================
RESPONSIBILITY
============================================================
Tagged result of a single external provider call.

Providers never raise for expected degradations (timeouts,
rate limits, unknown accounts). They return an Outcome whose
kind drives the retry driver and the fallback chain:

    SUCCESS       value present
    EMPTY         provider confirmed there is nothing (zero)
    TRANSIENT     retryable (timeout, 5xx, malformed payload)
    RATE_LIMITED  retryable with mandatory backoff
    PERMANENT     not retryable (4xx, invalid input, bad credentials)

============================================================
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar


T = TypeVar("T")


class OutcomeKind(Enum):
    """Classification of a provider call result."""
    SUCCESS = "success"
    EMPTY = "empty"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of one provider invocation (possibly after retries)."""
    kind: OutcomeKind
    value: Optional[T] = None
    source: str = ""
    error: Optional[str] = None
    retry_after: Optional[float] = None
    status_code: Optional[int] = None
    attempts: int = 1

    # ---------------------------------------------------------
    # Constructors
    # ---------------------------------------------------------

    @classmethod
    def success(cls, value: T, source: str = "") -> "Outcome[T]":
        return cls(kind=OutcomeKind.SUCCESS, value=value, source=source)

    @classmethod
    def empty(cls, source: str = "", value: Optional[T] = None) -> "Outcome[T]":
        return cls(kind=OutcomeKind.EMPTY, value=value, source=source)

    @classmethod
    def transient(
        cls,
        error: str,
        source: str = "",
        status_code: Optional[int] = None,
    ) -> "Outcome[T]":
        return cls(
            kind=OutcomeKind.TRANSIENT,
            source=source,
            error=error,
            status_code=status_code,
        )

    @classmethod
    def rate_limited(
        cls,
        error: str,
        source: str = "",
        retry_after: Optional[float] = None,
    ) -> "Outcome[T]":
        return cls(
            kind=OutcomeKind.RATE_LIMITED,
            source=source,
            error=error,
            retry_after=retry_after,
            status_code=429,
        )

    @classmethod
    def permanent(
        cls,
        error: str,
        source: str = "",
        status_code: Optional[int] = None,
    ) -> "Outcome[T]":
        return cls(
            kind=OutcomeKind.PERMANENT,
            source=source,
            error=error,
            status_code=status_code,
        )

    # ---------------------------------------------------------
    # Predicates
    # ---------------------------------------------------------

    @property
    def is_success(self) -> bool:
        """True for SUCCESS and EMPTY (a confirmed zero is an answer)."""
        return self.kind in (OutcomeKind.SUCCESS, OutcomeKind.EMPTY)

    @property
    def is_retryable(self) -> bool:
        return self.kind in (OutcomeKind.TRANSIENT, OutcomeKind.RATE_LIMITED)

    def with_attempts(self, attempts: int) -> "Outcome[T]":
        return replace(self, attempts=attempts)

    def describe(self) -> str:
        """Short human-readable form for diagnostics."""
        label = f"{self.source or 'provider'}: {self.kind.value}"
        if self.error:
            label += f" ({self.error})"
        if self.attempts > 1:
            label += f" after {self.attempts} attempts"
        return label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "source": self.source,
            "error": self.error,
            "retry_after": self.retry_after,
            "status_code": self.status_code,
            "attempts": self.attempts,
        }


__all__ = [
    "OutcomeKind",
    "Outcome",
]
