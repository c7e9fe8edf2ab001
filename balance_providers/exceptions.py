"""
Balance Provider Exceptions - Custom exception hierarchy.

These exceptions exist only INSIDE a provider call. The provider
boundary (BaseBalanceProvider.query) converts every one of them
into a tagged Outcome, so nothing here reaches the resolver.
"""

from typing import Any, Optional

from core.clock import now_utc
from core.outcome import OutcomeKind


class ProviderError(Exception):
    """Base exception for all balance provider errors."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        network: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider_name = provider_name
        self.network = network
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = now_utc()

    @property
    def outcome_kind(self) -> OutcomeKind:
        """How the retry driver should treat this failure."""
        return OutcomeKind.TRANSIENT

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.provider_name:
            parts.append(f"[provider={self.provider_name}]")
        if self.network:
            parts.append(f"[network={self.network}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class FetchError(ProviderError):
    """Error during the HTTP exchange with a provider."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        network: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, network, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500

    @property
    def outcome_kind(self) -> OutcomeKind:
        # No status code means timeout / connection reset
        if self.is_client_error():
            return OutcomeKind.PERMANENT
        return OutcomeKind.TRANSIENT


class RateLimitError(ProviderError):
    """Rate limit exceeded (HTTP 429 or provider-specific equivalent)."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        network: Optional[str] = None,
        retry_after_seconds: Optional[float] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, network, original_error, context)
        self.retry_after_seconds = retry_after_seconds

    @property
    def outcome_kind(self) -> OutcomeKind:
        return OutcomeKind.RATE_LIMITED


class ParseError(ProviderError):
    """Provider answered with a payload that could not be decoded."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        network: Optional[str] = None,
        raw_data: Optional[Any] = None,
        field_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, network, original_error, context)
        self.raw_data = raw_data
        self.field_name = field_name


class InvalidRequestError(ProviderError):
    """Request can never succeed (bad address, unknown contract, bad params)."""

    @property
    def outcome_kind(self) -> OutcomeKind:
        return OutcomeKind.PERMANENT


class CredentialsError(ProviderError):
    """Missing or rejected credentials for an authenticated provider."""

    @property
    def outcome_kind(self) -> OutcomeKind:
        return OutcomeKind.PERMANENT


class NetworkNotSupportedError(ProviderError):
    """Requested network is not supported by the provider."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        network: Optional[str] = None,
        supported_networks: Optional[list[str]] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, network, original_error, context)
        self.supported_networks = supported_networks or []

    @property
    def outcome_kind(self) -> OutcomeKind:
        return OutcomeKind.PERMANENT
