"""
Base Balance Provider - Abstract interface for all balance data sources.

All providers MUST:
- Issue one logical request per query() call
- Classify every failure (transient / rate_limited / permanent)
- Never raise expected failures past query()
- Emit one log line per call (provider, method, target, outcome)
"""

import asyncio
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

import aiohttp

from core.clock import now_utc
from core.logging_utils import mask_headers
from core.outcome import Outcome, OutcomeKind
from balance_providers.exceptions import (
    FetchError,
    InvalidRequestError,
    NetworkNotSupportedError,
    ParseError,
    ProviderError,
    RateLimitError,
)
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    CacheEntry,
    ProviderHealth,
    ProviderIncident,
    ProviderMetadata,
    ProviderStatus,
    QueryKind,
)


logger = logging.getLogger(__name__)

ParsedBalance = Union[BalanceReading, list[BalanceReading], None]

# JSON-RPC error codes that will never succeed on retry
_RPC_INVALID_CODES = {-32600, -32601, -32602}
# Provider-specific JSON-RPC rate-limit codes (Infura/Alchemy/public nodes)
_RPC_RATE_LIMIT_CODES = {-32005, -32029, 429}


class BaseBalanceProvider(ABC):
    """
    Abstract base class for all balance providers.

    Each provider must:
    1. Implement fetch_raw() - Get raw data from provider
    2. Implement parse() - Convert raw data to BalanceReading(s)
    3. Implement metadata() - Return provider metadata

    query() wraps both steps and returns a tagged Outcome:
    - SUCCESS with a reading (possibly zero)
    - EMPTY when the provider confirms there is nothing to report
    - TRANSIENT / RATE_LIMITED / PERMANENT on failure
    """

    DEFAULT_TIMEOUT = 10.0
    DEFAULT_CACHE_TTL = 0  # seconds; 0 disables the response cache
    DEGRADED_THRESHOLD = 3
    UNAVAILABLE_THRESHOLD = 5
    MAX_CACHE_ENTRIES = 1000

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        cache_ttl: int = DEFAULT_CACHE_TTL,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._cache_ttl = cache_ttl
        self._session = session
        self._owns_session = session is None

        # Response cache
        self._cache: dict[str, CacheEntry] = {}
        self._cache_hits = 0
        self._cache_misses = 0

        # Health tracking
        self._health = ProviderHealth(
            status=ProviderStatus.UNKNOWN,
            last_check=now_utc(),
        )

        # Incident log
        self._incidents: list[ProviderIncident] = []
        self._max_incidents = 100

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider."""
        pass

    @abstractmethod
    def metadata(self) -> ProviderMetadata:
        """Return provider metadata."""
        pass

    @abstractmethod
    async def fetch_raw(self, query: BalanceQuery) -> Any:
        """
        Fetch raw data from the provider API.

        Raises:
            ProviderError subclasses on failure
        """
        pass

    @abstractmethod
    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        """
        Decode a raw provider reply.

        Returns:
            A reading for NATIVE/TOKEN queries, a list of readings for
            DISCOVERY, or None when the provider confirms there is no
            balance (unknown account, no token account...).

        Raises:
            ParseError if the payload is malformed
        """
        pass

    def is_configured(self) -> bool:
        """False when a required API key or credential is missing."""
        return True

    # ─────────────────────────────────────────────────────────────
    # Main entry point
    # ─────────────────────────────────────────────────────────────

    async def query(self, query: BalanceQuery) -> Outcome[ParsedBalance]:
        """
        Run one provider call and classify the result.

        Never raises ProviderError or payload decoding errors.
        """
        start = time.time()
        method = self.method_name(query)

        try:
            meta = self.metadata()
            if not meta.supports(query.network, query.kind):
                raise NetworkNotSupportedError(
                    message=f"{query.kind.value} queries on {query.network.value} not supported",
                    provider_name=self.name,
                    network=query.network.value,
                    supported_networks=[n.value for n in meta.supported_networks],
                )

            raw_data = await self.fetch_raw(query)
            parsed = self.parse(raw_data, query)

        except ProviderError as e:
            outcome = self._outcome_from_error(e)
            self._on_error(e, query)

        except (KeyError, IndexError, ValueError, TypeError, AttributeError, InvalidOperation) as e:
            error = ParseError(
                message=f"Malformed response: {e}",
                provider_name=self.name,
                network=query.network.value,
                original_error=e,
            )
            outcome = self._outcome_from_error(error)
            self._on_error(error, query)

        else:
            if parsed is None or (isinstance(parsed, list) and not parsed):
                outcome = Outcome.empty(
                    self.name,
                    value=[] if query.kind == QueryKind.DISCOVERY else None,
                )
            else:
                outcome = Outcome.success(parsed, self.name)
            self._on_success()

        latency_ms = (time.time() - start) * 1000
        self._health.latency_ms = latency_ms
        self._log_call(method, query, outcome, latency_ms)
        return outcome

    def method_name(self, query: BalanceQuery) -> str:
        """Provider method label used in log lines."""
        return query.kind.value

    def _outcome_from_error(self, error: ProviderError) -> Outcome[ParsedBalance]:
        kind = error.outcome_kind
        if kind == OutcomeKind.RATE_LIMITED:
            retry_after = getattr(error, "retry_after_seconds", None)
            return Outcome.rate_limited(error.message, self.name, retry_after=retry_after)
        status_code = getattr(error, "status_code", None)
        if kind == OutcomeKind.PERMANENT:
            return Outcome.permanent(error.message, self.name, status_code=status_code)
        return Outcome.transient(error.message, self.name, status_code=status_code)

    def _log_call(
        self,
        method: str,
        query: BalanceQuery,
        outcome: Outcome[ParsedBalance],
        latency_ms: float,
    ) -> None:
        line = (
            f"[{self.name}] method={method} network={query.network.value} "
            f"target={query.target} outcome={outcome.kind.value} latency_ms={latency_ms:.0f}"
        )
        if outcome.is_success:
            logger.info(line)
        else:
            logger.warning(f"{line} error={outcome.error}")

    # ─────────────────────────────────────────────────────────────
    # Cache Management
    # ─────────────────────────────────────────────────────────────

    def _cache_key(
        self,
        method: str,
        url: str,
        params: Any,
        body: Any,
        scope: Optional[str] = None,
    ) -> str:
        key_parts = [
            self.name,
            scope or "",
            method.upper(),
            url,
            json.dumps(params, sort_keys=True, default=str),
            json.dumps(body, sort_keys=True, default=str),
        ]
        return hashlib.md5("|".join(key_parts).encode()).hexdigest()

    def _get_from_cache(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry is None or entry.is_expired():
            self._cache_misses += 1
            return None
        entry.hits += 1
        self._cache_hits += 1
        return entry.data

    def _put_in_cache(self, key: str, data: Any) -> None:
        now = now_utc()
        self._cache[key] = CacheEntry(
            data=data,
            created_at=now,
            expires_at=now + timedelta(seconds=self._cache_ttl),
        )
        if len(self._cache) > self.MAX_CACHE_ENTRIES:
            self._clean_cache()

    def _clean_cache(self) -> None:
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired()]
        for key in expired_keys:
            del self._cache[key]
        logger.debug(f"[{self.name}] Cleaned {len(expired_keys)} expired cache entries")

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        total_requests = self._cache_hits + self._cache_misses
        hit_rate = (self._cache_hits / total_requests * 100) if total_requests > 0 else 0
        return {
            "entries": len(self._cache),
            "hits": self._cache_hits,
            "misses": self._cache_misses,
            "hit_rate_percent": round(hit_rate, 2),
        }

    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "HoldingsAggregator/1.0",
        }

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
        data: Optional[str] = None,
        cache_scope: Optional[str] = None,
    ) -> Any:
        """
        Make HTTP request with error classification and optional caching.

        cache_scope separates cached replies of identical requests that are
        signed with different credentials.
        """
        cache_key = None
        if self._cache_ttl > 0:
            body = json_body if data is None else data
            cache_key = self._cache_key(method, url, params, body, cache_scope)
            cached = self._get_from_cache(cache_key)
            if cached is not None:
                return cached

        session = await self._get_session()
        self._health.requests_total += 1
        if headers:
            logger.debug(f"[{self.name}] {method} {url} headers={mask_headers(headers)}")

        try:
            async with session.request(
                method,
                url,
                params=params,
                json=json_body,
                data=data,
                headers=headers,
            ) as response:
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        message="Rate limit exceeded",
                        provider_name=self.name,
                        retry_after_seconds=_parse_retry_after(retry_after),
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        message=f"HTTP {response.status}",
                        provider_name=self.name,
                        status_code=response.status,
                        response_body=body[:500],
                        request_url=url,
                    )

                try:
                    payload = await response.json(content_type=None)
                except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
                    raise ParseError(
                        message="Response is not valid JSON",
                        provider_name=self.name,
                        original_error=e,
                    )

        except asyncio.TimeoutError as e:
            raise FetchError(
                message=f"Timeout after {self._timeout}s",
                provider_name=self.name,
                request_url=url,
                original_error=e,
            )
        except aiohttp.ClientError as e:
            raise FetchError(
                message=f"Connection error: {e}",
                provider_name=self.name,
                request_url=url,
                original_error=e,
            )

        if cache_key is not None:
            self._put_in_cache(cache_key, payload)
        return payload

    async def _rpc(
        self,
        url: str,
        method: str,
        params: Any,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """JSON-RPC 2.0 call returning the `result` member."""
        body = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        payload = await self._make_request("POST", url, json_body=body, headers=headers)

        if not isinstance(payload, dict):
            raise ParseError(
                message="JSON-RPC reply is not an object",
                provider_name=self.name,
                raw_data=payload,
            )

        error = payload.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if code in _RPC_RATE_LIMIT_CODES or "rate limit" in message.lower():
                raise RateLimitError(
                    message=f"{method}: {message}",
                    provider_name=self.name,
                )
            if code in _RPC_INVALID_CODES:
                raise InvalidRequestError(
                    message=f"{method}: {message}",
                    provider_name=self.name,
                    context={"rpc_code": code},
                )
            raise FetchError(
                message=f"{method}: RPC error {code}: {message}",
                provider_name=self.name,
                request_url=url,
            )

        if "result" not in payload:
            raise ParseError(
                message=f"{method}: reply has no result",
                provider_name=self.name,
                raw_data=payload,
                field_name="result",
            )
        return payload["result"]

    # ─────────────────────────────────────────────────────────────
    # Health & Error Tracking
    # ─────────────────────────────────────────────────────────────

    def _on_success(self) -> None:
        self._health.consecutive_failures = 0
        self._health.last_check = now_utc()
        if self._health.status != ProviderStatus.HEALTHY:
            if self._health.status != ProviderStatus.UNKNOWN:
                logger.info(f"[{self.name}] Recovered to HEALTHY status")
            self._health.status = ProviderStatus.HEALTHY

    def _on_error(self, error: ProviderError, query: Optional[BalanceQuery] = None) -> None:
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = now_utc()
        self._health.last_check = self._health.last_error_time

        if isinstance(error, RateLimitError):
            self._health.status = ProviderStatus.RATE_LIMITED
        elif self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != ProviderStatus.UNAVAILABLE:
                self._health.status = ProviderStatus.UNAVAILABLE
                logger.error(f"[{self.name}] Marked UNAVAILABLE")
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != ProviderStatus.DEGRADED:
                self._health.status = ProviderStatus.DEGRADED
                logger.warning(f"[{self.name}] Marked DEGRADED")

        self._log_incident(error, query)

    def _log_incident(self, error: ProviderError, query: Optional[BalanceQuery] = None) -> None:
        incident = ProviderIncident(
            provider_name=self.name,
            incident_type=error.__class__.__name__,
            timestamp=error.timestamp,
            error_message=str(error),
            network=query.network.value if query else None,
            target=query.target if query else None,
        )
        self._incidents.append(incident)
        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

    def get_health(self) -> ProviderHealth:
        return self._health

    def get_incidents(self, limit: int = 10) -> list[ProviderIncident]:
        return self._incidents[-limit:]

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseBalanceProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, status={self._health.status.value})>"


# ─────────────────────────────────────────────────────────────
# Decoding helpers shared by providers
# ─────────────────────────────────────────────────────────────

def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """Convert int, decimal string or 0x-hex string to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: boolean is not a balance")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return Decimal(int(text, 16)) if len(text) > 2 else Decimal(0)
        return Decimal(text)
    raise TypeError(f"{field_name}: unsupported type {type(value).__name__}")


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
