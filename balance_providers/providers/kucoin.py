"""
KuCoin Provider - Exchange account balances.

GET /api/v1/accounts (signed, API key version 2)

Signature:  BASE64(HMAC-SHA256(timestamp + METHOD + path + body, secret))
Passphrase: BASE64(HMAC-SHA256(passphrase, secret))

A wallet on the exchange network stores a credentials reference
(e.g. "MAIN"). Keys resolve from MAIN_API_KEY / MAIN_API_SECRET /
MAIN_API_PASSPHRASE, falling back to KUCOIN_API_KEY / ...

The account list spans main, trade and other account types; the
per-currency balance is the sum over all of them. Amounts are
already decimal quantities.
"""

import base64
import hashlib
import hmac
import logging
import os
import time
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from core.logging_utils import mask_value
from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.exceptions import CredentialsError, FetchError, RateLimitError
from balance_providers.models import (
    BalanceQuery,
    BalanceReading,
    Network,
    ProviderMetadata,
    ProviderTier,
    QueryKind,
)


logger = logging.getLogger(__name__)

DEFAULT_KUCOIN_URL = "https://api.kucoin.com"
ACCOUNTS_PATH = "/api/v1/accounts"
DEFAULT_CREDENTIALS_PREFIX = "KUCOIN"

_OK_CODE = "200000"
_RATE_LIMIT_CODE = "429000"
# 4000xx: key missing, bad signature, bad passphrase, IP not allowed, ...
_AUTH_CODE_PREFIX = "4000"


@dataclass(frozen=True)
class KucoinCredentials:
    """API key triple for one exchange account."""
    api_key: str
    api_secret: str
    passphrase: str

    @classmethod
    def from_env(cls, ref: Optional[str] = None) -> Optional["KucoinCredentials"]:
        """
        Resolve credentials for a reference.

        The `{REF}_*` triple wins when complete, else `KUCOIN_*`.
        Returns None when neither is complete.
        """
        prefixes = []
        if ref:
            prefixes.append(ref.strip().upper())
        prefixes.append(DEFAULT_CREDENTIALS_PREFIX)

        for prefix in prefixes:
            key = os.getenv(f"{prefix}_API_KEY", "")
            secret = os.getenv(f"{prefix}_API_SECRET", "")
            passphrase = os.getenv(f"{prefix}_API_PASSPHRASE", "")
            if key and secret and passphrase:
                return cls(api_key=key, api_secret=secret, passphrase=passphrase)
        return None

    def __repr__(self) -> str:
        return f"KucoinCredentials(api_key={mask_value(self.api_key)})"


class KucoinProvider(BaseBalanceProvider):
    """KuCoin spot/main account balances."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = BaseBalanceProvider.DEFAULT_TIMEOUT,
        cache_ttl: int = 30,
    ) -> None:
        super().__init__(timeout=timeout, cache_ttl=cache_ttl)
        self._base_url = (base_url or DEFAULT_KUCOIN_URL).rstrip("/")

    @property
    def name(self) -> str:
        return "kucoin"

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            display_name="KuCoin",
            supported_networks=[Network.KUCOIN],
            supported_kinds=[QueryKind.TOKEN, QueryKind.DISCOVERY],
            tier=ProviderTier.EXCHANGE,
            requires_api_key=True,
            base_url=self._base_url,
            documentation_url="https://www.kucoin.com/docs/rest/account/basic-info/get-account-list-spot-margin-trade_hf",
            tags=["exchange", "signed"],
        )

    def method_name(self, query: BalanceQuery) -> str:
        return "accounts"

    # --------------------------------------------------------
    # SIGNING
    # --------------------------------------------------------

    @staticmethod
    def _hmac_b64(secret: str, message: str) -> str:
        digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    def sign_request(
        self,
        credentials: KucoinCredentials,
        timestamp: str,
        method: str,
        path: str,
        body: str = "",
    ) -> dict[str, str]:
        """
        Build the authentication headers for one request.

        Args:
            credentials: Key triple
            timestamp: Milliseconds since epoch, as a string
            method: HTTP method
            path: Request path including query string
            body: Request body (JSON string) or ""
        """
        message = f"{timestamp}{method.upper()}{path}{body}"
        return {
            "KC-API-KEY": credentials.api_key,
            "KC-API-SIGN": self._hmac_b64(credentials.api_secret, message),
            "KC-API-TIMESTAMP": timestamp,
            "KC-API-PASSPHRASE": self._hmac_b64(credentials.api_secret, credentials.passphrase),
            "KC-API-KEY-VERSION": "2",
        }

    @staticmethod
    def _get_timestamp() -> str:
        return str(int(time.time() * 1000))

    # --------------------------------------------------------
    # REQUEST HANDLING
    # --------------------------------------------------------

    async def fetch_raw(self, query: BalanceQuery) -> Any:
        ref = query.credentials_ref or query.address
        credentials = KucoinCredentials.from_env(ref)
        if credentials is None:
            raise CredentialsError(
                message=f"No API credentials for reference '{ref}'",
                provider_name=self.name,
                network=query.network.value,
            )

        headers = self.sign_request(credentials, self._get_timestamp(), "GET", ACCOUNTS_PATH)
        logger.debug(f"[{self.name}] GET {ACCOUNTS_PATH} key={mask_value(credentials.api_key)}")

        payload = await self._make_request(
            "GET",
            f"{self._base_url}{ACCOUNTS_PATH}",
            headers=headers,
            cache_scope=credentials.api_key,
        )

        code = str(payload.get("code", ""))
        if code == _OK_CODE:
            return payload.get("data") or []

        msg = payload.get("msg", "unknown error")
        if code == _RATE_LIMIT_CODE:
            raise RateLimitError(
                message=f"KuCoin {code}: {msg}",
                provider_name=self.name,
                network=query.network.value,
            )
        if code.startswith(_AUTH_CODE_PREFIX):
            raise CredentialsError(
                message=f"KuCoin {code}: {msg}",
                provider_name=self.name,
                network=query.network.value,
            )
        raise FetchError(
            message=f"KuCoin {code}: {msg}",
            provider_name=self.name,
            network=query.network.value,
        )

    def parse(self, raw_data: Any, query: BalanceQuery) -> ParsedBalance:
        totals: "OrderedDict[str, Decimal]" = OrderedDict()
        for account in raw_data:
            currency = account["currency"].upper()
            totals[currency] = totals.get(currency, Decimal(0)) + to_decimal(account["balance"])

        if query.kind == QueryKind.TOKEN:
            symbol = (query.symbol or "").upper()
            return BalanceReading(
                amount=totals.get(symbol, Decimal(0)),
                in_base_units=False,
                symbol=symbol,
            )

        return [
            BalanceReading(amount=amount, in_base_units=False, symbol=currency)
            for currency, amount in totals.items()
            if amount > 0
        ]
