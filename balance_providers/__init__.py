"""
Balance Providers Package - Unreliable external balance sources behind one contract.

Features:
- One thin wire decoder per provider (JSON-RPC, explorer, exchange)
- Every call returns a tagged Outcome, never an exception
- Ordered fallback chains per (network, operation)
- Provider health tracking and short-TTL response cache

Quick Start:
    from balance_providers import (
        BalanceQuery,
        Network,
        ProviderRegistry,
        EvmRpcProvider,
        QueryKind,
    )

    async def eth_balance(address):
        registry = ProviderRegistry()
        registry.register(EvmRpcProvider())

        chain = registry.chain_for(Network.ETH, QueryKind.NATIVE)
        result = await chain.execute(BalanceQuery(Network.ETH, address))

        # Never raises - succeeded is False when every provider failed
        if result.succeeded and result.value is not None:
            print(f"{result.value.amount} wei via {result.source}")

Adding New Providers:
    class NewProvider(BaseBalanceProvider):
        @property
        def name(self) -> str:
            return "new_provider"

        def metadata(self): ...
        async def fetch_raw(self, query): ...
        def parse(self, raw_data, query): ...

    registry.register(NewProvider())
    registry.set_strategy(Network.ETH, NetworkStrategy(native=("new_provider", "evm_rpc")))
"""

from balance_providers.base import BaseBalanceProvider, ParsedBalance, to_decimal
from balance_providers.chain import ChainLink, ChainResult, FallbackChain
from balance_providers.exceptions import (
    CredentialsError,
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
    Network,
    ProviderHealth,
    ProviderIncident,
    ProviderMetadata,
    ProviderStatus,
    ProviderTier,
    QueryKind,
)
from balance_providers.providers import (
    AlchemyProvider,
    EsploraProvider,
    EtherscanProvider,
    EvmRpcProvider,
    KucoinProvider,
    SolanaRpcProvider,
    ToncenterProvider,
    TronGridProvider,
    XrplProvider,
)
from balance_providers.registry import (
    DEFAULT_STRATEGIES,
    NetworkStrategy,
    ProviderRegistry,
    build_default_registry,
)


__all__ = [
    # Base
    "BaseBalanceProvider",
    "ParsedBalance",
    "to_decimal",
    # Chain
    "ChainLink",
    "ChainResult",
    "FallbackChain",
    # Exceptions
    "CredentialsError",
    "FetchError",
    "InvalidRequestError",
    "NetworkNotSupportedError",
    "ParseError",
    "ProviderError",
    "RateLimitError",
    # Models
    "BalanceQuery",
    "BalanceReading",
    "Network",
    "ProviderHealth",
    "ProviderIncident",
    "ProviderMetadata",
    "ProviderStatus",
    "ProviderTier",
    "QueryKind",
    # Providers
    "AlchemyProvider",
    "EsploraProvider",
    "EtherscanProvider",
    "EvmRpcProvider",
    "KucoinProvider",
    "SolanaRpcProvider",
    "ToncenterProvider",
    "TronGridProvider",
    "XrplProvider",
    # Registry
    "DEFAULT_STRATEGIES",
    "NetworkStrategy",
    "ProviderRegistry",
    "build_default_registry",
]
