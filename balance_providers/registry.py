"""
Balance Provider Registry - Provider instances and per-network strategy.

Features:
- Provider registration and lookup by name
- Declarative strategy table: ordered provider names per
  (network, native / token / discovery)
- Builds FallbackChains on demand, skipping providers that are
  not registered or not configured (missing API key)
- Retry policy per provider tier (public RPC vs paid/exchange API)
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from core.retry import RetryDriver, RetryPolicy, SleepFunc
from balance_providers.base import BaseBalanceProvider
from balance_providers.chain import ChainLink, FallbackChain
from balance_providers.models import Network, ProviderStatus, ProviderTier, QueryKind
from balance_providers.providers.alchemy import AlchemyProvider
from balance_providers.providers.esplora import MEMPOOL_URL, EsploraProvider
from balance_providers.providers.etherscan import EtherscanProvider
from balance_providers.providers.evm_rpc import BACKUP_RPC_URLS, EvmRpcProvider
from balance_providers.providers.kucoin import KucoinProvider
from balance_providers.providers.solana_rpc import SolanaRpcProvider
from balance_providers.providers.toncenter import ToncenterProvider
from balance_providers.providers.trongrid import TronGridProvider
from balance_providers.providers.xrpl import XrplProvider

if TYPE_CHECKING:
    from aggregation.config import AggregatorConfig


logger = logging.getLogger(__name__)

BACKUP_SOLANA_RPC_URL = "https://solana-rpc.publicnode.com"


@dataclass(frozen=True)
class NetworkStrategy:
    """Ordered provider names for each operation on one network."""
    native: tuple[str, ...] = ()
    token: tuple[str, ...] = ()
    discovery: tuple[str, ...] = ()

    def providers_for(self, kind: QueryKind) -> tuple[str, ...]:
        if kind == QueryKind.NATIVE:
            return self.native
        if kind == QueryKind.TOKEN:
            return self.token
        return self.discovery


_EVM_STRATEGY = NetworkStrategy(
    native=("evm_rpc", "evm_rpc_backup", "etherscan", "alchemy"),
    token=("evm_rpc", "evm_rpc_backup", "etherscan", "alchemy"),
    discovery=("alchemy",),
)

DEFAULT_STRATEGIES: dict[Network, NetworkStrategy] = {
    **{network: _EVM_STRATEGY for network in Network if network.is_evm},
    Network.BTC: NetworkStrategy(native=("blockstream", "mempool")),
    Network.SOL: NetworkStrategy(
        native=("solana_rpc", "solana_rpc_backup"),
        token=("solana_rpc", "solana_rpc_backup"),
        discovery=("solana_rpc", "solana_rpc_backup"),
    ),
    Network.TRX: NetworkStrategy(native=("trongrid",), token=("trongrid",), discovery=("trongrid",)),
    Network.XRP: NetworkStrategy(native=("xrpl",), token=("xrpl",), discovery=("xrpl",)),
    Network.TON: NetworkStrategy(native=("toncenter",), token=("toncenter",), discovery=("toncenter",)),
    Network.KUCOIN: NetworkStrategy(token=("kucoin",), discovery=("kucoin",)),
}


class ProviderRegistry:
    """
    Central registry for balance providers.

    Usage:
        registry = ProviderRegistry(max_attempts=3)
        registry.register(EvmRpcProvider())
        registry.register(EtherscanProvider())

        chain = registry.chain_for(Network.ETH, QueryKind.NATIVE)
        result = await chain.execute(query)
    """

    def __init__(
        self,
        strategies: Optional[dict[Network, NetworkStrategy]] = None,
        max_attempts: int = 3,
        rpc_base_delay: float = 0.5,
        api_base_delay: float = 1.0,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self._providers: dict[str, BaseBalanceProvider] = {}
        self._strategies = dict(DEFAULT_STRATEGIES if strategies is None else strategies)
        self._drivers = {
            ProviderTier.PUBLIC_RPC: RetryDriver(
                RetryPolicy(max_attempts=max_attempts, base_delay=rpc_base_delay), sleep=sleep
            ),
            ProviderTier.ENRICHMENT: RetryDriver(
                RetryPolicy(max_attempts=max_attempts, base_delay=api_base_delay), sleep=sleep
            ),
            ProviderTier.EXCHANGE: RetryDriver(
                RetryPolicy(max_attempts=max_attempts, base_delay=api_base_delay), sleep=sleep
            ),
        }

    def register(self, provider: BaseBalanceProvider) -> None:
        """Register a provider under its name."""
        name = provider.name
        if name in self._providers:
            logger.warning(f"Provider '{name}' already registered, replacing")
        self._providers[name] = provider
        logger.debug(f"Registered balance provider '{name}'")

    def unregister(self, name: str) -> Optional[BaseBalanceProvider]:
        """Unregister a provider."""
        provider = self._providers.pop(name, None)
        if provider is not None:
            logger.info(f"Unregistered provider '{name}'")
        return provider

    def get(self, name: str) -> Optional[BaseBalanceProvider]:
        return self._providers.get(name)

    def list_providers(self) -> list[str]:
        return list(self._providers.keys())

    def set_strategy(self, network: Network, strategy: NetworkStrategy) -> None:
        self._strategies[network] = strategy

    def strategy_for(self, network: Network) -> NetworkStrategy:
        return self._strategies.get(network, NetworkStrategy())

    def retry_driver_for(self, provider: BaseBalanceProvider) -> RetryDriver:
        return self._drivers[provider.metadata().tier]

    def chain_for(self, network: Network, kind: QueryKind) -> FallbackChain:
        """
        Build the fallback chain for one operation on a network.

        Providers named by the strategy but not registered, or registered
        without required credentials, are left out. The chain may be empty.
        """
        links = []
        for name in self.strategy_for(network).providers_for(kind):
            provider = self._providers.get(name)
            if provider is None:
                continue
            if not provider.is_configured():
                logger.debug(f"Skipping unconfigured provider '{name}' for {kind.value}:{network.value}")
                continue
            links.append(ChainLink(provider=provider, retry=self.retry_driver_for(provider)))
        return FallbackChain(f"{kind.value}:{network.value}", links)

    def supports_discovery(self, network: Network) -> bool:
        return len(self.chain_for(network, QueryKind.DISCOVERY)) > 0

    def get_stats(self, incident_limit: int = 5) -> dict[str, Any]:
        """Get registry statistics, with the last few incidents per provider."""
        health_summary = {}
        for status in ProviderStatus:
            health_summary[status.value] = sum(
                1 for p in self._providers.values()
                if p.get_health().status == status
            )

        return {
            "total_providers": len(self._providers),
            "configured_providers": sum(1 for p in self._providers.values() if p.is_configured()),
            "health_summary": health_summary,
            "providers": {
                name: {
                    **p.get_health().to_dict(),
                    "metadata": p.metadata().to_dict(),
                    "cache": p.get_cache_stats(),
                    "recent_incidents": [i.to_dict() for i in p.get_incidents(incident_limit)],
                }
                for name, p in self._providers.items()
            },
        }

    async def close(self) -> None:
        """Close all provider sessions."""
        for provider in self._providers.values():
            await provider.close()


def build_default_registry(
    config: "AggregatorConfig",
    sleep: Optional[SleepFunc] = None,
) -> ProviderRegistry:
    """
    Registry with every built-in provider wired to the public fallbacks.

    Paid providers are registered too; chain_for() leaves them out
    until their API key is set.
    """
    settings = config.providers
    timeout = config.request_timeout_seconds

    registry = ProviderRegistry(
        max_attempts=config.max_retries,
        rpc_base_delay=config.rpc_base_delay,
        api_base_delay=config.api_base_delay,
        sleep=sleep,
    )

    evm_overrides = {Network.parse(k): v for k, v in settings.evm_rpc_urls.items()}
    registry.register(EvmRpcProvider(rpc_urls=evm_overrides, timeout=timeout))
    registry.register(EvmRpcProvider(rpc_urls=BACKUP_RPC_URLS, name="evm_rpc_backup", timeout=timeout))
    registry.register(EtherscanProvider(api_key=settings.etherscan_api_key, timeout=timeout))
    registry.register(AlchemyProvider(api_key=settings.alchemy_api_key, timeout=timeout))

    registry.register(EsploraProvider(name="blockstream", base_url=settings.blockstream_url, timeout=timeout))
    registry.register(EsploraProvider(name="mempool", base_url=settings.mempool_url or MEMPOOL_URL, timeout=timeout))

    registry.register(SolanaRpcProvider(rpc_url=settings.solana_rpc_url, timeout=timeout))
    registry.register(
        SolanaRpcProvider(rpc_url=BACKUP_SOLANA_RPC_URL, name="solana_rpc_backup", timeout=timeout)
    )

    registry.register(
        TronGridProvider(api_key=settings.trongrid_api_key, base_url=settings.trongrid_url, timeout=timeout)
    )
    registry.register(XrplProvider(rpc_url=settings.xrpl_rpc_url, timeout=timeout))
    registry.register(
        ToncenterProvider(api_key=settings.toncenter_api_key, base_url=settings.toncenter_url, timeout=timeout)
    )
    registry.register(KucoinProvider(base_url=settings.kucoin_url, timeout=timeout))

    logger.info(f"Provider registry ready with {len(registry.list_providers())} providers")
    return registry


__all__ = [
    "NetworkStrategy",
    "DEFAULT_STRATEGIES",
    "ProviderRegistry",
    "build_default_registry",
]
