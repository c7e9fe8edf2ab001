"""
Concrete balance providers, one wire decoder per module.
"""

from balance_providers.providers.alchemy import AlchemyProvider
from balance_providers.providers.esplora import EsploraProvider
from balance_providers.providers.etherscan import EtherscanProvider
from balance_providers.providers.evm_rpc import EvmRpcProvider
from balance_providers.providers.kucoin import KucoinCredentials, KucoinProvider
from balance_providers.providers.solana_rpc import SolanaRpcProvider
from balance_providers.providers.toncenter import ToncenterProvider
from balance_providers.providers.trongrid import TronGridProvider
from balance_providers.providers.xrpl import XrplProvider


__all__ = [
    "AlchemyProvider",
    "EsploraProvider",
    "EtherscanProvider",
    "EvmRpcProvider",
    "KucoinCredentials",
    "KucoinProvider",
    "SolanaRpcProvider",
    "ToncenterProvider",
    "TronGridProvider",
    "XrplProvider",
]
