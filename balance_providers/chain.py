"""
Provider Fallback Chain - Ordered providers for one logical operation.

The chain tries each (provider, retry driver) link in order and stops
at the first SUCCESS or EMPTY outcome. A provider-confirmed zero is an
answer: later (more expensive) providers are not consulted. When every
link fails the chain reports succeeded=False with per-link diagnostics;
it never raises to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from core.outcome import Outcome, OutcomeKind
from core.retry import RetryDriver
from balance_providers.base import BaseBalanceProvider
from balance_providers.models import BalanceQuery


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainLink:
    """One provider with the retry driver used for it."""
    provider: BaseBalanceProvider
    retry: RetryDriver

    @property
    def name(self) -> str:
        return self.provider.name


@dataclass
class ChainResult:
    """Outcome of a full chain traversal."""
    operation: str
    succeeded: bool
    value: Any = None
    kind: Optional[OutcomeKind] = None
    source: Optional[str] = None
    attempts: list[Outcome] = field(default_factory=list)

    @property
    def diagnostics(self) -> list[str]:
        """One line per failed link, in call order."""
        return [o.describe() for o in self.attempts if not o.is_success]

    def failure_summary(self) -> str:
        if not self.attempts:
            return f"{self.operation}: no provider configured"
        return f"{self.operation}: all providers failed [" + "; ".join(self.diagnostics) + "]"


class FallbackChain:
    """
    Generic ordered fallback over balance providers.

    Usage:
        chain = FallbackChain("native:ETH", [ChainLink(rpc, fast), ChainLink(explorer, slow)])
        result = await chain.execute(BalanceQuery(Network.ETH, "0xabc"))
        if result.succeeded:
            reading = result.value
    """

    def __init__(self, operation: str, links: Sequence[ChainLink]) -> None:
        self._operation = operation
        self._links = list(links)

    @property
    def operation(self) -> str:
        return self._operation

    @property
    def links(self) -> list[ChainLink]:
        return list(self._links)

    def provider_names(self) -> list[str]:
        return [link.name for link in self._links]

    def __len__(self) -> int:
        return len(self._links)

    async def execute(self, query: BalanceQuery) -> ChainResult:
        result = ChainResult(operation=self._operation, succeeded=False)

        for link in self._links:
            outcome = await link.retry.run(
                lambda provider=link.provider: provider.query(query),
                label=f"{link.name}:{self._operation}",
            )
            result.attempts.append(outcome)

            if outcome.is_success:
                result.succeeded = True
                result.value = outcome.value
                result.kind = outcome.kind
                result.source = link.name
                if len(result.attempts) > 1:
                    logger.info(
                        f"[chain] {self._operation} target={query.target} answered by "
                        f"fallback provider {link.name} after {len(result.attempts) - 1} failed provider(s)"
                    )
                return result

            logger.debug(
                f"[chain] {self._operation} target={query.target} provider {link.name} "
                f"failed: {outcome.describe()}"
            )

        if result.attempts:
            result.kind = result.attempts[-1].kind
        logger.warning(f"[chain] {result.failure_summary()} target={query.target}")
        return result


__all__ = [
    "ChainLink",
    "ChainResult",
    "FallbackChain",
]
