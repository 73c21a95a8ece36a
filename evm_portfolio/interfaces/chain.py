"""Protocols for batched balance gateways and their per-network provider."""
from typing import Protocol

from ..models import BalanceRequestItem, BalanceResultItem, NetworkDefinition


class BlockchainGateway(Protocol):
    """Abstract interface for one network's balance queries."""

    async def get_balances(
        self, requests: list[BalanceRequestItem]
    ) -> list[BalanceResultItem]: ...


class GatewayProvider(Protocol):
    """Hands out (and memoizes) one gateway per network."""

    def get_gateway(self, network: NetworkDefinition) -> BlockchainGateway: ...
