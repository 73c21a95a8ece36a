"""Protocols for wallet, network and token sources."""
from typing import Protocol

from ..models import NetworkDefinition, TokenInfo


class WalletSource(Protocol):
    """Yields validated wallet addresses."""

    def get_wallets(self) -> list[str]: ...

    def get_wallet_by_address(self, address: str) -> str | None: ...


class NetworkCatalog(Protocol):
    """Yields the active network definitions."""

    def get_all_networks(self) -> list[NetworkDefinition]: ...

    def get_network(self, selector: str) -> NetworkDefinition | None: ...


class TokenCatalog(Protocol):
    """Yields tracked tokens keyed by chain id."""

    def get_tokens_by_network(
        self, networks: list[NetworkDefinition]
    ) -> dict[int, list[TokenInfo]]: ...
