"""Builtin EVM network registry and the config-backed network catalog."""
from __future__ import annotations

from typing import Iterable

from ..models import NetworkDefinition


# Defaults a config entry can reference by identifier and override field by field.
BUILTIN_NETWORKS: dict[str, NetworkDefinition] = {
    net.identifier: net
    for net in (
        NetworkDefinition(
            chain_id=1,
            name="Ethereum Mainnet",
            identifier="ethereum",
            native_symbol="ETH",
            price_feed_chain_id="ethereum",
            wrapped_native_address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            rpc_endpoints=(
                "https://ethereum-rpc.publicnode.com",
                "https://rpc.ankr.com/eth",
            ),
        ),
        NetworkDefinition(
            chain_id=56,
            name="BNB Smart Chain",
            identifier="bsc",
            native_symbol="BNB",
            price_feed_chain_id="bsc",
            wrapped_native_address="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
            rpc_endpoints=("https://1rpc.io/bnb", "https://bsc.publicnode.com"),
        ),
        NetworkDefinition(
            chain_id=137,
            name="Polygon PoS",
            identifier="polygon",
            native_symbol="POL",
            price_feed_chain_id="polygon",
            wrapped_native_address="0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
            rpc_endpoints=(
                "https://polygon-rpc.com/",
                "https://polygon.publicnode.com",
            ),
        ),
        NetworkDefinition(
            chain_id=42161,
            name="Arbitrum One",
            identifier="arbitrum",
            native_symbol="ETH",
            price_feed_chain_id="arbitrum",
            wrapped_native_address="0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
            rpc_endpoints=(
                "https://arb1.arbitrum.io/rpc",
                "https://arbitrum.publicnode.com",
            ),
        ),
        NetworkDefinition(
            chain_id=10,
            name="OP Mainnet",
            identifier="optimism",
            native_symbol="ETH",
            price_feed_chain_id="optimism",
            wrapped_native_address="0x4200000000000000000000000000000000000006",
            rpc_endpoints=(
                "https://mainnet.optimism.io",
                "https://optimism.publicnode.com",
            ),
        ),
        NetworkDefinition(
            chain_id=8453,
            name="Base Mainnet",
            identifier="base",
            native_symbol="ETH",
            price_feed_chain_id="base",
            wrapped_native_address="0x4200000000000000000000000000000000000006",
            rpc_endpoints=("https://1rpc.io/base", "https://base.publicnode.com"),
        ),
        NetworkDefinition(
            chain_id=43114,
            name="Avalanche C-Chain",
            identifier="avalanche",
            native_symbol="AVAX",
            price_feed_chain_id="avalanche",
            wrapped_native_address="0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7",
            rpc_endpoints=(
                "https://api.avax.network/ext/bc/C/rpc",
                "https://avalanche-c-chain-rpc.publicnode.com",
            ),
        ),
    )
}


class StaticNetworkCatalog:
    """Network catalog over a fixed, ordered set of definitions."""

    def __init__(self, networks: Iterable[NetworkDefinition]) -> None:
        self._networks = tuple(networks)

    def get_all_networks(self) -> list[NetworkDefinition]:
        return list(self._networks)

    def get_network(self, selector: str) -> NetworkDefinition | None:
        for net in self._networks:
            if net.matches(selector):
                return net
        return None
