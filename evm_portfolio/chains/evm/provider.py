"""Memoized EVM gateways, one per chain id."""
from __future__ import annotations

import logging
import threading

from ...exceptions import GatewayError
from ...models import NetworkDefinition
from .client import EvmGateway

logger = logging.getLogger(__name__)


class EvmGatewayProvider:
    """Create gateways on first use and reuse them afterwards."""

    def __init__(self) -> None:
        self._gateways: dict[int, EvmGateway] = {}
        self._lock = threading.Lock()

    def get_gateway(self, network: NetworkDefinition) -> EvmGateway:
        with self._lock:
            gateway = self._gateways.get(network.chain_id)
            if gateway is not None:
                return gateway

            if not network.rpc_endpoints:
                raise GatewayError(f"No RPC endpoints configured for {network.name}")

            gateway = EvmGateway(network)
            self._gateways[network.chain_id] = gateway
            logger.info(
                "Created EVM gateway for %s (%d endpoints)",
                network.name,
                len(network.rpc_endpoints),
            )
            return gateway
