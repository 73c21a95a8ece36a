"""EVM JSON-RPC gateway."""
from .client import EvmGateway
from .provider import EvmGatewayProvider

__all__ = ["EvmGateway", "EvmGatewayProvider"]
