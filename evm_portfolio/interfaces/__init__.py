"""Protocol interfaces for the portfolio tracker."""
from .chain import BlockchainGateway, GatewayProvider
from .price_oracle import PriceFeedClient
from .sources import NetworkCatalog, TokenCatalog, WalletSource

__all__ = [
    "BlockchainGateway",
    "GatewayProvider",
    "NetworkCatalog",
    "PriceFeedClient",
    "TokenCatalog",
    "WalletSource",
]
