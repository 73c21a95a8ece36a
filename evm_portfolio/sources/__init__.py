"""Wallet, network and token sources."""
from .networks import BUILTIN_NETWORKS, StaticNetworkCatalog
from .tokens import TokenFileLoader
from .wallets import WalletFileLoader

__all__ = [
    "BUILTIN_NETWORKS",
    "StaticNetworkCatalog",
    "TokenFileLoader",
    "WalletFileLoader",
]
