"""Market data clients."""
from .dexscreener import DexScreenerClient

__all__ = ["DexScreenerClient"]
