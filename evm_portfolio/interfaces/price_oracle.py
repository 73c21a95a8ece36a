"""Protocol for trading pair lookups used by the price cache."""
from typing import Protocol

from ..models import TradingPair


class PriceFeedClient(Protocol):
    """Abstract interface for batched trading pair lookups."""

    async def get_token_pairs(
        self, price_feed_chain_id: str, addresses: list[str]
    ) -> list[TradingPair]: ...
