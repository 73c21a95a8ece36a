"""DEX Screener trading pair lookup."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import MAX_PRICE_FEED_BATCH, PriceFeedConfig
from ..exceptions import PriceFeedError
from ..models import TradingPair

logger = logging.getLogger(__name__)


class DexScreenerClient:
    """Fetch trading pairs for up to ``max_tokens_per_request`` tokens at once."""

    def __init__(
        self,
        config: PriceFeedConfig,
        max_tokens_per_request: int = MAX_PRICE_FEED_BATCH,
    ) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.timeout = config.request_timeout
        self.max_tokens_per_request = max_tokens_per_request

    async def get_token_pairs(
        self, price_feed_chain_id: str, addresses: list[str]
    ) -> list[TradingPair]:
        if not addresses:
            return []
        if len(addresses) > self.max_tokens_per_request:
            raise ValueError(
                f"number of token addresses ({len(addresses)}) exceeds max tokens "
                f"per request ({self.max_tokens_per_request})"
            )

        url = f"{self.base_url}/tokens/v1/{price_feed_chain_id}/{','.join(addresses)}"
        logger.debug("Requesting token pairs from DEX Screener: %s", url)

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        raise PriceFeedError(
                            f"DEX Screener request for {price_feed_chain_id} "
                            f"failed: HTTP {response.status}"
                        )
                    data = await response.json(content_type=None)
        except PriceFeedError:
            raise
        except Exception as e:
            raise PriceFeedError(
                f"DEX Screener request for {price_feed_chain_id} failed: {e}"
            ) from e

        raw_pairs = self._extract_pairs(data, price_feed_chain_id)
        if not raw_pairs:
            logger.warning(
                "DEX Screener returned no pairs for %d tokens on %s",
                len(addresses),
                price_feed_chain_id,
            )

        pairs = []
        for raw in raw_pairs:
            pair = self._parse_pair(raw)
            if pair is not None:
                pairs.append(pair)
        logger.debug(
            "Received %d pairs for %s", len(pairs), price_feed_chain_id
        )
        return pairs

    @staticmethod
    def _extract_pairs(data: Any, price_feed_chain_id: str) -> list[Any]:
        # The endpoint answers with a bare array; older responses wrap it.
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("pairs"), list):
            return data["pairs"]
        if isinstance(data, dict) and data.get("pairs") is None and "pairs" in data:
            return []
        raise PriceFeedError(
            f"Unexpected DEX Screener response for {price_feed_chain_id}: "
            f"{type(data).__name__}"
        )

    @staticmethod
    def _parse_pair(raw: Any) -> TradingPair | None:
        if not isinstance(raw, dict):
            return None
        base = raw.get("baseToken") or {}
        quote = raw.get("quoteToken") or {}
        address = base.get("address")
        if not address:
            return None

        liquidity = raw.get("liquidity") or {}
        liquidity_usd: float | None
        try:
            liquidity_usd = (
                float(liquidity["usd"]) if liquidity.get("usd") is not None else None
            )
        except (TypeError, ValueError):
            liquidity_usd = None

        price = raw.get("priceUsd")
        return TradingPair(
            base_token_address=str(address),
            quote_token_symbol=str(quote.get("symbol", "")),
            price_usd="" if price is None else str(price),
            liquidity_usd=liquidity_usd,
            pair_address=str(raw.get("pairAddress", "")),
        )
