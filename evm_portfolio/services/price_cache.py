"""TTL-bound USD price cache fed by batched trading pair lookups."""
from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from typing import Callable, Iterable

from ..concurrency import CancelToken, batched
from ..config import PriceCacheConfig
from ..exceptions import OperationCancelled
from ..interfaces import NetworkCatalog, PriceFeedClient, TokenCatalog
from ..models import (
    NetworkDefinition,
    PricePoint,
    RefreshSummary,
    TokenInfo,
    TradingPair,
    is_zero_address,
)

logger = logging.getLogger(__name__)


def select_best_pair(
    pairs: Iterable[TradingPair],
    base_token_address: str,
    stablecoins: Iterable[str],
) -> TradingPair | None:
    """Pick the pair whose price represents ``base_token_address``.

    Pairs whose price is not a finite positive number (empty, ``"0.00"``,
    garbage) are ignored. A stablecoin-quoted pair
    always wins over any other pair; within each group the highest USD
    liquidity wins, missing liquidity counting as zero and ties keeping the
    first pair seen.
    """
    stable = {s.upper() for s in stablecoins}
    needle = base_token_address.lower()

    best_stable: TradingPair | None = None
    best_overall: TradingPair | None = None
    for pair in pairs:
        if pair.base_token_address.lower() != needle:
            continue
        if parse_price(pair.price_usd) is None:
            continue

        liquidity = pair.liquidity_usd or 0.0
        if pair.quote_token_symbol.upper() in stable:
            if best_stable is None or liquidity > (best_stable.liquidity_usd or 0.0):
                best_stable = pair
        if best_overall is None or liquidity > (best_overall.liquidity_usd or 0.0):
            best_overall = pair

    if best_stable is not None:
        return best_stable
    return best_overall


def parse_price(text: str) -> float | None:
    """Parse a feed price; anything not finite and positive is ``None``."""
    try:
        price = float(text)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


class PriceCache:
    """Shared price store keyed by (price feed chain id, token address).

    Entries expire ``ttl_minutes`` after they were written. Reads and writes
    go through one lock, so refreshes may overlap each other and readers;
    the last writer wins per key.
    """

    def __init__(
        self,
        network_catalog: NetworkCatalog,
        token_catalog: TokenCatalog,
        price_feed: PriceFeedClient,
        config: PriceCacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.network_catalog = network_catalog
        self.token_catalog = token_catalog
        self.price_feed = price_feed
        self.config = config or PriceCacheConfig()
        self.stablecoins = frozenset(s.upper() for s in self.config.stablecoins)
        self.global_native_symbols = frozenset(
            s.lower() for s in self.config.global_native_symbols
        )
        self._clock = clock
        self._prices: dict[str, dict[str, PricePoint]] = {}
        self._global_native: dict[str, PricePoint] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, cancel_token: CancelToken | None = None) -> RefreshSummary:
        """Re-price every tracked token of every network with a feed id."""
        token = cancel_token or CancelToken()
        networks = self.network_catalog.get_all_networks()
        if not networks:
            logger.warning("No networks configured, nothing to price")
            return RefreshSummary()

        tokens_by_chain = self.token_catalog.get_tokens_by_network(networks)

        jobs: list[tuple[str, list[TokenInfo]]] = []
        for network in networks:
            if not network.price_feed_chain_id:
                logger.warning(
                    "No price feed chain id for %s, skipping its tokens", network.name
                )
                continue
            tokens = self._tokens_to_price(network, tokens_by_chain.get(network.chain_id, []))
            if not tokens:
                logger.debug("No tokens to price on %s", network.name)
                continue
            logger.info(
                "Fetching prices for %d tokens on %s",
                len(tokens),
                network.price_feed_chain_id,
            )
            for batch in batched(tokens, self.config.max_tokens_per_batch):
                jobs.append((network.price_feed_chain_id, batch))

        semaphore = asyncio.Semaphore(self.config.max_concurrent_batches)
        outcomes = await asyncio.gather(
            *(self._refresh_batch(chain, batch, semaphore, token) for chain, batch in jobs)
        )

        processed = missed = failed_batches = 0
        chains: set[str] = set()
        for (chain, _), (batch_processed, batch_missed, batch_failed) in zip(jobs, outcomes):
            processed += batch_processed
            missed += batch_missed
            failed_batches += int(batch_failed)
            if batch_processed:
                chains.add(chain)

        summary = RefreshSummary(
            processed=processed,
            missed=missed,
            failed_batches=failed_batches,
            chains=tuple(sorted(chains)),
        )
        logger.info(
            "Price refresh finished: %d priced, %d missed, %d failed batches, %d chains",
            summary.processed,
            summary.missed,
            summary.failed_batches,
            len(summary.chains),
        )
        return summary

    @staticmethod
    def _tokens_to_price(
        network: NetworkDefinition, tokens: list[TokenInfo]
    ) -> list[TokenInfo]:
        # The wrapped native token prices the native coin, tracked or not.
        result = [t for t in tokens if t.chain_id == network.chain_id]
        wrapped = network.wrapped_native_address
        if not is_zero_address(wrapped) and all(
            t.address.lower() != wrapped.lower() for t in result
        ):
            result.append(
                TokenInfo(
                    chain_id=network.chain_id,
                    address=wrapped,
                    symbol=f"W{network.native_symbol}",
                    decimals=network.decimals,
                )
            )
        return result

    async def _refresh_batch(
        self,
        chain: str,
        batch: list[TokenInfo],
        semaphore: asyncio.Semaphore,
        cancel_token: CancelToken,
    ) -> tuple[int, int, bool]:
        """Price one batch; returns (processed, missed, batch_failed)."""
        async with semaphore:
            try:
                cancel_token.raise_if_cancelled()
                pairs = await cancel_token.guard(
                    self.price_feed.get_token_pairs(chain, [t.address for t in batch])
                )
            except OperationCancelled as e:
                logger.warning(
                    "Price batch of %d tokens on %s cancelled: %s", len(batch), chain, e
                )
                return 0, len(batch), True
            except Exception as e:
                logger.error(
                    "Price batch of %d tokens on %s failed: %s", len(batch), chain, e
                )
                return 0, len(batch), True

        expires_at = self._clock() + self.config.ttl_seconds
        fresh: dict[str, PricePoint] = {}
        missed = 0
        for info in batch:
            pair = select_best_pair(pairs, info.address, self.stablecoins)
            price = parse_price(pair.price_usd) if pair is not None else None
            if price is None:
                logger.warning(
                    "No usable price for %s (%s) on %s", info.symbol, info.address, chain
                )
                missed += 1
                continue
            logger.debug(
                "Priced %s on %s at %s via %s pair %s",
                info.symbol,
                chain,
                price,
                pair.quote_token_symbol,
                pair.pair_address,
            )
            fresh[info.address.lower()] = PricePoint(price, expires_at)

        if fresh:
            with self._lock:
                self._prices.setdefault(chain, {}).update(fresh)
        return len(fresh), missed, False

    async def run_periodic(
        self,
        interval_seconds: float,
        cancel_token: CancelToken,
        immediate: bool = True,
    ) -> None:
        """Refresh every ``interval_seconds`` until the token is cancelled.

        With ``immediate=False`` the first refresh happens after one interval.
        Failed refreshes are logged and the loop carries on.
        """
        logger.info("Starting periodic price refresh every %ss", interval_seconds)
        skip = not immediate
        while not cancel_token.cancelled:
            if not skip:
                try:
                    await self.refresh(cancel_token)
                except OperationCancelled:
                    break
                except Exception as e:
                    logger.error("Price refresh failed: %s", e)
            skip = False

            try:
                await cancel_token.guard(asyncio.sleep(interval_seconds))
            except OperationCancelled:
                break
        logger.info("Periodic price refresh stopped")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, price_feed_chain_id: str, token_address: str) -> tuple[float, bool]:
        """Return ``(price, True)`` for a live entry, else ``(0.0, False)``."""
        point = self._lookup_point(price_feed_chain_id, token_address)
        if point is None:
            return 0.0, False
        return point.price_usd, True

    def _lookup_point(self, price_feed_chain_id: str, token_address: str) -> PricePoint | None:
        key = token_address.lower()
        now = self._clock()
        with self._lock:
            chain_prices = self._prices.get(price_feed_chain_id)
            if chain_prices is None:
                return None
            point = chain_prices.get(key)
            if point is None:
                return None
            if point.is_expired(now):
                del chain_prices[key]
                return None
            return point

    def snapshot(self) -> dict[str, dict[str, float]]:
        now = self._clock()
        with self._lock:
            return {
                chain: {
                    address: point.price_usd
                    for address, point in prices.items()
                    if not point.is_expired(now)
                }
                for chain, prices in self._prices.items()
            }

    def get_global_native_price(self, symbol: str) -> tuple[float, bool]:
        key = symbol.lower()
        now = self._clock()
        with self._lock:
            point = self._global_native.get(key)
            if point is None:
                return 0.0, False
            if point.is_expired(now):
                del self._global_native[key]
                return 0.0, False
            return point.price_usd, True

    def set_global_native_price(
        self, symbol: str, price: float, expires_at: float | None = None
    ) -> None:
        """Store a shared native price, live for one TTL unless ``expires_at`` is given."""
        if not math.isfinite(price) or price <= 0:
            logger.debug("Ignoring non-positive shared price %s for %s", price, symbol)
            return
        if expires_at is None:
            expires_at = self._clock() + self.config.ttl_seconds
        point = PricePoint(price, expires_at)
        with self._lock:
            self._global_native[symbol.lower()] = point
        logger.debug("Shared native price for %s set to %s", symbol.upper(), price)

    def price_native_asset(self, network: NetworkDefinition) -> tuple[float, bool]:
        """Price a network's native coin.

        Shared symbols (e.g. ETH on several L2s) are served from the symbol
        slot when it holds a live price. Otherwise the wrapped ERC-20
        counterpart is looked up, and a hit on a shared symbol fills the slot
        with the wrapped entry's own expiry.
        """
        symbol = network.native_symbol.lower()
        shared = symbol in self.global_native_symbols
        if shared:
            price, found = self.get_global_native_price(symbol)
            if found:
                return price, True

        if is_zero_address(network.wrapped_native_address):
            logger.warning(
                "No wrapped native token configured for %s, %s left unpriced",
                network.name,
                network.native_symbol,
            )
            return 0.0, False
        if not network.price_feed_chain_id:
            return 0.0, False

        point = self._lookup_point(
            network.price_feed_chain_id, network.wrapped_native_address
        )
        if point is None:
            return 0.0, False
        if shared:
            self.set_global_native_price(symbol, point.price_usd, expires_at=point.expires_at)
        return point.price_usd, True
