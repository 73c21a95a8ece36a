"""Concurrent wallet × network balance aggregation."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Iterable

from ..amounts import value_usd
from ..concurrency import CancelToken, NetworkRateLimiter
from ..config import PortfolioConfig
from ..exceptions import OperationCancelled, UnknownNetworkError, WalletNotFoundError
from ..interfaces import GatewayProvider, NetworkCatalog, TokenCatalog, WalletSource
from ..models import (
    BalanceRequestItem,
    BalanceRequestType,
    BalanceResultItem,
    NetworkDefinition,
    NetworkTokens,
    PortfolioError,
    TokenDetail,
    TokenInfo,
    WalletPortfolio,
)
from .price_cache import PriceCache

logger = logging.getLogger(__name__)

ALL_NETWORKS = "all"


class PortfolioAggregator:
    """Build USD-valued portfolios for many wallets across many networks.

    Wallets run concurrently up to ``max_concurrent_wallets``; inside each
    wallet, networks run concurrently up to ``max_concurrent_networks``. The
    two limits are independent, so at most their product of balance batches
    is in flight. Every wallet × network pair costs exactly one gateway call,
    throttled per network by a rate limiter shared by all wallets.

    Failures never abort a run: they come back as ``PortfolioError`` entries
    next to whatever data was collected.
    """

    def __init__(
        self,
        wallet_source: WalletSource,
        network_catalog: NetworkCatalog,
        token_catalog: TokenCatalog,
        gateway_provider: GatewayProvider,
        price_cache: PriceCache,
        config: PortfolioConfig | None = None,
    ) -> None:
        self.wallet_source = wallet_source
        self.network_catalog = network_catalog
        self.token_catalog = token_catalog
        self.gateway_provider = gateway_provider
        self.price_cache = price_cache
        self.config = config or PortfolioConfig()
        self.rate_limiter = NetworkRateLimiter(
            self.config.rpc_rate_limit, self.config.rpc_burst
        )
        self._failed_wallets: set[str] = set()
        self._failed_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_all(
        self,
        wallets: Iterable[str] | None = None,
        networks: Iterable[str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> tuple[list[WalletPortfolio], list[PortfolioError]]:
        """Portfolios for ``wallets`` (default: every known wallet).

        Returns one portfolio per wallet in input order plus all errors,
        grouped by wallet then network. Raises ``UnknownNetworkError`` when
        a network selector matches nothing.
        """
        token = cancel_token or CancelToken()
        resolved = self.resolve_networks(networks)
        addresses = list(self.wallet_source.get_wallets() if wallets is None else wallets)
        if not addresses:
            logger.info("No wallets to process")
            return [], []

        tokens_by_chain, errors = self._load_tokens(resolved)
        semaphore = asyncio.Semaphore(self.config.max_concurrent_wallets)

        async def run_wallet(address: str) -> tuple[WalletPortfolio, list[PortfolioError]]:
            async with semaphore:
                return await self._fetch_wallet(address, resolved, tokens_by_chain, token)

        logger.info(
            "Fetching portfolios for %d wallets across %d networks",
            len(addresses),
            len(resolved),
        )
        results = await asyncio.gather(*(run_wallet(a) for a in addresses))

        portfolios: list[WalletPortfolio] = []
        for portfolio, wallet_errors in results:
            portfolios.append(portfolio)
            errors.extend(wallet_errors)

        logger.info(
            "Fetched %d portfolios with %d errors", len(portfolios), len(errors)
        )
        return portfolios, errors

    async def fetch_one(
        self,
        address: str,
        networks: Iterable[str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> tuple[WalletPortfolio, list[PortfolioError]]:
        """Portfolio of a single known wallet.

        Raises ``WalletNotFoundError`` for an address the wallet source does
        not know and ``UnknownNetworkError`` for an unresolvable selector.
        """
        token = cancel_token or CancelToken()
        resolved = self.resolve_networks(networks)
        wallet = self.wallet_source.get_wallet_by_address(address)
        if wallet is None:
            logger.warning("Wallet not found: %s", address)
            raise WalletNotFoundError(address)

        tokens_by_chain, errors = self._load_tokens(resolved)
        portfolio, wallet_errors = await self._fetch_wallet(
            wallet, resolved, tokens_by_chain, token
        )
        return portfolio, errors + wallet_errors

    def get_failed_wallets(self) -> list[str]:
        with self._failed_lock:
            return sorted(self._failed_wallets)

    def clear_failed_wallets(self) -> None:
        with self._failed_lock:
            self._failed_wallets.clear()

    def resolve_networks(
        self, selectors: Iterable[str] | None = None
    ) -> list[NetworkDefinition]:
        """Map selectors (name, identifier or chain id) to networks.

        ``None``, an empty selection or ``"all"`` selects the whole catalog.
        """
        catalog = self.network_catalog.get_all_networks()
        if selectors is None:
            return catalog
        if isinstance(selectors, str):
            selectors = selectors.split(",")

        cleaned = [s.strip() for s in selectors if s and s.strip()]
        if not cleaned or any(s.lower() == ALL_NETWORKS for s in cleaned):
            return catalog

        resolved: list[NetworkDefinition] = []
        seen: set[int] = set()
        unknown: list[str] = []
        for selector in cleaned:
            network = self.network_catalog.get_network(selector)
            if network is None:
                unknown.append(selector)
            elif network.chain_id not in seen:
                seen.add(network.chain_id)
                resolved.append(network)

        if unknown:
            raise UnknownNetworkError(unknown)
        return resolved

    # ------------------------------------------------------------------
    # Per wallet / per network work
    # ------------------------------------------------------------------

    def _load_tokens(
        self, networks: list[NetworkDefinition]
    ) -> tuple[dict[int, list[TokenInfo]], list[PortfolioError]]:
        if not networks:
            return {}, []
        try:
            return self.token_catalog.get_tokens_by_network(networks), []
        except Exception as e:
            logger.error("Token catalog unavailable, using native balances only: %s", e)
            return {}, [PortfolioError(message=f"token catalog unavailable: {e}")]

    async def _fetch_wallet(
        self,
        address: str,
        networks: list[NetworkDefinition],
        tokens_by_chain: dict[int, list[TokenInfo]],
        cancel_token: CancelToken,
    ) -> tuple[WalletPortfolio, list[PortfolioError]]:
        semaphore = asyncio.Semaphore(self.config.max_concurrent_networks)

        async def run_network(
            network: NetworkDefinition,
        ) -> tuple[NetworkTokens | None, list[PortfolioError]]:
            async with semaphore:
                return await self._fetch_network(
                    address,
                    network,
                    tokens_by_chain.get(network.chain_id, []),
                    cancel_token,
                )

        results = await asyncio.gather(*(run_network(n) for n in networks))

        balances: dict[str, NetworkTokens] = {}
        errors: list[PortfolioError] = []
        for network, (network_tokens, network_errors) in zip(networks, results):
            errors.extend(network_errors)
            if network_tokens is not None:
                balances[network.name] = network_tokens

        if errors:
            with self._failed_lock:
                self._failed_wallets.add(address)

        portfolio = WalletPortfolio(
            wallet_address=address,
            balances_by_network=balances,
            total_value_usd=sum(n.total_value_usd for n in balances.values()),
        )
        logger.debug(
            "Wallet %s: %d networks, $%.2f, %d errors",
            address,
            len(balances),
            portfolio.total_value_usd,
            len(errors),
        )
        return portfolio, errors

    async def _fetch_network(
        self,
        wallet: str,
        network: NetworkDefinition,
        tokens: list[TokenInfo],
        cancel_token: CancelToken,
    ) -> tuple[NetworkTokens | None, list[PortfolioError]]:
        """One batched balance call; ``None`` when nothing non-zero is held."""

        def network_error(message: str) -> PortfolioError:
            return PortfolioError(
                message=message,
                wallet_address=wallet,
                network_name=network.name,
                chain_id=str(network.chain_id),
            )

        try:
            gateway = self.gateway_provider.get_gateway(network)
        except Exception as e:
            logger.error("Failed to get gateway for %s: %s", network.name, e)
            return None, [network_error(f"failed to get gateway: {e}")]

        requests = self._build_requests(wallet, network, tokens)
        try:
            await self.rate_limiter.acquire(network.chain_id, cancel_token)
            results = await cancel_token.guard(gateway.get_balances(requests))
        except OperationCancelled as e:
            logger.warning("Balance fetch for %s on %s aborted: %s", wallet, network.name, e)
            return None, [network_error(f"cancelled: {e}")]
        except Exception as e:
            logger.error("Balance batch for %s on %s failed: %s", wallet, network.name, e)
            return None, [network_error(f"batch balance fetch failed: {e}")]

        if len(results) != len(requests):
            return None, [
                network_error(
                    f"gateway returned {len(results)} results for {len(requests)} requests"
                )
            ]

        details: list[TokenDetail] = []
        errors: list[PortfolioError] = []
        for result in results:
            if result.error:
                logger.warning(
                    "Balance of %s for %s on %s failed: %s",
                    result.token_symbol,
                    wallet,
                    network.name,
                    result.error,
                )
                errors.append(self._item_error(wallet, network, result, result.error))
                continue
            if not result.balance:
                continue

            try:
                detail = self._price_result(network, result)
            except ValueError as e:
                errors.append(
                    self._item_error(wallet, network, result, f"invalid amount: {e}")
                )
                continue
            details.append(detail)

        if not details:
            return None, errors
        return (
            NetworkTokens(
                chain_id=str(network.chain_id),
                tokens=tuple(details),
                total_value_usd=sum(d.value_usd for d in details),
            ),
            errors,
        )

    @staticmethod
    def _build_requests(
        wallet: str, network: NetworkDefinition, tokens: list[TokenInfo]
    ) -> list[BalanceRequestItem]:
        requests = [
            BalanceRequestItem(
                request_id=f"{wallet}-{network.identifier}-NATIVE",
                type=BalanceRequestType.NATIVE,
                wallet_address=wallet,
                token_symbol=network.native_symbol,
                token_decimals=network.decimals or 18,
            )
        ]
        for info in tokens:
            if info.chain_id != network.chain_id:
                logger.warning(
                    "Token %s declares chain %d, not %s (%d); skipping",
                    info.symbol,
                    info.chain_id,
                    network.name,
                    network.chain_id,
                )
                continue
            requests.append(
                BalanceRequestItem(
                    request_id=f"{wallet}-{network.identifier}-{info.address}",
                    type=BalanceRequestType.TOKEN,
                    wallet_address=wallet,
                    token_address=info.address,
                    token_symbol=info.symbol,
                    token_decimals=info.decimals,
                )
            )
        return requests

    def _price_result(
        self, network: NetworkDefinition, result: BalanceResultItem
    ) -> TokenDetail:
        if result.is_native:
            price, found = self.price_cache.price_native_asset(network)
        elif network.price_feed_chain_id:
            price, found = self.price_cache.lookup(
                network.price_feed_chain_id, result.token_address
            )
        else:
            price, found = 0.0, False

        if not found:
            logger.debug("No price for %s on %s", result.token_symbol, network.name)
            price = 0.0

        return TokenDetail(
            token_address=result.token_address,
            token_symbol=result.token_symbol,
            decimals=result.decimals,
            formatted_balance=result.formatted_balance,
            price_usd=price,
            value_usd=value_usd(result.balance, result.decimals, price),
        )

    @staticmethod
    def _item_error(
        wallet: str,
        network: NetworkDefinition,
        result: BalanceResultItem,
        message: str,
    ) -> PortfolioError:
        return PortfolioError(
            message=message,
            wallet_address=wallet,
            network_name=network.name,
            chain_id=str(network.chain_id),
            token_symbol=result.token_symbol,
            token_address=result.token_address,
            is_native=result.is_native,
        )
