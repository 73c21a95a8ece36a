"""Tracker orchestration: wires components from config, renders reports."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from ..chains.evm import EvmGatewayProvider
from ..concurrency import CancelToken
from ..config import AppConfig
from ..exceptions import OperationCancelled
from ..interfaces import (
    GatewayProvider,
    NetworkCatalog,
    PriceFeedClient,
    TokenCatalog,
    WalletSource,
)
from ..models import PortfolioError, RefreshSummary, WalletPortfolio
from ..oracles import DexScreenerClient
from ..sources import StaticNetworkCatalog, TokenFileLoader, WalletFileLoader
from .portfolio import PortfolioAggregator
from .price_cache import PriceCache

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial_failure"
STATUS_FAILED = "failure"

_STATUS_LABELS = {
    STATUS_SUCCESS: "✅ Success",
    STATUS_PARTIAL: "⚠️ Partial failure",
    STATUS_FAILED: "🚨 Total failure",
}


def run_status(
    portfolios: list[WalletPortfolio], errors: list[PortfolioError]
) -> str:
    """Classify a run as success, partial failure or total failure."""
    if not errors:
        return STATUS_SUCCESS
    if any(p.balances_by_network for p in portfolios):
        return STATUS_PARTIAL
    return STATUS_FAILED


class Tracker:
    """Builds the price cache and aggregator and renders their results.

    Reports never reset the aggregator's failed-wallet set; it spans the
    whole process.
    """

    def __init__(
        self,
        config: AppConfig,
        wallet_source: WalletSource | None = None,
        network_catalog: NetworkCatalog | None = None,
        token_catalog: TokenCatalog | None = None,
        gateway_provider: GatewayProvider | None = None,
        price_feed: PriceFeedClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config

        wallet_source = wallet_source or WalletFileLoader(config.wallets_file)
        network_catalog = network_catalog or StaticNetworkCatalog(config.networks)
        token_catalog = token_catalog or TokenFileLoader(config.tokens_dir)
        gateway_provider = gateway_provider or EvmGatewayProvider()
        price_feed = price_feed or DexScreenerClient(config.price_feed)

        self.price_cache = PriceCache(
            network_catalog,
            token_catalog,
            price_feed,
            config.price_cache,
            clock=clock,
        )
        self.aggregator = PortfolioAggregator(
            wallet_source,
            network_catalog,
            token_catalog,
            gateway_provider,
            self.price_cache,
            config.portfolio,
        )

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_wallet(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def _format_portfolio(self, portfolio: WalletPortfolio) -> str:
        lines = [
            f"━━ {self._format_wallet(portfolio.wallet_address)} ━━ "
            f"${portfolio.total_value_usd:,.2f}"
        ]
        if not portfolio.balances_by_network:
            lines.append("  No balances found.")
        for name, network in portfolio.balances_by_network.items():
            lines.append(
                f"  {name} (chain {network.chain_id}) · ${network.total_value_usd:,.2f}"
            )
            for token in network.tokens:
                price = f"${token.price_usd:,.4f}" if token.price_usd else "no price"
                lines.append(
                    f"    {token.token_symbol}: {token.formatted_balance} "
                    f"@ {price} = ${token.value_usd:,.2f}"
                )
        return "\n".join(lines)

    def format_text_report(
        self,
        portfolios: list[WalletPortfolio],
        errors: list[PortfolioError],
        failed_wallets: list[str],
    ) -> str:
        sections = [self._format_portfolio(p) for p in portfolios]
        body = "\n\n".join(sections) if sections else "No wallets tracked."
        total = sum(p.total_value_usd for p in portfolios)

        report = (
            f"📋 Portfolio Report\n"
            f"\n"
            f"{body}\n"
            f"\n"
            f"Total: ${total:,.2f} across {len(portfolios)} wallets\n"
            f"Status: {_STATUS_LABELS[run_status(portfolios, errors)]}"
        )
        if errors:
            error_lines = "\n".join(f"  • {e}" for e in errors)
            report += f"\n\nErrors ({len(errors)}):\n{error_lines}"
        if failed_wallets:
            report += f"\n\nFailed wallets: {', '.join(failed_wallets)}"
        return report + f"\n\n{self._now_str()} UTC"

    def format_json_report(
        self,
        portfolios: list[WalletPortfolio],
        errors: list[PortfolioError],
        failed_wallets: list[str],
    ) -> str:
        payload: dict[str, Any] = {
            "generated_at": self._now_str(),
            "status": run_status(portfolios, errors),
            "total_value_usd": sum(p.total_value_usd for p in portfolios),
            "portfolios": [p.as_dict() for p in portfolios],
            "errors": [e.as_dict() for e in errors],
            "failed_wallets": failed_wallets,
        }
        return json.dumps(payload, indent=2)

    def _render(
        self,
        portfolios: list[WalletPortfolio],
        errors: list[PortfolioError],
        as_json: bool,
    ) -> str:
        status = run_status(portfolios, errors)
        if status == STATUS_FAILED:
            logger.error("Run failed: no data, %d errors", len(errors))
        elif status == STATUS_PARTIAL:
            logger.warning("Run partially failed with %d errors", len(errors))
        else:
            logger.info("Run completed for %d wallets", len(portfolios))

        failed = self.aggregator.get_failed_wallets()
        if as_json:
            return self.format_json_report(portfolios, errors, failed)
        return self.format_text_report(portfolios, errors, failed)

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def refresh_prices(
        self, cancel_token: CancelToken | None = None
    ) -> RefreshSummary:
        return await self.price_cache.refresh(cancel_token)

    async def _refresh_for_report(self, cancel_token: CancelToken | None) -> None:
        # A stale or empty cache still yields a report, only without prices.
        try:
            await self.refresh_prices(cancel_token)
        except Exception as e:
            logger.error("Price refresh failed, reporting with cached prices: %s", e)

    async def report(
        self,
        networks: Iterable[str] | None = None,
        as_json: bool = False,
        refresh: bool = True,
        cancel_token: CancelToken | None = None,
    ) -> str:
        """Portfolio report for every tracked wallet."""
        if refresh:
            await self._refresh_for_report(cancel_token)
        portfolios, errors = await self.aggregator.fetch_all(
            networks=networks, cancel_token=cancel_token
        )
        return self._render(portfolios, errors, as_json)

    async def wallet_report(
        self,
        address: str,
        networks: Iterable[str] | None = None,
        as_json: bool = False,
        cancel_token: CancelToken | None = None,
    ) -> str:
        """Portfolio report for a single tracked wallet."""
        await self._refresh_for_report(cancel_token)
        portfolio, errors = await self.aggregator.fetch_one(
            address, networks=networks, cancel_token=cancel_token
        )
        return self._render([portfolio], errors, as_json)

    async def run_continuous(
        self,
        interval_minutes: float | None = None,
        cancel_token: CancelToken | None = None,
        output: Callable[[str], None] = print,
    ) -> None:
        """Report every ``interval_minutes`` while prices refresh in the background."""
        token = cancel_token or CancelToken()
        interval = interval_minutes or self._config.price_cache.refresh_interval_minutes
        logger.info("Starting continuous tracking (reporting every %s minutes)", interval)

        try:
            await self.refresh_prices(token)
        except Exception as e:
            logger.error("Initial price refresh failed: %s", e)

        refresher = asyncio.create_task(
            self.price_cache.run_periodic(
                self._config.price_cache.refresh_interval_minutes * 60,
                token,
                immediate=False,
            )
        )
        try:
            while not token.cancelled:
                try:
                    output(await self.report(refresh=False, cancel_token=token))
                except Exception as e:
                    logger.error("Error in tracking loop: %s", e)

                try:
                    await token.guard(asyncio.sleep(interval * 60))
                except OperationCancelled:
                    break
        finally:
            token.cancel("tracking stopped")
            await refresher
        logger.info("Continuous tracking stopped")
