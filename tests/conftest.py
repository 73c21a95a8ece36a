"""Shared test fixtures, in-memory collaborators and sample data."""
from __future__ import annotations

import asyncio
import textwrap
from pathlib import Path
from types import SimpleNamespace

import pytest

from evm_portfolio.amounts import format_units
from evm_portfolio.config import AppConfig, PortfolioConfig, PriceCacheConfig
from evm_portfolio.exceptions import GatewayError, PriceFeedError
from evm_portfolio.models import (
    BalanceRequestItem,
    BalanceResultItem,
    NetworkDefinition,
    TokenInfo,
    TradingPair,
)
from evm_portfolio.services.price_cache import PriceCache
from evm_portfolio.sources import StaticNetworkCatalog

WALLET_A = "0xAaAaaAaaAaAaAaaAaAAAAAAAAaaaAaAaAaaAaaAa"
WALLET_B = "0xBbBbBbbBBbbbbBbBBbBBbbbbBbBbbBbbBBbBbbBb"
WALLET_C = "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC"

WETH_ETHEREUM = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
WETH_ARBITRUM = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
USDC_ETHEREUM = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
LINK_ETHEREUM = "0x514910771AF9Ca656af840dff83E8264EcF986CA"
ARB_ARBITRUM = "0x912CE59144191C1204E64559FE8253a0e49E6548"


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWalletSource:
    def __init__(self, wallets: list[str]) -> None:
        self.wallets = list(wallets)

    def get_wallets(self) -> list[str]:
        return list(self.wallets)

    def get_wallet_by_address(self, address: str) -> str | None:
        for wallet in self.wallets:
            if wallet.lower() == address.lower():
                return wallet
        return None


class FakeTokenCatalog:
    def __init__(
        self,
        tokens_by_chain: dict[int, list[TokenInfo]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.tokens_by_chain = tokens_by_chain or {}
        self.error = error
        self.calls = 0

    def get_tokens_by_network(
        self, networks: list[NetworkDefinition]
    ) -> dict[int, list[TokenInfo]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {
            n.chain_id: list(self.tokens_by_chain[n.chain_id])
            for n in networks
            if n.chain_id in self.tokens_by_chain
        }


class FakePriceFeed:
    """Returns the configured pairs whose base token was requested."""

    def __init__(
        self,
        pairs_by_chain: dict[str, list[TradingPair]] | None = None,
        fail_chains: tuple[str, ...] = (),
        delay: float = 0.0,
    ) -> None:
        self.pairs_by_chain = pairs_by_chain or {}
        self.fail_chains = set(fail_chains)
        self.delay = delay
        self.calls: list[tuple[str, list[str]]] = []
        self.active = 0
        self.peak = 0

    async def get_token_pairs(
        self, price_feed_chain_id: str, addresses: list[str]
    ) -> list[TradingPair]:
        self.calls.append((price_feed_chain_id, list(addresses)))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if price_feed_chain_id in self.fail_chains:
                raise PriceFeedError(f"feed down for {price_feed_chain_id}")
            wanted = {a.lower() for a in addresses}
            return [
                p
                for p in self.pairs_by_chain.get(price_feed_chain_id, [])
                if p.base_token_address.lower() in wanted
            ]
        finally:
            self.active -= 1


class ConcurrencyProbe:
    """Tracks gateway calls in flight, overall and per wallet."""

    def __init__(self) -> None:
        self.active_by_wallet: dict[str, int] = {}
        self.peak_wallets = 0
        self.peak_per_wallet = 0
        self.peak_calls = 0

    def enter(self, wallet: str) -> None:
        self.active_by_wallet[wallet] = self.active_by_wallet.get(wallet, 0) + 1
        active_wallets = [w for w, n in self.active_by_wallet.items() if n > 0]
        self.peak_wallets = max(self.peak_wallets, len(active_wallets))
        self.peak_per_wallet = max(self.peak_per_wallet, self.active_by_wallet[wallet])
        self.peak_calls = max(self.peak_calls, sum(self.active_by_wallet.values()))

    def exit(self, wallet: str) -> None:
        self.active_by_wallet[wallet] -= 1


class FakeGateway:
    """Answers balance batches from a ``(wallet, chain_id, token) -> amount`` map.

    Native balances use the token key ``"native"``; anything unset is zero.
    """

    def __init__(
        self,
        network: NetworkDefinition,
        balances: dict[tuple[str, int, str], int],
        fail_wallets: set[str],
        item_errors: set[tuple[str, int, str]],
        delays: dict[str, float],
        probe: ConcurrencyProbe | None,
    ) -> None:
        self.network = network
        self.balances = balances
        self.fail_wallets = fail_wallets
        self.item_errors = item_errors
        self.delays = delays
        self.probe = probe
        self.calls: list[list[BalanceRequestItem]] = []

    async def get_balances(
        self, requests: list[BalanceRequestItem]
    ) -> list[BalanceResultItem]:
        self.calls.append(list(requests))
        wallet = requests[0].wallet_address.lower()
        if self.probe is not None:
            self.probe.enter(wallet)
        try:
            await asyncio.sleep(self.delays.get(wallet, self.delays.get("*", 0.0)))
            if wallet in self.fail_wallets:
                raise GatewayError(f"rpc unavailable on {self.network.name}")
            return [self._result(req) for req in requests]
        finally:
            if self.probe is not None:
                self.probe.exit(wallet)

    def _result(self, req: BalanceRequestItem) -> BalanceResultItem:
        token_key = "native" if req.is_native else req.token_address.lower()
        key = (req.wallet_address.lower(), self.network.chain_id, token_key)
        common = dict(
            request_id=req.request_id,
            wallet_address=req.wallet_address,
            token_address=req.token_address,
            token_symbol=req.token_symbol,
            decimals=req.token_decimals,
            is_native=req.is_native,
        )
        if key in self.item_errors:
            return BalanceResultItem(**common, error="execution reverted")
        amount = self.balances.get(key, 0)
        return BalanceResultItem(
            **common,
            balance=amount,
            formatted_balance=format_units(amount, req.token_decimals),
        )


class FakeGatewayProvider:
    def __init__(
        self,
        balances: dict[tuple[str, int, str], int] | None = None,
        fail_wallets: tuple[str, ...] = (),
        item_errors: tuple[tuple[str, int, str], ...] = (),
        fail_networks: tuple[int, ...] = (),
        delays: dict[str, float] | None = None,
        probe: ConcurrencyProbe | None = None,
    ) -> None:
        self.balances = {
            (w.lower(), c, t.lower()): v for (w, c, t), v in (balances or {}).items()
        }
        self.fail_wallets = {w.lower() for w in fail_wallets}
        self.item_errors = {(w.lower(), c, t.lower()) for w, c, t in item_errors}
        self.fail_networks = set(fail_networks)
        self.delays = {k.lower(): v for k, v in (delays or {}).items()}
        self.probe = probe
        self.gateways: dict[int, FakeGateway] = {}

    def get_gateway(self, network: NetworkDefinition) -> FakeGateway:
        if network.chain_id in self.fail_networks:
            raise GatewayError(f"No RPC endpoints reachable for {network.name}")
        if network.chain_id not in self.gateways:
            self.gateways[network.chain_id] = FakeGateway(
                network,
                self.balances,
                self.fail_wallets,
                self.item_errors,
                self.delays,
                self.probe,
            )
        return self.gateways[network.chain_id]

    @property
    def total_calls(self) -> int:
        return sum(len(g.calls) for g in self.gateways.values())


# ---------------------------------------------------------------------------
# Network / token fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def addr() -> SimpleNamespace:
    """Wallet and token addresses used throughout the sample data."""
    return SimpleNamespace(
        wallet_a=WALLET_A,
        wallet_b=WALLET_B,
        wallet_c=WALLET_C,
        weth_ethereum=WETH_ETHEREUM,
        weth_arbitrum=WETH_ARBITRUM,
        usdc_ethereum=USDC_ETHEREUM,
        link_ethereum=LINK_ETHEREUM,
        arb_arbitrum=ARB_ARBITRUM,
    )


@pytest.fixture()
def ethereum() -> NetworkDefinition:
    return NetworkDefinition(
        chain_id=1,
        name="Ethereum Mainnet",
        identifier="ethereum",
        native_symbol="ETH",
        price_feed_chain_id="ethereum",
        wrapped_native_address=WETH_ETHEREUM,
        rpc_endpoints=("https://eth.example.com",),
    )


@pytest.fixture()
def arbitrum() -> NetworkDefinition:
    return NetworkDefinition(
        chain_id=42161,
        name="Arbitrum One",
        identifier="arbitrum",
        native_symbol="ETH",
        price_feed_chain_id="arbitrum",
        wrapped_native_address=WETH_ARBITRUM,
        rpc_endpoints=("https://arb.example.com",),
    )


@pytest.fixture()
def mychain() -> NetworkDefinition:
    """A network with no wrapped native token configured."""
    return NetworkDefinition(
        chain_id=777,
        name="My Chain",
        identifier="mychain",
        native_symbol="MYC",
        price_feed_chain_id="mychain",
        rpc_endpoints=("https://rpc.mychain.example",),
    )


@pytest.fixture()
def networks(
    ethereum: NetworkDefinition, arbitrum: NetworkDefinition
) -> list[NetworkDefinition]:
    return [ethereum, arbitrum]


@pytest.fixture()
def network_catalog(networks: list[NetworkDefinition]) -> StaticNetworkCatalog:
    return StaticNetworkCatalog(networks)


@pytest.fixture()
def tokens_by_chain() -> dict[int, list[TokenInfo]]:
    return {
        1: [
            TokenInfo(chain_id=1, address=USDC_ETHEREUM, symbol="USDC", decimals=6),
            TokenInfo(chain_id=1, address=LINK_ETHEREUM, symbol="LINK", decimals=18),
        ],
        42161: [
            TokenInfo(chain_id=42161, address=ARB_ARBITRUM, symbol="ARB", decimals=18),
        ],
    }


@pytest.fixture()
def token_catalog(tokens_by_chain: dict[int, list[TokenInfo]]) -> FakeTokenCatalog:
    return FakeTokenCatalog(tokens_by_chain)


@pytest.fixture()
def sample_pairs() -> dict[str, list[TradingPair]]:
    """Feed data: WETH at $2000 on both chains, USDC at $1, ARB at $0.50.

    LINK has no pairs and stays unpriced.
    """
    return {
        "ethereum": [
            TradingPair(WETH_ETHEREUM, "USDC", "2000", 5_000_000.0, "0xpair1"),
            TradingPair(WETH_ETHEREUM, "WBTC", "1990", 9_000_000.0, "0xpair2"),
            TradingPair(USDC_ETHEREUM, "USDT", "1.0", 3_000_000.0, "0xpair3"),
        ],
        "arbitrum": [
            TradingPair(WETH_ARBITRUM, "USDC", "2000", 1_000_000.0, "0xpair4"),
            TradingPair(ARB_ARBITRUM, "USDC", "0.5", 800_000.0, "0xpair5"),
        ],
    }


@pytest.fixture()
def price_feed(sample_pairs: dict[str, list[TradingPair]]) -> FakePriceFeed:
    return FakePriceFeed(sample_pairs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def price_cache(
    network_catalog: StaticNetworkCatalog,
    token_catalog: FakeTokenCatalog,
    price_feed: FakePriceFeed,
    clock: FakeClock,
) -> PriceCache:
    return PriceCache(
        network_catalog, token_catalog, price_feed, PriceCacheConfig(), clock=clock
    )


@pytest.fixture()
def sample_balances() -> dict[tuple[str, int, str], int]:
    """WALLET_A holds 1.5 ETH, 250.5 USDC, 10 LINK and 100 ARB; WALLET_B nothing."""
    return {
        (WALLET_A, 1, "native"): 1_500_000_000_000_000_000,
        (WALLET_A, 1, USDC_ETHEREUM): 250_500_000,
        (WALLET_A, 1, LINK_ETHEREUM): 10 * 10**18,
        (WALLET_A, 42161, ARB_ARBITRUM): 100 * 10**18,
    }


@pytest.fixture()
def fast_portfolio_config() -> PortfolioConfig:
    """Rate limits high enough never to delay a test."""
    return PortfolioConfig(
        max_concurrent_wallets=5,
        max_concurrent_networks=4,
        rpc_rate_limit=1000.0,
        rpc_burst=100,
    )


@pytest.fixture()
def make_provider():
    return FakeGatewayProvider


@pytest.fixture()
def make_wallet_source():
    return FakeWalletSource


@pytest.fixture()
def make_token_catalog():
    return FakeTokenCatalog


@pytest.fixture()
def make_price_feed():
    return FakePriceFeed


@pytest.fixture()
def make_probe():
    return ConcurrencyProbe


@pytest.fixture()
def sample_app_config(
    networks: list[NetworkDefinition], fast_portfolio_config: PortfolioConfig
) -> AppConfig:
    return AppConfig(
        wallets_file="unused-wallets.txt",
        tokens_dir="unused-tokens",
        networks=tuple(networks),
        portfolio=fast_portfolio_config,
    )


# ---------------------------------------------------------------------------
# YAML fixtures
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    wallets_file: data/wallets.txt
    tokens_dir: data/tokens
    networks:
      - identifier: ethereum
        rpc_endpoints: ["https://rpc1.example.com", "https://rpc2.example.com"]
      - identifier: mychain
        name: My Chain
        chain_id: 777
        native_symbol: MYC
        price_feed_chain_id: mychain
        rpc_endpoints: ["https://rpc.mychain.example"]
        rpc_timeout: 15
    portfolio:
      max_concurrent_wallets: 3
      max_concurrent_networks: 2
      rpc_rate_limit: 20
      rpc_burst: 10
    price_cache:
      ttl_minutes: 30
      max_tokens_per_batch: 25
      stablecoins: [usdc, usdt]
    price_feed:
      base_url: https://dex.example.com
      request_timeout: 5
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
