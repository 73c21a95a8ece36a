"""Load config.yaml and .env into frozen, validated settings."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import NetworkDefinition
from .sources.networks import BUILTIN_NETWORKS

logger = logging.getLogger(__name__)

# Upper bound of addresses DEX Screener accepts in one token lookup.
MAX_PRICE_FEED_BATCH = 30

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PortfolioConfig:
    max_concurrent_wallets: int = 5
    max_concurrent_networks: int = 4
    rpc_rate_limit: float = 10.0
    rpc_burst: int = 5


@dataclass(frozen=True)
class PriceCacheConfig:
    ttl_minutes: float = 60.0
    max_tokens_per_batch: int = 30
    max_concurrent_batches: int = 5
    refresh_interval_minutes: int = 15
    stablecoins: tuple[str, ...] = ("USDC", "USDT", "DAI")
    global_native_symbols: tuple[str, ...] = ("ETH",)

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_minutes * 60


@dataclass(frozen=True)
class PriceFeedConfig:
    base_url: str = "https://api.dexscreener.com"
    request_timeout: int = 10


@dataclass(frozen=True)
class AppConfig:
    wallets_file: str = "data/wallets.txt"
    tokens_dir: str = "data/tokens"
    networks: tuple[NetworkDefinition, ...] = ()
    portfolio: PortfolioConfig = field(default_factory=PortfolioConfig)
    price_cache: PriceCacheConfig = field(default_factory=PriceCacheConfig)
    price_feed: PriceFeedConfig = field(default_factory=PriceFeedConfig)


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------

_ENV_REF_RE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def _expand_env_ref(match: re.Match[str]) -> str:
    # Unset and empty variables both fall back to the default, as in the shell.
    return os.environ.get(match.group("name")) or match.group("default") or ""


def _interpolate_env(value: Any) -> Any:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in every string of a YAML tree."""
    if isinstance(value, dict):
        return {key: _interpolate_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    if isinstance(value, str):
        return _ENV_REF_RE.sub(_expand_env_ref, value)
    return value


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------


def _build_network(raw: dict[str, Any]) -> NetworkDefinition:
    """Build one network, layering config values over a builtin definition."""
    identifier = str(raw.get("identifier", "")).strip().lower()
    if not identifier:
        raise ValueError("Network entry is missing 'identifier'")

    base = BUILTIN_NETWORKS.get(identifier) or NetworkDefinition(
        chain_id=0, name=identifier, identifier=identifier, native_symbol=""
    )
    endpoints = raw.get("rpc_endpoints", base.rpc_endpoints)
    return NetworkDefinition(
        chain_id=int(raw.get("chain_id", base.chain_id)),
        name=str(raw.get("name", base.name)),
        identifier=identifier,
        native_symbol=str(raw.get("native_symbol", base.native_symbol)),
        decimals=int(raw.get("decimals", base.decimals)),
        price_feed_chain_id=str(
            raw.get("price_feed_chain_id", base.price_feed_chain_id)
        ),
        wrapped_native_address=str(
            raw.get("wrapped_native_address", base.wrapped_native_address)
        ),
        # Unset ${VAR} references interpolate to "" and are dropped.
        rpc_endpoints=tuple(e for e in endpoints if e),
        rpc_timeout=int(raw.get("rpc_timeout", base.rpc_timeout)),
    )


def _build_networks(raw: list[dict[str, Any]]) -> tuple[NetworkDefinition, ...]:
    return tuple(_build_network(entry) for entry in raw)


def _build_portfolio(raw: dict[str, Any]) -> PortfolioConfig:
    return PortfolioConfig(
        max_concurrent_wallets=int(raw.get("max_concurrent_wallets", 5)),
        max_concurrent_networks=int(raw.get("max_concurrent_networks", 4)),
        rpc_rate_limit=float(raw.get("rpc_rate_limit", 10.0)),
        rpc_burst=int(raw.get("rpc_burst", 5)),
    )


def _build_price_cache(raw: dict[str, Any]) -> PriceCacheConfig:
    defaults = PriceCacheConfig()
    return PriceCacheConfig(
        ttl_minutes=float(raw.get("ttl_minutes", defaults.ttl_minutes)),
        max_tokens_per_batch=int(
            raw.get("max_tokens_per_batch", defaults.max_tokens_per_batch)
        ),
        max_concurrent_batches=int(
            raw.get("max_concurrent_batches", defaults.max_concurrent_batches)
        ),
        refresh_interval_minutes=int(
            raw.get("refresh_interval_minutes", defaults.refresh_interval_minutes)
        ),
        stablecoins=tuple(
            s.upper() for s in raw.get("stablecoins", defaults.stablecoins)
        ),
        global_native_symbols=tuple(
            s.upper()
            for s in raw.get("global_native_symbols", defaults.global_native_symbols)
        ),
    )


def _build_price_feed(raw: dict[str, Any]) -> PriceFeedConfig:
    return PriceFeedConfig(
        base_url=raw.get("base_url", PriceFeedConfig.base_url),
        request_timeout=int(raw.get("request_timeout", 10)),
    )


def _resolve_path(value: str, base_dir: Path) -> str:
    path = Path(value)
    if not path.is_absolute():
        path = base_dir / path
    return str(path)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "config.yaml"


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Read, interpolate and validate the tracker configuration.

    ``config_path`` defaults to the ``config.yaml`` beside the package.
    Relative ``wallets_file`` and ``tokens_dir`` entries are taken relative
    to the directory holding the config file. Variables from a ``.env``
    file are visible to ``${VAR}`` references.
    """
    load_dotenv()

    path = _DEFAULT_CONFIG if config_path is None else Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = _interpolate_env(yaml.safe_load(path.read_text()) or {})
    base_dir = path.resolve().parent

    cfg = AppConfig(
        wallets_file=_resolve_path(
            raw.get("wallets_file", AppConfig.wallets_file), base_dir
        ),
        tokens_dir=_resolve_path(raw.get("tokens_dir", AppConfig.tokens_dir), base_dir),
        networks=_build_networks(raw.get("networks") or []),
        portfolio=_build_portfolio(raw.get("portfolio") or {}),
        price_cache=_build_price_cache(raw.get("price_cache") or {}),
        price_feed=_build_price_feed(raw.get("price_feed") or {}),
    )

    _validate(cfg)
    logger.info("Loaded %d networks from %s", len(cfg.networks), path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Reject inconsistent settings with ``ValueError``."""
    seen_ids: set[str] = set()
    seen_chains: set[int] = set()
    for net in cfg.networks:
        if net.identifier in seen_ids:
            raise ValueError(f"Duplicate network identifier '{net.identifier}'")
        seen_ids.add(net.identifier)
        if net.chain_id <= 0:
            raise ValueError(f"Network '{net.identifier}' has no valid chain_id")
        if net.chain_id in seen_chains:
            raise ValueError(f"Duplicate chain_id {net.chain_id}")
        seen_chains.add(net.chain_id)
        if not net.native_symbol:
            raise ValueError(f"Network '{net.identifier}' has no native_symbol")
        if not net.rpc_endpoints:
            raise ValueError(f"Network '{net.identifier}' has no rpc_endpoints")

    portfolio = cfg.portfolio
    if portfolio.max_concurrent_wallets < 1 or portfolio.max_concurrent_networks < 1:
        raise ValueError("Portfolio concurrency limits must be at least 1")
    if portfolio.rpc_rate_limit <= 0 or portfolio.rpc_burst < 1:
        raise ValueError("RPC rate limit and burst must be positive")

    prices = cfg.price_cache
    if prices.ttl_minutes <= 0:
        raise ValueError("Price cache ttl_minutes must be positive")
    if not 1 <= prices.max_tokens_per_batch <= MAX_PRICE_FEED_BATCH:
        raise ValueError(
            f"max_tokens_per_batch must be between 1 and {MAX_PRICE_FEED_BATCH}"
        )
    if prices.max_concurrent_batches < 1:
        raise ValueError("max_concurrent_batches must be at least 1")
