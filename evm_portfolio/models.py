"""Immutable data models shared across the tracker."""
from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_zero_address(address: str) -> bool:
    """True for an empty address or the EVM zero address."""
    return not address or address.lower() == ZERO_ADDRESS


@dataclass(frozen=True)
class NetworkDefinition:
    """An EVM network the tracker can query."""

    chain_id: int
    name: str
    identifier: str
    native_symbol: str
    decimals: int = 18
    price_feed_chain_id: str = ""
    wrapped_native_address: str = ""
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30

    def matches(self, selector: str) -> bool:
        """Case-insensitive match by name, identifier or chain id."""
        needle = selector.strip().lower()
        return needle in (
            self.name.lower(),
            self.identifier.lower(),
            str(self.chain_id),
        )


@dataclass(frozen=True)
class TokenInfo:
    """A tracked ERC-20 token on one network."""

    chain_id: int
    address: str
    symbol: str
    decimals: int
    name: str = ""


class BalanceRequestType(enum.Enum):
    NATIVE = "native"
    TOKEN = "token"


@dataclass(frozen=True)
class BalanceRequestItem:
    """One unit of work inside a batched balance call."""

    request_id: str
    type: BalanceRequestType
    wallet_address: str
    token_address: str = ""
    token_symbol: str = ""
    token_decimals: int = 18

    @property
    def is_native(self) -> bool:
        return self.type is BalanceRequestType.NATIVE


@dataclass(frozen=True)
class BalanceResultItem:
    """Result of one balance request; ``error`` is set when the item failed."""

    request_id: str
    wallet_address: str
    token_address: str
    token_symbol: str
    decimals: int
    is_native: bool
    balance: int | None = None
    formatted_balance: str = ""
    error: str | None = None


@dataclass(frozen=True)
class TradingPair:
    """A single trading pair returned by the price feed."""

    base_token_address: str
    quote_token_symbol: str
    price_usd: str
    liquidity_usd: float | None = None
    pair_address: str = ""


@dataclass(frozen=True)
class PricePoint:
    """Cached USD price with its expiry on the cache clock."""

    price_usd: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class TokenDetail:
    """Single priced balance line."""

    token_address: str
    token_symbol: str
    decimals: int
    formatted_balance: str
    price_usd: float
    value_usd: float

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NetworkTokens:
    """All non-zero balances of one wallet on one network."""

    chain_id: str
    tokens: tuple[TokenDetail, ...] = ()
    total_value_usd: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "tokens": [t.as_dict() for t in self.tokens],
            "total_value_usd": self.total_value_usd,
        }


@dataclass(frozen=True)
class WalletPortfolio:
    """Wallet holdings keyed by network name."""

    wallet_address: str
    balances_by_network: dict[str, NetworkTokens] = field(default_factory=dict)
    total_value_usd: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "balances_by_network": {
                name: net.as_dict() for name, net in self.balances_by_network.items()
            },
            "total_value_usd": self.total_value_usd,
        }


@dataclass(frozen=True)
class PortfolioError:
    """A failure scoped to a wallet and optionally a network and token."""

    message: str
    wallet_address: str = ""
    network_name: str = ""
    chain_id: str = ""
    token_symbol: str = ""
    token_address: str = ""
    is_native: bool = False

    def __str__(self) -> str:
        scope = [
            part
            for part in (self.wallet_address, self.network_name, self.token_symbol)
            if part
        ]
        if not scope:
            return self.message
        return f"[{' / '.join(scope)}] {self.message}"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RefreshSummary:
    """Outcome of one price cache refresh."""

    processed: int = 0
    missed: int = 0
    failed_batches: int = 0
    chains: tuple[str, ...] = ()
