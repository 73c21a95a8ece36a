"""Portfolio tracker exceptions."""
from __future__ import annotations


class PortfolioTrackerError(Exception):
    """Base class for tracker errors."""


class UnknownNetworkError(PortfolioTrackerError):
    """Raised when a network selector matches nothing in the catalog."""

    def __init__(self, selectors: list[str]) -> None:
        self.selectors = list(selectors)
        super().__init__(f"Unknown network(s): {', '.join(self.selectors)}")


class WalletNotFoundError(PortfolioTrackerError):
    """Raised when a single-wallet lookup targets an unknown address."""

    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Wallet with address {address} not found")


class OperationCancelled(PortfolioTrackerError):
    """Raised when a guarded wait is aborted by its cancel token."""


class GatewayError(PortfolioTrackerError):
    """Raised when a batched RPC call fails as a whole."""


class PriceFeedError(PortfolioTrackerError):
    """Raised when a price feed batch lookup fails."""
