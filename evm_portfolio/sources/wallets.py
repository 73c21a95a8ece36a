"""Wallet list loaded from a plain text file, one address per line."""
from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(address: str) -> bool:
    return bool(_ADDRESS_RE.match(address))


class WalletFileLoader:
    """Read wallet addresses from a text file.

    Blank lines and ``#`` comments are ignored; malformed addresses are
    dropped with a warning and duplicates (case-insensitive) are collapsed.
    """

    def __init__(self, file_path: str | Path) -> None:
        self.file_path = Path(file_path)

    def get_wallets(self) -> list[str]:
        if not self.file_path.exists():
            raise FileNotFoundError(f"Wallet file not found: {self.file_path}")

        wallets: list[str] = []
        seen: set[str] = set()
        with open(self.file_path) as f:
            for line_number, line in enumerate(f, start=1):
                address = line.split("#", 1)[0].strip()
                if not address:
                    continue
                if not is_valid_address(address):
                    logger.warning(
                        "Skipping invalid wallet address %r (%s:%d)",
                        address,
                        self.file_path,
                        line_number,
                    )
                    continue
                if address.lower() in seen:
                    continue
                seen.add(address.lower())
                wallets.append(address)

        logger.info("Loaded %d wallets from %s", len(wallets), self.file_path)
        return wallets

    def get_wallet_by_address(self, address: str) -> str | None:
        needle = address.strip().lower()
        for wallet in self.get_wallets():
            if wallet.lower() == needle:
                return wallet
        return None
