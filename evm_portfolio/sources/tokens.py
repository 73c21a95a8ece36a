"""Tracked token lists, one JSON file per network identifier."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..models import NetworkDefinition, TokenInfo

logger = logging.getLogger(__name__)


class TokenFileLoader:
    """Load ``<tokens_dir>/<identifier>.json`` for each requested network.

    Each file holds a list of objects with ``address``, ``symbol``,
    ``decimals``, ``chainId`` and optionally ``name``. Tokens declaring a
    different chain id than their network are dropped, never reassigned.
    """

    def __init__(self, tokens_dir: str | Path) -> None:
        self.tokens_dir = Path(tokens_dir)

    def get_tokens_by_network(
        self, networks: list[NetworkDefinition]
    ) -> dict[int, list[TokenInfo]]:
        if not self.tokens_dir.is_dir():
            raise FileNotFoundError(f"Token directory not found: {self.tokens_dir}")

        tokens_by_chain: dict[int, list[TokenInfo]] = {}
        for network in networks:
            path = self.tokens_dir / f"{network.identifier}.json"
            if not path.exists():
                logger.debug("No token file for %s, native only", network.name)
                continue

            try:
                with open(path) as f:
                    raw = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Skipping unreadable token file %s: %s", path, e)
                continue

            if not isinstance(raw, list):
                logger.warning("Skipping token file %s: expected a JSON list", path)
                continue

            tokens = self._parse_tokens(raw, network, path)
            if tokens:
                tokens_by_chain[network.chain_id] = tokens

        logger.info(
            "Loaded tokens for %d of %d networks",
            len(tokens_by_chain),
            len(networks),
        )
        return tokens_by_chain

    @staticmethod
    def _parse_tokens(
        raw: list[Any], network: NetworkDefinition, path: Path
    ) -> list[TokenInfo]:
        tokens: list[TokenInfo] = []
        for entry in raw:
            try:
                token = TokenInfo(
                    chain_id=int(entry.get("chainId", entry.get("chain_id", 0))),
                    address=str(entry["address"]),
                    symbol=str(entry.get("symbol", "")),
                    decimals=int(entry.get("decimals", 18)),
                    name=str(entry.get("name", "")),
                )
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed token entry in %s: %s", path, e)
                continue

            if token.chain_id != network.chain_id:
                logger.warning(
                    "Token %s (%s) declares chain %d but is listed for %s (%d), skipping",
                    token.symbol,
                    token.address,
                    token.chain_id,
                    network.identifier,
                    network.chain_id,
                )
                continue
            tokens.append(token)
        return tokens
