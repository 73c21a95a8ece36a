"""EVM JSON-RPC gateway with batched balance calls and endpoint fallback."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...amounts import format_units
from ...exceptions import GatewayError
from ...models import BalanceRequestItem, BalanceResultItem, NetworkDefinition

logger = logging.getLogger(__name__)

# First four bytes of keccak256("balanceOf(address)").
BALANCE_OF_SELECTOR = "0x70a08231"


def encode_balance_of(wallet_address: str) -> str:
    """Calldata for ``balanceOf(wallet_address)``."""
    return BALANCE_OF_SELECTOR + wallet_address.lower().removeprefix("0x").rjust(64, "0")


def decode_quantity(value: Any) -> int:
    """Decode a hex quantity or a uint256 return word; ``"0x"`` is zero."""
    if not isinstance(value, str) or not value.startswith("0x"):
        raise ValueError(f"invalid hex value: {value!r}")
    digits = value[2:]
    if not digits:
        return 0
    # eth_call return data: the balance is the first 32-byte word.
    return int(digits[:64], 16)


class EvmGateway:
    """One network's balance gateway: a single JSON-RPC batch per call."""

    def __init__(self, network: NetworkDefinition) -> None:
        self.network = network
        self.endpoints = list(network.rpc_endpoints)
        self.timeout = network.rpc_timeout
        self.current_rpc_index = 0

    async def rpc_batch(
        self, calls: list[tuple[str, list[Any]]]
    ) -> list[dict[str, Any]]:
        """Post a JSON-RPC batch with fallback to alternative endpoints."""
        payload = [
            {"jsonrpc": "2.0", "id": i, "method": method, "params": params}
            for i, (method, params) in enumerate(calls)
        ]

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        if response.status != 200:
                            raise GatewayError(f"HTTP {response.status}")
                        result = await response.json(content_type=None)
                        if isinstance(result, dict):
                            raise GatewayError(
                                f"RPC Error: {result.get('error', result)}"
                            )
                        if not isinstance(result, list):
                            raise GatewayError(
                                f"Unexpected batch response type {type(result).__name__}"
                            )

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise GatewayError(
            f"All RPC endpoints failed for {self.network.name}. Last error: {last_error}"
        )

    async def get_balances(
        self, requests: list[BalanceRequestItem]
    ) -> list[BalanceResultItem]:
        """Fetch every requested balance in one round trip.

        Results are aligned with ``requests``; per-item failures are carried
        in ``BalanceResultItem.error`` and only a failed batch raises.
        """
        if not requests:
            return []

        calls: list[tuple[str, list[Any]]] = []
        for req in requests:
            if req.is_native:
                calls.append(("eth_getBalance", [req.wallet_address, "latest"]))
            else:
                calls.append(
                    (
                        "eth_call",
                        [
                            {
                                "to": req.token_address,
                                "data": encode_balance_of(req.wallet_address),
                            },
                            "latest",
                        ],
                    )
                )

        logger.debug(
            "Sending %d balance calls to %s", len(calls), self.network.name
        )
        responses = await self.rpc_batch(calls)
        by_id = {r.get("id"): r for r in responses if isinstance(r, dict)}

        return [self._to_result(req, by_id.get(i)) for i, req in enumerate(requests)]

    @staticmethod
    def _to_result(
        req: BalanceRequestItem, response: dict[str, Any] | None
    ) -> BalanceResultItem:
        def result(**kwargs: Any) -> BalanceResultItem:
            return BalanceResultItem(
                request_id=req.request_id,
                wallet_address=req.wallet_address,
                token_address=req.token_address,
                token_symbol=req.token_symbol,
                decimals=req.token_decimals,
                is_native=req.is_native,
                **kwargs,
            )

        if response is None:
            return result(error=f"no response for {req.token_symbol}")
        if response.get("error") is not None:
            return result(
                error=f"failed to fetch {req.token_symbol}: {response['error']}"
            )

        try:
            balance = decode_quantity(response.get("result"))
            formatted = format_units(balance, req.token_decimals)
        except ValueError as e:
            return result(error=f"failed to decode {req.token_symbol} balance: {e}")

        return result(balance=balance, formatted_balance=formatted)
