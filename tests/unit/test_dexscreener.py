"""Unit tests for the DEX Screener client: response parsing and errors."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from evm_portfolio.config import PriceFeedConfig
from evm_portfolio.exceptions import PriceFeedError
from evm_portfolio.oracles.dexscreener import DexScreenerClient

TOKEN_A = "0x1111111111111111111111111111111111111111"
TOKEN_B = "0x2222222222222222222222222222222222222222"


@pytest.fixture()
def client() -> DexScreenerClient:
    return DexScreenerClient(
        PriceFeedConfig(base_url="https://dex.example.com/", request_timeout=5),
        max_tokens_per_request=3,
    )


def _raw_pair(base: str, quote: str, price: str | None, liquidity: float | None) -> dict:
    pair = {
        "chainId": "ethereum",
        "dexId": "uniswap",
        "pairAddress": f"0xpair{quote}",
        "baseToken": {"address": base, "symbol": "TKN"},
        "quoteToken": {"address": "0xq", "symbol": quote},
        "priceUsd": price,
    }
    if liquidity is not None:
        pair["liquidity"] = {"usd": liquidity, "base": 1, "quote": 1}
    return pair


def _mock_session(data=None, status: int = 200, error: Exception | None = None):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.json = AsyncMock(return_value=data)
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    if error:
        mock_session.get = MagicMock(side_effect=error)
    else:
        mock_session.get = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


async def _fetch(client: DexScreenerClient, session, addresses: list[str]):
    with patch(
        "evm_portfolio.oracles.dexscreener.aiohttp.ClientSession", return_value=session
    ):
        with patch("evm_portfolio.oracles.dexscreener.aiohttp.TCPConnector"):
            return await client.get_token_pairs("ethereum", addresses)


class TestGetTokenPairs:
    @pytest.mark.asyncio
    async def test_parses_bare_array(self, client: DexScreenerClient) -> None:
        session = _mock_session(
            [
                _raw_pair(TOKEN_A, "USDC", "1.01", 1000.0),
                _raw_pair(TOKEN_B, "WETH", "0.5", None),
            ]
        )

        pairs = await _fetch(client, session, [TOKEN_A, TOKEN_B])

        assert len(pairs) == 2
        assert pairs[0].base_token_address == TOKEN_A
        assert pairs[0].quote_token_symbol == "USDC"
        assert pairs[0].price_usd == "1.01"
        assert pairs[0].liquidity_usd == 1000.0
        assert pairs[0].pair_address == "0xpairUSDC"
        assert pairs[1].liquidity_usd is None

    @pytest.mark.asyncio
    async def test_parses_wrapped_pairs(self, client: DexScreenerClient) -> None:
        session = _mock_session(
            {"schemaVersion": "1.0.0", "pairs": [_raw_pair(TOKEN_A, "USDT", "2", 10.0)]}
        )

        pairs = await _fetch(client, session, [TOKEN_A])

        assert [p.price_usd for p in pairs] == ["2"]

    @pytest.mark.asyncio
    async def test_null_pairs_is_empty(self, client: DexScreenerClient) -> None:
        session = _mock_session({"schemaVersion": "1.0.0", "pairs": None})
        assert await _fetch(client, session, [TOKEN_A]) == []

    @pytest.mark.asyncio
    async def test_builds_comma_joined_url(self, client: DexScreenerClient) -> None:
        session = _mock_session([])

        await _fetch(client, session, [TOKEN_A, TOKEN_B])

        url = session.get.call_args[0][0]
        assert url == f"https://dex.example.com/tokens/v1/ethereum/{TOKEN_A},{TOKEN_B}"

    @pytest.mark.asyncio
    async def test_missing_price_becomes_empty_string(self, client: DexScreenerClient) -> None:
        session = _mock_session([_raw_pair(TOKEN_A, "USDC", None, 5.0)])
        pairs = await _fetch(client, session, [TOKEN_A])
        assert pairs[0].price_usd == ""

    @pytest.mark.asyncio
    async def test_entries_without_base_token_skipped(self, client: DexScreenerClient) -> None:
        session = _mock_session(["garbage", {"priceUsd": "1"}, _raw_pair(TOKEN_A, "DAI", "1", 1.0)])
        pairs = await _fetch(client, session, [TOKEN_A])
        assert len(pairs) == 1

    @pytest.mark.asyncio
    async def test_too_many_addresses_rejected(self, client: DexScreenerClient) -> None:
        with pytest.raises(ValueError, match="exceeds max tokens"):
            await client.get_token_pairs("ethereum", ["0x1", "0x2", "0x3", "0x4"])

    @pytest.mark.asyncio
    async def test_no_addresses_no_request(self, client: DexScreenerClient) -> None:
        with patch("evm_portfolio.oracles.dexscreener.aiohttp.ClientSession") as session_cls:
            assert await client.get_token_pairs("ethereum", []) == []
        session_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_http_error_raises(self, client: DexScreenerClient) -> None:
        session = _mock_session([], status=429)
        with pytest.raises(PriceFeedError, match="HTTP 429"):
            await _fetch(client, session, [TOKEN_A])

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, client: DexScreenerClient) -> None:
        session = _mock_session(error=ConnectionError("reset by peer"))
        with pytest.raises(PriceFeedError, match="reset by peer"):
            await _fetch(client, session, [TOKEN_A])

    @pytest.mark.asyncio
    async def test_unexpected_payload_raises(self, client: DexScreenerClient) -> None:
        session = _mock_session("not json we understand")
        with pytest.raises(PriceFeedError, match="Unexpected"):
            await _fetch(client, session, [TOKEN_A])
