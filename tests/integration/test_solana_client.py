"""Integration tests for the Solana client: RPC fallback and response parsing."""
from __future__ import annotations

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey

from solend_liquidator.chains.solana.client import SolanaClient
from solend_liquidator.config import ChainConfig

CLIENT_MODULE = "solend_liquidator.chains.solana.client"


@pytest.fixture()
def client() -> SolanaClient:
    return SolanaClient(
        ChainConfig(
            rpc_endpoints=(
                "https://rpc1.example.com",
                "https://rpc2.example.com",
                "https://rpc3.example.com",
            ),
            rpc_timeout=5,
        )
    )


def _mock_session(response_data: dict | None = None, error: Exception | None = None):
    """Create a mock aiohttp session that returns given data or raises error."""
    mock_response = AsyncMock()
    if error:
        mock_response.json = AsyncMock(side_effect=error)
    else:
        mock_response.json = AsyncMock(return_value=response_data or {})
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    if error:
        mock_session.post = MagicMock(side_effect=error)
    else:
        mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)

    return mock_session


def _account(owner: Pubkey, data: bytes, lamports: int = 10) -> dict:
    return {
        "owner": str(owner),
        "lamports": lamports,
        "data": [base64.b64encode(data).decode(), "base64"],
        "executable": False,
    }


class TestRpcCall:
    @pytest.mark.asyncio
    async def test_successful_call(self, client: SolanaClient) -> None:
        mock_session = _mock_session({"jsonrpc": "2.0", "result": {"data": "ok"}})

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                result = await client.rpc_call("getHealth", [])

        assert result == {"data": "ok"}
        payload = mock_session.post.call_args[1]["json"]
        assert payload["method"] == "getHealth"
        assert payload["jsonrpc"] == "2.0"

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self, client: SolanaClient) -> None:
        mock_session = _mock_session(
            {"jsonrpc": "2.0", "error": {"code": -32000, "message": "bad"}}
        )

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                with pytest.raises(RuntimeError, match="All RPC endpoints failed"):
                    await client.rpc_call("getHealth", [])

    @pytest.mark.asyncio
    async def test_fallback_on_connection_error(self, client: SolanaClient) -> None:
        """When first endpoint fails, should try the next one."""
        call_count = 0

        success_response = AsyncMock()
        success_response.json = AsyncMock(
            return_value={"jsonrpc": "2.0", "result": {"ok": True}}
        )
        success_response.__aenter__ = AsyncMock(return_value=success_response)
        success_response.__aexit__ = AsyncMock(return_value=None)

        def side_effect(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise ConnectionError("first endpoint down")
            return success_response

        mock_session = AsyncMock()
        mock_session.post = MagicMock(side_effect=side_effect)
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                result = await client.rpc_call("getHealth", [])

        assert result == {"ok": True}
        assert client.current_rpc_index == 1

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, client: SolanaClient) -> None:
        mock_session = _mock_session(error=ConnectionError("down"))

        with patch(f"{CLIENT_MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{CLIENT_MODULE}.aiohttp.TCPConnector"):
                with pytest.raises(RuntimeError, match="All RPC endpoints failed"):
                    await client.rpc_call("getHealth", [])

        assert mock_session.post.call_count == 3


class TestAccounts:
    @pytest.mark.asyncio
    async def test_get_account_info_decodes(self, client: SolanaClient) -> None:
        owner = Pubkey.new_unique()
        client.rpc_call = AsyncMock(return_value={"value": _account(owner, b"\x01\x02")})

        info = await client.get_account_info(Pubkey.new_unique())

        assert info.owner == owner
        assert info.data == b"\x01\x02"
        assert info.lamports == 10

    @pytest.mark.asyncio
    async def test_missing_account_is_none(self, client: SolanaClient) -> None:
        client.rpc_call = AsyncMock(return_value={"value": None})
        assert await client.get_account_info(Pubkey.new_unique()) is None

    @pytest.mark.asyncio
    async def test_get_multiple_accounts_chunks_and_keeps_order(
        self, client: SolanaClient
    ) -> None:
        owner = Pubkey.new_unique()
        keys = [Pubkey.new_unique() for _ in range(150)]

        async def rpc_call(method, params):
            return {
                "value": [
                    None if i % 2 else _account(owner, bytes([i % 256]))
                    for i, _ in enumerate(params[0])
                ]
            }

        client.rpc_call = AsyncMock(side_effect=rpc_call)

        accounts = await client.get_multiple_accounts(keys, "processed")

        assert client.rpc_call.await_count == 2
        assert len(client.rpc_call.await_args_list[0][0][1][0]) == 100
        assert client.rpc_call.await_args_list[0][0][1][1]["commitment"] == "processed"
        assert len(accounts) == 150
        assert accounts[0].data == b"\x00"
        assert accounts[1] is None
        assert accounts[100].data == b"\x00"

    @pytest.mark.asyncio
    async def test_get_program_accounts(self, client: SolanaClient) -> None:
        owner = Pubkey.new_unique()
        key = Pubkey.new_unique()
        client.rpc_call = AsyncMock(
            return_value=[{"pubkey": str(key), "account": _account(owner, b"abc")}]
        )

        result = await client.get_program_accounts(owner, [{"dataSize": 3}])

        assert result[0][0] == key
        assert result[0][1].data == b"abc"
        params = client.rpc_call.await_args[0][1]
        assert params[1]["filters"] == [{"dataSize": 3}]


class TestTransactions:
    @pytest.mark.asyncio
    async def test_latest_blockhash(self, client: SolanaClient) -> None:
        blockhash = Hash.default()
        client.rpc_call = AsyncMock(
            return_value={"value": {"blockhash": str(blockhash), "lastValidBlockHeight": 1}}
        )
        assert await client.get_latest_blockhash() == blockhash

    @pytest.mark.asyncio
    async def test_send_transaction_encodes_base64(self, client: SolanaClient) -> None:
        client.rpc_call = AsyncMock(return_value="5igSig")

        signature = await client.send_transaction(b"raw-tx")

        assert signature == "5igSig"
        method, params = client.rpc_call.await_args[0]
        assert method == "sendTransaction"
        assert base64.b64decode(params[0]) == b"raw-tx"
        assert params[1]["encoding"] == "base64"

    @pytest.mark.asyncio
    async def test_token_balance(self, client: SolanaClient) -> None:
        client.rpc_call = AsyncMock(
            return_value={"value": {"amount": "1500", "decimals": 6, "uiAmount": 0.0015}}
        )
        assert await client.get_token_account_balance(Pubkey.new_unique()) == 1500
