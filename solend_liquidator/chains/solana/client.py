"""Solana JSON-RPC client with fallback support."""
from __future__ import annotations

import base64
import logging
import ssl
from typing import Any

import aiohttp
import certifi
from solders.hash import Hash
from solders.pubkey import Pubkey

from ...config import ChainConfig
from ...models import AccountInfo

logger = logging.getLogger(__name__)

# getMultipleAccounts accepts at most this many keys per request.
MAX_MULTIPLE_ACCOUNTS = 100


def _parse_account(value: dict[str, Any] | None) -> AccountInfo | None:
    if not value:
        return None
    data_field = value.get("data", ["", "base64"])
    raw = data_field[0] if isinstance(data_field, list) else data_field
    return AccountInfo(
        owner=Pubkey.from_string(value["owner"]),
        lamports=int(value.get("lamports", 0)),
        data=base64.b64decode(raw) if raw else b"",
        executable=bool(value.get("executable", False)),
    )


class SolanaClient:
    """Solana RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.commitment = config.commitment
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

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
                        result = await response.json()
                        if "error" in result:
                            raise RuntimeError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def get_account_info(
        self, pubkey: Pubkey, commitment: str | None = None
    ) -> AccountInfo | None:
        """Fetch a single account, or None when it does not exist."""
        result = await self.rpc_call(
            "getAccountInfo",
            [
                str(pubkey),
                {"encoding": "base64", "commitment": commitment or self.commitment},
            ],
        )
        return _parse_account((result or {}).get("value"))

    async def get_multiple_accounts(
        self, pubkeys: list[Pubkey], commitment: str | None = None
    ) -> list[AccountInfo | None]:
        """Fetch many accounts, preserving input order (chunked)."""
        accounts: list[AccountInfo | None] = []
        for start in range(0, len(pubkeys), MAX_MULTIPLE_ACCOUNTS):
            chunk = pubkeys[start:start + MAX_MULTIPLE_ACCOUNTS]
            result = await self.rpc_call(
                "getMultipleAccounts",
                [
                    [str(k) for k in chunk],
                    {"encoding": "base64", "commitment": commitment or self.commitment},
                ],
            )
            accounts.extend(_parse_account(v) for v in (result or {}).get("value", []))
        return accounts

    async def get_program_accounts(
        self, program_id: Pubkey, filters: list[dict[str, Any]]
    ) -> list[tuple[Pubkey, AccountInfo]]:
        """Fetch all accounts owned by a program matching the given filters."""
        result = await self.rpc_call(
            "getProgramAccounts",
            [
                str(program_id),
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "filters": filters,
                },
            ],
        )
        accounts: list[tuple[Pubkey, AccountInfo]] = []
        for item in result or []:
            account = _parse_account(item.get("account"))
            if account is not None:
                accounts.append((Pubkey.from_string(item["pubkey"]), account))
        return accounts

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return int(await self.rpc_call("getMinimumBalanceForRentExemption", [size]))

    async def get_token_account_balance(self, pubkey: Pubkey) -> int:
        """Return the raw (base unit) balance of an SPL token account."""
        result = await self.rpc_call(
            "getTokenAccountBalance", [str(pubkey), {"commitment": self.commitment}]
        )
        return int(result["value"]["amount"])

    async def get_latest_blockhash(self) -> Hash:
        result = await self.rpc_call(
            "getLatestBlockhash", [{"commitment": self.commitment}]
        )
        return Hash.from_string(result["value"]["blockhash"])

    async def send_transaction(self, raw_tx: bytes) -> str:
        """Submit a serialized transaction and return its signature."""
        return await self.rpc_call(
            "sendTransaction",
            [
                base64.b64encode(raw_tx).decode("ascii"),
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self.commitment,
                },
            ],
        )

    async def get_signature_statuses(
        self, signatures: list[str]
    ) -> list[dict[str, Any] | None]:
        result = await self.rpc_call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": False}],
        )
        return list((result or {}).get("value", []))
