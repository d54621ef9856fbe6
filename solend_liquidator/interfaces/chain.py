"""Chain client protocol over Solana JSON-RPC."""
from typing import Any, Protocol

from solders.hash import Hash
from solders.pubkey import Pubkey

from ..models import AccountInfo


class ChainClient(Protocol):
    """Abstract interface for Solana RPC interactions."""

    async def get_account_info(
        self, pubkey: Pubkey, commitment: str | None = None
    ) -> AccountInfo | None: ...

    async def get_multiple_accounts(
        self, pubkeys: list[Pubkey], commitment: str | None = None
    ) -> list[AccountInfo | None]: ...

    async def get_program_accounts(
        self, program_id: Pubkey, filters: list[dict[str, Any]]
    ) -> list[tuple[Pubkey, AccountInfo]]: ...

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int: ...

    async def get_token_account_balance(self, pubkey: Pubkey) -> int: ...

    async def get_latest_blockhash(self) -> Hash: ...

    async def send_transaction(self, raw_tx: bytes) -> str: ...

    async def get_signature_statuses(
        self, signatures: list[str]
    ) -> list[dict[str, Any] | None]: ...
