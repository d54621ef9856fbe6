"""Fetches and decodes obligations and reserves."""
from __future__ import annotations

import base64
import logging

from solders.pubkey import Pubkey

from ...constants import OBLIGATION_SIZE, RESERVE_SIZE
from ...errors import StateReadError
from ...interfaces.chain import ChainClient
from ...models import Obligation, Pool, ReserveState
from .layouts import (
    OBLIGATION_LENDING_MARKET_OFFSET,
    RESERVE_LENDING_MARKET_OFFSET,
    decode_obligation,
    decode_reserve,
)

logger = logging.getLogger(__name__)


def _market_filters(market: Pubkey, size: int, offset: int) -> list[dict]:
    return [
        {"dataSize": size},
        {
            "memcmp": {
                "offset": offset,
                "bytes": base64.b64encode(bytes(market)).decode("ascii"),
                "encoding": "base64",
            }
        },
    ]


class StateLoader:
    """Reads Solend accounts through a :class:`ChainClient`.

    RPC failures surface as :class:`StateReadError`; nothing is cached.
    """

    def __init__(self, rpc: ChainClient, program_id: Pubkey) -> None:
        self._rpc = rpc
        self.program_id = program_id

    async def load_obligations(self, pool: Pool) -> list[Obligation]:
        """All initialized obligations of a market.

        Undecodable accounts are skipped with a warning so one corrupt
        account never hides the rest of the market.
        """
        try:
            accounts = await self._rpc.get_program_accounts(
                self.program_id,
                _market_filters(pool.address, OBLIGATION_SIZE, OBLIGATION_LENDING_MARKET_OFFSET),
            )
        except RuntimeError as e:
            raise StateReadError(f"Unable to list obligations of {pool.name}: {e}") from e

        obligations: list[Obligation] = []
        for pubkey, info in accounts:
            try:
                obligations.append(decode_obligation(pubkey, info.data))
            except StateReadError as e:
                logger.warning("Skipping obligation %s: %s", pubkey, e)
        return obligations

    async def load_reserves(self, pool: Pool) -> dict[Pubkey, ReserveState]:
        try:
            accounts = await self._rpc.get_program_accounts(
                self.program_id,
                _market_filters(pool.address, RESERVE_SIZE, RESERVE_LENDING_MARKET_OFFSET),
            )
        except RuntimeError as e:
            raise StateReadError(f"Unable to list reserves of {pool.name}: {e}") from e

        reserves: dict[Pubkey, ReserveState] = {}
        for pubkey, info in accounts:
            try:
                reserves[pubkey] = decode_reserve(pubkey, info.data)
            except StateReadError as e:
                logger.warning("Skipping reserve %s: %s", pubkey, e)
        return reserves

    async def load_obligation(
        self, address: Pubkey, commitment: str | None = None
    ) -> Obligation | None:
        """The obligation at ``address``, or None if the account does not exist."""
        try:
            info = await self._rpc.get_account_info(address, commitment)
        except RuntimeError as e:
            raise StateReadError(f"Unable to fetch obligation {address}: {e}") from e
        if info is None:
            return None
        return decode_obligation(address, info.data)

    async def load_reserve(
        self, address: Pubkey, commitment: str | None = None
    ) -> ReserveState:
        try:
            info = await self._rpc.get_account_info(address, commitment)
        except RuntimeError as e:
            raise StateReadError(f"Unable to fetch reserve {address}: {e}") from e
        if info is None:
            raise StateReadError(f"Reserve {address} not found")
        return decode_reserve(address, info.data)

    async def load_reserves_by_address(
        self, addresses: list[Pubkey]
    ) -> dict[Pubkey, ReserveState]:
        """Batch-read specific reserves; any missing account is an error."""
        if not addresses:
            return {}
        try:
            infos = await self._rpc.get_multiple_accounts(addresses)
        except RuntimeError as e:
            raise StateReadError(f"Unable to fetch reserves: {e}") from e

        reserves: dict[Pubkey, ReserveState] = {}
        for address, info in zip(addresses, infos):
            if info is None:
                raise StateReadError(f"Reserve {address} not found")
            reserves[address] = decode_reserve(address, info.data)
        return reserves

    async def accounts_exist(self, addresses: list[Pubkey]) -> dict[Pubkey, bool]:
        """One batched read answering which of ``addresses`` exist on chain."""
        if not addresses:
            return {}
        try:
            infos = await self._rpc.get_multiple_accounts(addresses)
        except RuntimeError as e:
            raise StateReadError(f"Unable to check accounts: {e}") from e
        return {address: info is not None for address, info in zip(addresses, infos)}
