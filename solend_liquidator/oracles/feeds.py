"""Token oracle service: one price per reserve per evaluation."""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Callable

from solders.pubkey import Pubkey

from ..constants import (
    NULL_ORACLE,
    PRICE_STALENESS_THRESHOLD_SECONDS,
    PYTH_ORACLE_PROGRAM_ID,
    PYTH_RECEIVER_PROGRAM_ID,
    SWITCHBOARD_ON_DEMAND_PROGRAM_ID,
)
from ..errors import OracleResolutionError
from ..interfaces.chain import ChainClient
from ..models import AccountInfo, Pool, PriceQuote, Reserve, TokenOracleData
from .pyth import decode_price_update_quote, decode_pyth_price
from .switchboard import decode_pull_feed_quote

logger = logging.getLogger(__name__)


class TokenOracleService:
    """Resolve reserve prices from Pyth and Switchboard feed accounts.

    For each reserve the primary, secondary and extra oracle are tried in
    that order; the first fresh quote wins, otherwise the first stale one.
    A reserve with no decodable quote gets price 0, which removes its
    positions from liquidation candidates.
    """

    def __init__(
        self,
        rpc: ChainClient,
        staleness_threshold: int = PRICE_STALENESS_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rpc = rpc
        self.staleness_threshold = staleness_threshold
        self._clock = clock

    def decode_quote(self, account: AccountInfo) -> PriceQuote | None:
        """Decode a feed account by its owner program; None if unrecognized."""
        now = self._clock()
        if account.owner == PYTH_ORACLE_PROGRAM_ID:
            return decode_pyth_price(account.data, now, self.staleness_threshold)
        if account.owner == PYTH_RECEIVER_PROGRAM_ID:
            return decode_price_update_quote(account.data, now, self.staleness_threshold)
        if account.owner == SWITCHBOARD_ON_DEMAND_PROGRAM_ID:
            return decode_pull_feed_quote(account.data, now, self.staleness_threshold)
        logger.error("Unrecognized oracle owner program: %s", account.owner)
        return None

    def _resolve(
        self, reserve: Reserve, accounts: dict[Pubkey, AccountInfo | None]
    ) -> Decimal:
        fallback: PriceQuote | None = None
        for key in reserve.oracle_keys:
            if key == NULL_ORACLE:
                continue
            account = accounts.get(key)
            if account is None:
                continue
            try:
                quote = self.decode_quote(account)
            except OracleResolutionError as e:
                logger.warning("Oracle %s for %s: %s", key, reserve.symbol, e)
                continue
            if quote is None or quote.price <= 0:
                continue
            if not quote.stale:
                return quote.price
            if fallback is None:
                fallback = quote

        if fallback is not None:
            logger.warning(
                "Using stale price for %s (published %d)",
                reserve.symbol,
                fallback.publish_time,
            )
            return fallback.price

        logger.error(
            "failed to get price for %s | reserve %s", reserve.symbol, reserve.address
        )
        return Decimal(0)

    async def get_tokens_oracle_data(self, pool: Pool) -> list[TokenOracleData]:
        """Fresh prices for every reserve of ``pool`` (one batched read)."""
        keys = list(
            dict.fromkeys(
                k for r in pool.reserves for k in r.oracle_keys if k != NULL_ORACLE
            )
        )
        try:
            infos = await self._rpc.get_multiple_accounts(keys) if keys else []
        except RuntimeError as e:
            raise OracleResolutionError(
                f"Unable to read oracle accounts of {pool.name}: {e}"
            ) from e
        accounts = dict(zip(keys, infos))

        return [
            TokenOracleData(
                symbol=reserve.symbol,
                reserve_address=reserve.address,
                mint_address=reserve.mint_address,
                decimals=10**reserve.decimals,
                price=self._resolve(reserve, accounts),
            )
            for reserve in pool.reserves
        ]
