"""Oracle refresh: pull-feed update instructions and push-feed update transactions."""
from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Callable

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.pubkey import Pubkey

from ..actions.plan import ActionPlan, Bucket
from ..constants import (
    NULL_ORACLE,
    PRICE_STALENESS_THRESHOLD_SECONDS,
    PULL_ORACLE_COMPUTE_UNIT_LIMIT,
    PULL_ORACLE_COMPUTE_UNIT_PRICE,
    PYTH_RECEIVER_PROGRAM_ID,
    SWITCHBOARD_ON_DEMAND_PROGRAM_ID,
)
from ..errors import OracleResolutionError
from ..interfaces.chain import ChainClient
from ..interfaces.price_oracle import PriceUpdateTransactionBuilder, PullOracleUpdater
from .pyth import HermesClient, decode_price_update, feed_id_hex
from .switchboard import decode_pull_feed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OracleContext:
    """Oracle service handles, built once per process and passed in."""

    hermes: HermesClient | None = None
    pull_updater: PullOracleUpdater | None = None
    price_update_builder: PriceUpdateTransactionBuilder | None = None
    pull_program_id: Pubkey = SWITCHBOARD_ON_DEMAND_PROGRAM_ID
    push_program_id: Pubkey = PYTH_RECEIVER_PROGRAM_ID


def required_signatures(min_sample_sizes: list[int]) -> int:
    """Oracle signatures needed to satisfy every feed's minimum sample size."""
    return max([m + math.ceil(m / 3) for m in min_sample_sizes] + [1])


class OracleRefresher:
    """Brings the price feeds of an action up to date before it executes.

    Pull feeds get one update instruction in the plan's ``pre`` bucket. Push
    feeds older than the staleness threshold get companion update
    transactions that are sent ahead of the main transaction.
    """

    def __init__(
        self,
        rpc: ChainClient,
        context: OracleContext,
        staleness_threshold: int = PRICE_STALENESS_THRESHOLD_SECONDS,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._rpc = rpc
        self.context = context
        self.staleness_threshold = staleness_threshold
        self._clock = clock
        self._rng = rng or random.Random()

    async def refresh(
        self,
        oracle_keys: list[Pubkey],
        plan: ActionPlan,
        payer: Pubkey,
        tip_lamports: int | None = None,
    ) -> None:
        keys = [k for k in dict.fromkeys(oracle_keys) if k != NULL_ORACLE]
        if not keys:
            return

        try:
            accounts = await self._rpc.get_multiple_accounts(keys, "processed")
        except RuntimeError as e:
            raise OracleResolutionError(f"Unable to read oracle accounts: {e}") from e

        pull_feeds: list[tuple[Pubkey, bytes]] = []
        push_feeds: list[tuple[Pubkey, bytes]] = []
        for key, account in zip(keys, accounts):
            if account is None:
                raise OracleResolutionError(f"Could not find oracle data for {key}")
            if account.owner == self.context.pull_program_id:
                pull_feeds.append((key, account.data))
            elif account.owner == self.context.push_program_id:
                push_feeds.append((key, account.data))

        if pull_feeds:
            await self._update_pull_feeds(pull_feeds, plan, payer)

        stale_ids = self._stale_push_feed_ids(push_feeds)
        if stale_ids:
            tip = None if pull_feeds else tip_lamports
            await self._update_push_feeds(stale_ids, plan, payer, tip)

    async def _update_pull_feeds(
        self, feeds: list[tuple[Pubkey, bytes]], plan: ActionPlan, payer: Pubkey
    ) -> None:
        updater = self.context.pull_updater
        if updater is None:
            logger.warning(
                "%d pull oracle feed(s) need updating but no updater is configured",
                len(feeds),
            )
            return

        num_signatures = required_signatures(
            [decode_pull_feed(data).min_sample_size for _, data in feeds]
        )
        instructions, lookup_tables = await updater.fetch_update_instructions(
            [key for key, _ in feeds], num_signatures, payer
        )
        plan.add(
            Bucket.PRE,
            set_compute_unit_price(PULL_ORACLE_COMPUTE_UNIT_PRICE),
            set_compute_unit_limit(PULL_ORACLE_COMPUTE_UNIT_LIMIT),
            *instructions,
        )
        plan.merge_lookup_tables(lookup_tables)

    def _stale_push_feed_ids(self, feeds: list[tuple[Pubkey, bytes]]) -> list[str]:
        now = self._clock()
        stale: list[str] = []
        for _, data in feeds:
            update = decode_price_update(data)
            if now - update.publish_time > self.staleness_threshold:
                stale.append(feed_id_hex(update.feed_id))
        # Randomized so no feed is always first in line.
        self._rng.shuffle(stale)
        return stale

    async def _update_push_feeds(
        self,
        feed_ids: list[str],
        plan: ActionPlan,
        payer: Pubkey,
        tip_lamports: int | None,
    ) -> None:
        hermes = self.context.hermes
        builder = self.context.price_update_builder
        if hermes is None or builder is None:
            logger.warning(
                "%d push oracle feed(s) are stale but no update builder is configured",
                len(feed_ids),
            )
            return

        update_data = await hermes.fetch_update_data(feed_ids)
        transactions = await builder.build(update_data, payer, tip_lamports)
        plan.companion_transactions.extend(transactions)
        logger.info("Queued %d price update transaction(s)", len(transactions))
