"""Liquidation engine: scans every market and liquidates unhealthy obligations."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from ..actions import ActionBuilder
from ..chains.solana import SolanaClient
from ..config import AppConfig
from ..constants import U64_MAX, get_program_id
from ..interfaces.notifier import Notifier
from ..interfaces.transport import TransactionSender
from ..models import (
    BorrowValue,
    DepositValue,
    Obligation,
    Pool,
    RefreshedObligation,
    ReserveState,
    TokenOracleData,
)
from ..notifications import TelegramNotifier
from ..oracles import (
    CrossbarClient,
    HermesClient,
    OracleContext,
    OracleRefresher,
    PythPushUpdateBuilder,
    TokenOracleService,
)
from ..protocols.solend.state import StateLoader
from .health import (
    calculate_refreshed_obligation,
    select_repay_borrow,
    select_withdraw_deposit,
)
from .markets import MarketService
from .submission import SolanaTransactionSender

logger = logging.getLogger(__name__)


class Liquidator:
    """Runs the liquidation loop across all configured markets."""

    def __init__(self, config: AppConfig, keypair: Keypair) -> None:
        self._config = config
        self._settings = config.liquidator
        self._keypair = keypair
        self.dry_run = config.liquidator.dry_run

        self._rpc = SolanaClient(config.chain)
        self._markets = MarketService(config.markets)
        self._loader = StateLoader(self._rpc, get_program_id(self._settings.environment))
        self._oracle_service = TokenOracleService(
            self._rpc, config.pyth.staleness_threshold_seconds
        )

        tip_account = (
            Pubkey.from_string(self._settings.tip_account)
            if self._settings.tip_account
            else None
        )
        refresher = OracleRefresher(
            self._rpc,
            OracleContext(
                hermes=HermesClient(config.pyth),
                pull_updater=CrossbarClient(config.switchboard),
                price_update_builder=PythPushUpdateBuilder(
                    self._rpc, config.pyth, tip_account=tip_account
                ),
            ),
            staleness_threshold=config.pyth.staleness_threshold_seconds,
        )
        self._builder = ActionBuilder(
            self._rpc, refresher, environment=self._settings.environment
        )

        self._sender: TransactionSender = SolanaTransactionSender(
            self._rpc,
            compute_unit_price=self._settings.compute_unit_price,
            tip_account=tip_account,
        )
        self._lookup_table = (
            Pubkey.from_string(self._settings.lookup_table_address)
            if self._settings.lookup_table_address
            else None
        )

        self._notifiers: list[Notifier] = []
        if config.notifications.telegram.enabled:
            self._notifiers.append(TelegramNotifier(config.notifications.telegram))

    @property
    def payer(self) -> Pubkey:
        return self._keypair.pubkey()

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    async def _send_alert(self, message: str) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    def _build_liquidation_message(
        self,
        pool: Pool,
        obligation: Obligation,
        borrow: BorrowValue,
        deposit: DepositValue,
        signature: str,
    ) -> str:
        return (
            f"💧 Liquidated {obligation.pubkey}\n"
            f"\n"
            f"Market: {pool.name}\n"
            f"Repaid: {borrow.symbol} (${borrow.market_value:,.2f})\n"
            f"Seized: {deposit.symbol} (${deposit.market_value:,.2f})\n"
            f"\n"
            f"Tx: {signature}\n"
            f"{self._now_str()} UTC"
        )

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    async def get_wallet_balance(self, mint: Pubkey) -> int:
        """Balance of the payer's associated token account for ``mint``.

        Returns 0 when the account does not exist and -1 when it cannot be
        read.
        """
        account = get_associated_token_address(self.payer, mint)
        try:
            info = await self._rpc.get_account_info(account)
            if info is None:
                return 0
            return await self._rpc.get_token_account_balance(account)
        except RuntimeError as e:
            logger.error("Failed to read wallet balance of %s: %s", mint, e)
            return -1

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def _refresh_state(
        self,
        pool: Pool,
        obligation: Obligation,
        reserves: dict[Pubkey, ReserveState],
    ) -> tuple[Obligation | None, list[TokenOracleData]]:
        """Re-read the obligation, its reserves and the pool's prices."""
        fresh = await self._loader.load_obligation(obligation.pubkey)
        if fresh is None:
            return None, []
        referenced = list(
            dict.fromkeys(fresh.deposit_reserves + fresh.borrow_reserves)
        )
        updated, tokens_oracle = await asyncio.gather(
            self._loader.load_reserves_by_address(referenced),
            self._oracle_service.get_tokens_oracle_data(pool),
        )
        reserves.update(updated)
        return fresh, tokens_oracle

    async def liquidate_obligation(
        self,
        pool: Pool,
        obligation: Obligation,
        reserves: dict[Pubkey, ReserveState],
        tokens_oracle: list[TokenOracleData],
    ) -> int:
        """Liquidate ``obligation`` until it is healthy or cannot progress.

        Returns the number of liquidation transactions submitted.
        """
        submitted = 0
        current: Obligation | None = obligation
        for _ in range(self._settings.max_attempts_per_obligation):
            if current is None:
                break

            refreshed: RefreshedObligation = calculate_refreshed_obligation(
                current, reserves, tokens_oracle
            )
            if refreshed.is_healthy:
                break

            borrow = select_repay_borrow(refreshed)
            deposit = select_withdraw_deposit(refreshed)
            if borrow is None or deposit is None:
                # Nothing priced above zero, most likely bad oracle data.
                break

            logger.info(
                "Obligation %s is underwater: borrowed %s, unhealthy %s, market %s",
                current.pubkey,
                refreshed.borrowed_value,
                refreshed.unhealthy_borrow_value,
                pool.address,
            )

            if self.dry_run:
                logger.info(
                    "Dry run: would repay %s and withdraw %s", borrow.symbol, deposit.symbol
                )
                break

            balance = await self.get_wallet_balance(borrow.mint_address)
            if balance == 0:
                logger.warning(
                    "Insufficient %s to liquidate obligation %s in market %s",
                    borrow.symbol,
                    current.pubkey,
                    pool.address,
                )
                break
            if balance < 0:
                logger.warning(
                    "Failed to get wallet balance for %s to liquidate obligation %s "
                    "in market %s",
                    borrow.symbol,
                    current.pubkey,
                    pool.address,
                )
                break

            repay_reserve = pool.reserve_by_address(borrow.reserve_address)
            withdraw_reserve = pool.reserve_by_address(deposit.reserve_address)
            if repay_reserve is None or withdraw_reserve is None:
                logger.warning(
                    "Obligation %s references a reserve outside market %s",
                    current.pubkey,
                    pool.name,
                )
                break

            # The program caps the repaid amount at the close factor.
            plan = await self._builder.build_liquidate(
                pool,
                repay_reserve,
                withdraw_reserve,
                U64_MAX,
                self.payer,
                current.pubkey,
                lookup_table_address=self._lookup_table,
                tip_amount=self._settings.tip_lamports,
            )
            signature = await self._sender.send_plan(plan, self._keypair)
            submitted += 1
            logger.info("Liquidated %s: %s", current.pubkey, signature)
            await self._send_alert(
                self._build_liquidation_message(
                    pool, current, borrow, deposit, signature
                )
            )

            current, tokens_oracle = await self._refresh_state(pool, current, reserves)
        else:
            logger.warning(
                "Stopped liquidating %s after %d attempts",
                obligation.pubkey,
                self._settings.max_attempts_per_obligation,
            )
        return submitted

    async def scan_market(self, pool: Pool) -> int:
        """One pass over every obligation of ``pool``."""
        tokens_oracle, obligations, reserves = await asyncio.gather(
            self._oracle_service.get_tokens_oracle_data(pool),
            self._loader.load_obligations(pool),
            self._loader.load_reserves(pool),
        )
        logger.debug(
            "%s: %d obligation(s), %d reserve(s)", pool.name, len(obligations), len(reserves)
        )

        submitted = 0
        for obligation in obligations:
            try:
                submitted += await self.liquidate_obligation(
                    pool, obligation, reserves, tokens_oracle
                )
            except Exception as e:
                logger.error("Error liquidating %s: %s", obligation.pubkey, e)
        return submitted

    async def run_epoch(self) -> int:
        """Scan every market once."""
        pools = await self._markets.load_markets()
        submitted = 0
        for pool in pools:
            try:
                submitted += await self.scan_market(pool)
            except Exception as e:
                logger.error("Error scanning market %s: %s", pool.name, e)

            if self._settings.throttle_ms:
                await asyncio.sleep(self._settings.throttle_ms / 1000)
        return submitted

    async def run(self, max_epochs: int | None = None) -> None:
        """Run epochs until ``max_epochs`` is reached (forever when None)."""
        pools = await self._markets.load_markets()
        logger.info(
            "Running against %d market(s) as %s (dry run: %s)",
            len(pools),
            self.payer,
            self.dry_run,
        )

        epoch = 0
        while max_epochs is None or epoch < max_epochs:
            submitted = await self.run_epoch()
            logger.info("Epoch %d finished, %d liquidation(s) submitted", epoch, submitted)
            epoch += 1
            if self._settings.epoch_delay_seconds:
                await asyncio.sleep(self._settings.epoch_delay_seconds)
