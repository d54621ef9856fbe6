"""Turns one lending action into an ordered ActionPlan."""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_2022_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from ..chains.solana.lookup_tables import load_lookup_tables
from ..constants import POSITION_LIMIT, U64_MAX, get_program_id
from ..errors import PreconditionError, StateReadError
from ..interfaces.chain import ChainClient
from ..models import ActionType, Obligation, Pool, Reserve
from ..protocols.solend import instructions as ix
from ..protocols.solend.state import StateLoader
from .context import ActionContext, SupportDeps
from .plan import ActionPlan
from .support import resolve_supports

if TYPE_CHECKING:
    from ..oracles.refresh import OracleRefresher

logger = logging.getLogger(__name__)


def default_obligation_seed(pool: Pool) -> str:
    return str(pool.address)[:32]


def count_positions(
    obligation: Obligation | None, action: ActionType, reserve: Pubkey
) -> int:
    """Distinct borrow reserves plus distinct deposit reserves after the action."""
    borrows = set(obligation.borrow_reserves) if obligation else set()
    deposits = set(obligation.deposit_reserves) if obligation else set()
    if action is ActionType.BORROW:
        borrows.add(reserve)
    if action is ActionType.DEPOSIT:
        deposits.add(reserve)
    return len(borrows) + len(deposits)


class ActionBuilder:
    """Builds instruction plans for Solend actions.

    Each call reads the state it needs, resolves the action's support
    requirements and appends exactly one lending instruction. On any error
    nothing is returned.
    """

    def __init__(
        self,
        rpc: ChainClient,
        refresher: OracleRefresher | None = None,
        environment: str = "production",
        position_limit: int = POSITION_LIMIT,
        wrapper_program_id: Pubkey | None = None,
    ) -> None:
        self._rpc = rpc
        self._refresher = refresher
        self.environment = environment
        self.position_limit = position_limit
        self.wrapper_program_id = wrapper_program_id
        self.program_id = get_program_id(environment)
        self._state = StateLoader(rpc, self.program_id)

    async def _load_lookup_table(
        self, address: Pubkey | None
    ) -> AddressLookupTableAccount | None:
        if address is None:
            return None
        tables = await load_lookup_tables(self._rpc, [address])
        return tables[0] if tables else None

    async def build(
        self,
        action: ActionType,
        pool: Pool,
        reserve: Reserve,
        amount: int,
        owner: Pubkey,
        *,
        obligation_address: Pubkey | None = None,
        obligation_seed: str | None = None,
        host_ata: Pubkey | None = None,
        lookup_table_address: Pubkey | None = None,
        repay_reserve: Reserve | None = None,
        wrapped_mint: Pubkey | None = None,
        tip_amount: int | None = None,
    ) -> ActionPlan:
        """Build the plan for ``action`` on ``reserve``.

        ``amount`` is in base units; ``U64_MAX`` selects the whole-balance
        variant for deposit, withdraw and repay. For liquidation ``reserve``
        is the withdraw (collateral) side and ``repay_reserve`` the debt side.

        Raises:
            PreconditionError: position limit exceeded, missing liquidation
                context or unusable wrapped-token configuration.
            StateReadError: obligation or reserve state unreadable.
            OracleResolutionError: an oracle for a touched reserve is missing.
        """
        action = ActionType(action)
        if amount < 0 or amount > U64_MAX:
            raise PreconditionError(f"Amount {amount} is out of the u64 range")
        if action is ActionType.LIQUIDATE and repay_reserve is None:
            raise PreconditionError("Liquidation requires a repay reserve")

        seed = obligation_seed or default_obligation_seed(pool)
        if obligation_address is None:
            obligation_address = Pubkey.create_with_seed(owner, seed, self.program_id)

        try:
            obligation, lookup_table = await asyncio.gather(
                self._state.load_obligation(obligation_address, "processed"),
                self._load_lookup_table(lookup_table_address),
            )
        except RuntimeError as e:
            raise StateReadError(f"Unable to load action state: {e}") from e

        positions = count_positions(obligation, action, reserve.address)
        if positions > self.position_limit:
            raise PreconditionError(
                f"Obligation already has max number of positions: {self.position_limit}"
            )

        if wrapped_mint is not None and self.wrapper_program_id is None:
            raise PreconditionError("Wrapped mint configured without a wrapper program id")

        user_token_account = get_associated_token_address(owner, reserve.mint_address)
        user_collateral_account = get_associated_token_address(
            owner, reserve.collateral_mint_address
        )
        user_repay_token_account = user_repay_collateral_account = None
        if repay_reserve is not None:
            user_repay_token_account = get_associated_token_address(
                owner, repay_reserve.mint_address
            )
            user_repay_collateral_account = get_associated_token_address(
                owner, repay_reserve.collateral_mint_address
            )
        wrapped_ata = (
            get_associated_token_address(owner, wrapped_mint, TOKEN_2022_PROGRAM_ID)
            if wrapped_mint is not None
            else None
        )

        existing = await self._state.accounts_exist(
            [user_token_account, user_collateral_account]
        )

        ctx = ActionContext(
            action=action,
            pool=pool,
            reserve=reserve,
            amount=amount,
            owner=owner,
            program_id=self.program_id,
            obligation_address=obligation_address,
            seed=seed,
            obligation=obligation,
            positions=positions,
            user_token_account=user_token_account,
            user_collateral_account=user_collateral_account,
            existing_accounts=existing,
            position_limit=self.position_limit,
            host_ata=host_ata,
            lookup_table=lookup_table,
            repay_reserve=repay_reserve,
            user_repay_token_account=user_repay_token_account,
            user_repay_collateral_account=user_repay_collateral_account,
            wrapped_mint=wrapped_mint,
            wrapped_ata=wrapped_ata,
            wrapper_program_id=self.wrapper_program_id,
            tip_amount=tip_amount,
        )

        plan = ActionPlan(tip_amount=tip_amount)
        if lookup_table is not None:
            plan.merge_lookup_tables([lookup_table.key])

        deps = SupportDeps(rpc=self._rpc, state=self._state, refresher=self._refresher)
        await resolve_supports(ctx, plan, deps)
        plan.lending.append(self._lending_instruction(ctx))

        logger.debug(
            "Built %s plan on %s: %d instructions, %d companion transactions",
            action.value,
            reserve.symbol,
            len(plan.instructions()),
            len(plan.companion_transactions),
        )
        return plan

    # ------------------------------------------------------------------
    # Lending instructions
    # ------------------------------------------------------------------

    def _lending_instruction(self, ctx: ActionContext) -> Instruction:
        handlers = {
            ActionType.DEPOSIT: self._deposit_ix,
            ActionType.BORROW: self._borrow_ix,
            ActionType.WITHDRAW: self._withdraw_ix,
            ActionType.REPAY: self._repay_ix,
            ActionType.MINT: self._mint_ix,
            ActionType.REDEEM: self._redeem_ix,
            ActionType.DEPOSIT_COLLATERAL: self._deposit_collateral_ix,
            ActionType.WITHDRAW_COLLATERAL: self._withdraw_collateral_ix,
            ActionType.FORGIVE: self._forgive_ix,
            ActionType.LIQUIDATE: self._liquidate_ix,
        }
        return handlers[ctx.action](ctx)

    @staticmethod
    def _deposit_ix(ctx: ActionContext) -> Instruction:
        r, p = ctx.reserve, ctx.pool
        accounts = dict(
            source_liquidity=ctx.user_token_account,
            user_collateral=ctx.user_collateral_account,
            reserve=r.address,
            reserve_liquidity_supply=r.liquidity_address,
            reserve_collateral_mint=r.collateral_mint_address,
            lending_market=p.address,
            lending_market_authority=p.authority_address,
            destination_collateral=r.collateral_supply_address,
            obligation=ctx.obligation_address,
            obligation_owner=ctx.owner,
            pyth_oracle=r.pyth_oracle,
            switchboard_oracle=r.switchboard_oracle,
            transfer_authority=ctx.owner,
            program_id=ctx.program_id,
        )
        if ctx.amount == U64_MAX:
            return ix.deposit_max_reserve_liquidity_and_obligation_collateral(**accounts)
        return ix.deposit_reserve_liquidity_and_obligation_collateral(ctx.amount, **accounts)

    @staticmethod
    def _borrow_ix(ctx: ActionContext) -> Instruction:
        r, p = ctx.reserve, ctx.pool
        return ix.borrow_obligation_liquidity(
            ctx.amount,
            source_liquidity=r.liquidity_address,
            destination_liquidity=ctx.user_token_account,
            borrow_reserve=r.address,
            borrow_reserve_liquidity_fee_receiver=r.liquidity_fee_receiver_address,
            obligation=ctx.obligation_address,
            lending_market=p.address,
            lending_market_authority=p.authority_address,
            obligation_owner=ctx.owner,
            program_id=ctx.program_id,
            deposit_reserves=ctx.deposit_reserves,
            host_fee_receiver=ctx.host_ata,
        )

    @staticmethod
    def _withdraw_ix(ctx: ActionContext) -> Instruction:
        r, p = ctx.reserve, ctx.pool
        accounts: dict[str, Any] = dict(
            source_collateral=r.collateral_supply_address,
            destination_collateral=ctx.user_collateral_account,
            withdraw_reserve=r.address,
            obligation=ctx.obligation_address,
            lending_market=p.address,
            lending_market_authority=p.authority_address,
            destination_liquidity=ctx.user_token_account,
            reserve_collateral_mint=r.collateral_mint_address,
            reserve_liquidity_supply=r.liquidity_address,
            obligation_owner=ctx.owner,
            transfer_authority=ctx.owner,
            program_id=ctx.program_id,
            deposit_reserves=ctx.deposit_reserves,
        )
        if ctx.amount == U64_MAX:
            return ix.withdraw_obligation_collateral_and_redeem_reserve_liquidity(
                U64_MAX, **accounts
            )
        return ix.withdraw_exact(ctx.amount, **accounts)

    @staticmethod
    def _repay_ix(ctx: ActionContext) -> Instruction:
        r, p = ctx.reserve, ctx.pool
        accounts = dict(
            source_liquidity=ctx.user_token_account,
            destination_liquidity=r.liquidity_address,
            repay_reserve=r.address,
            obligation=ctx.obligation_address,
            lending_market=p.address,
            transfer_authority=ctx.owner,
            program_id=ctx.program_id,
        )
        if ctx.amount == U64_MAX:
            return ix.repay_max_obligation_liquidity(**accounts)
        return ix.repay_obligation_liquidity(ctx.amount, **accounts)

    @staticmethod
    def _mint_ix(ctx: ActionContext) -> Instruction:
        r, p = ctx.reserve, ctx.pool
        return ix.deposit_reserve_liquidity(
            ctx.amount,
            source_liquidity=ctx.user_token_account,
            destination_collateral=ctx.user_collateral_account,
            reserve=r.address,
            reserve_liquidity_supply=r.liquidity_address,
            reserve_collateral_mint=r.collateral_mint_address,
            lending_market=p.address,
            lending_market_authority=p.authority_address,
            transfer_authority=ctx.owner,
            program_id=ctx.program_id,
        )

    @staticmethod
    def _redeem_ix(ctx: ActionContext) -> Instruction:
        r, p = ctx.reserve, ctx.pool
        return ix.redeem_reserve_collateral(
            ctx.amount,
            source_collateral=ctx.user_collateral_account,
            destination_liquidity=ctx.user_token_account,
            reserve=r.address,
            reserve_collateral_mint=r.collateral_mint_address,
            reserve_liquidity_supply=r.liquidity_address,
            lending_market=p.address,
            lending_market_authority=p.authority_address,
            transfer_authority=ctx.owner,
            program_id=ctx.program_id,
        )

    @staticmethod
    def _deposit_collateral_ix(ctx: ActionContext) -> Instruction:
        r, p = ctx.reserve, ctx.pool
        return ix.deposit_obligation_collateral(
            ctx.amount,
            source_collateral=ctx.user_collateral_account,
            destination_collateral=r.collateral_supply_address,
            deposit_reserve=r.address,
            obligation=ctx.obligation_address,
            lending_market=p.address,
            obligation_owner=ctx.owner,
            transfer_authority=ctx.owner,
            program_id=ctx.program_id,
        )

    @staticmethod
    def _withdraw_collateral_ix(ctx: ActionContext) -> Instruction:
        r, p = ctx.reserve, ctx.pool
        return ix.withdraw_obligation_collateral(
            ctx.amount,
            source_collateral=r.collateral_supply_address,
            destination_collateral=ctx.user_collateral_account,
            withdraw_reserve=r.address,
            obligation=ctx.obligation_address,
            lending_market=p.address,
            lending_market_authority=p.authority_address,
            obligation_owner=ctx.owner,
            program_id=ctx.program_id,
            deposit_reserves=ctx.deposit_reserves,
        )

    @staticmethod
    def _forgive_ix(ctx: ActionContext) -> Instruction:
        return ix.forgive_debt(
            ctx.obligation_address,
            ctx.reserve.address,
            ctx.pool.address,
            ctx.pool.owner,
            ctx.amount,
            ctx.program_id,
        )

    @staticmethod
    def _liquidate_ix(ctx: ActionContext) -> Instruction:
        repay = ctx.repay_reserve
        if (
            repay is None
            or ctx.user_repay_token_account is None
            or ctx.user_repay_collateral_account is None
        ):
            raise PreconditionError("Not correctly initialized with a repay reserve")
        withdraw, p = ctx.reserve, ctx.pool
        return ix.liquidate_obligation_and_redeem_reserve_collateral(
            ctx.amount,
            source_liquidity=ctx.user_repay_token_account,
            destination_collateral=ctx.user_collateral_account,
            destination_liquidity=ctx.user_token_account,
            repay_reserve=repay.address,
            repay_reserve_liquidity_supply=repay.liquidity_address,
            withdraw_reserve=withdraw.address,
            withdraw_reserve_collateral_mint=withdraw.collateral_mint_address,
            withdraw_reserve_collateral_supply=withdraw.collateral_supply_address,
            withdraw_reserve_liquidity_supply=withdraw.liquidity_address,
            withdraw_reserve_fee_receiver=withdraw.liquidity_fee_receiver_address,
            obligation=ctx.obligation_address,
            lending_market=p.address,
            lending_market_authority=p.authority_address,
            transfer_authority=ctx.owner,
            program_id=ctx.program_id,
        )

    # ------------------------------------------------------------------
    # Convenience builders
    # ------------------------------------------------------------------

    async def build_deposit(self, pool, reserve, amount, owner, **kwargs) -> ActionPlan:
        return await self.build(ActionType.DEPOSIT, pool, reserve, amount, owner, **kwargs)

    async def build_borrow(self, pool, reserve, amount, owner, **kwargs) -> ActionPlan:
        return await self.build(ActionType.BORROW, pool, reserve, amount, owner, **kwargs)

    async def build_withdraw(self, pool, reserve, amount, owner, **kwargs) -> ActionPlan:
        return await self.build(ActionType.WITHDRAW, pool, reserve, amount, owner, **kwargs)

    async def build_repay(self, pool, reserve, amount, owner, **kwargs) -> ActionPlan:
        return await self.build(ActionType.REPAY, pool, reserve, amount, owner, **kwargs)

    async def build_mint(self, pool, reserve, amount, owner, **kwargs) -> ActionPlan:
        return await self.build(ActionType.MINT, pool, reserve, amount, owner, **kwargs)

    async def build_redeem(self, pool, reserve, amount, owner, **kwargs) -> ActionPlan:
        return await self.build(ActionType.REDEEM, pool, reserve, amount, owner, **kwargs)

    async def build_deposit_collateral(
        self, pool, reserve, amount, owner, **kwargs
    ) -> ActionPlan:
        return await self.build(
            ActionType.DEPOSIT_COLLATERAL, pool, reserve, amount, owner, **kwargs
        )

    async def build_withdraw_collateral(
        self, pool, reserve, amount, owner, **kwargs
    ) -> ActionPlan:
        return await self.build(
            ActionType.WITHDRAW_COLLATERAL, pool, reserve, amount, owner, **kwargs
        )

    async def build_forgive(
        self,
        pool: Pool,
        reserve: Reserve,
        amount: int,
        owner: Pubkey,
        obligation_address: Pubkey,
        **kwargs: Any,
    ) -> ActionPlan:
        """Write off debt on ``obligation_address``; ``owner`` is the market owner."""
        return await self.build(
            ActionType.FORGIVE, pool, reserve, amount, owner,
            obligation_address=obligation_address, **kwargs,
        )

    async def build_liquidate(
        self,
        pool: Pool,
        repay_reserve: Reserve,
        withdraw_reserve: Reserve,
        amount: int,
        owner: Pubkey,
        obligation_address: Pubkey,
        **kwargs: Any,
    ) -> ActionPlan:
        """Repay debt of ``obligation_address`` and seize its collateral."""
        return await self.build(
            ActionType.LIQUIDATE, pool, withdraw_reserve, amount, owner,
            obligation_address=obligation_address,
            repay_reserve=repay_reserve,
            **kwargs,
        )
