"""Support requirements: which auxiliary instructions each action needs.

``ACTION_SUPPORT_REQUIREMENTS`` is the fixed, ordered capability list per
action. Each capability has one resolver ``(ctx, plan, deps)`` that inspects
the action context and appends zero or more instructions to a plan bucket.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable

from solders.pubkey import Pubkey
from solders.system_program import CreateAccountWithSeedParams, create_account_with_seed
from spl.token.constants import TOKEN_2022_PROGRAM_ID, WRAPPED_SOL_MINT

from ..constants import NULL_ORACLE, OBLIGATION_SIZE
from ..errors import OracleResolutionError, PreconditionError
from ..models import ActionType, Reserve
from ..protocols.solend import instructions as ix
from .context import ActionContext, SupportDeps
from .plan import ActionPlan, Bucket
from .wsol import resolve_wsol

logger = logging.getLogger(__name__)


class Support(str, Enum):
    WRAP = "wrap"
    UNWRAP = "unwrap"
    REFRESH_RESERVES = "refreshReserves"
    REFRESH_OBLIGATION = "refreshObligation"
    CREATE_OBLIGATION = "createObligation"
    C_ATA = "cAta"
    ATA = "ata"
    WRAP_UNWRAP_LIQUIDATE = "wrapUnwrapLiquidate"
    WSOL = "wsol"


ACTION_SUPPORT_REQUIREMENTS: dict[ActionType, tuple[Support, ...]] = {
    ActionType.DEPOSIT: (
        Support.WSOL, Support.WRAP, Support.CREATE_OBLIGATION, Support.C_ATA,
    ),
    ActionType.BORROW: (
        Support.WSOL, Support.ATA, Support.REFRESH_RESERVES,
        Support.REFRESH_OBLIGATION, Support.UNWRAP,
    ),
    ActionType.WITHDRAW: (
        Support.WSOL, Support.ATA, Support.C_ATA, Support.REFRESH_RESERVES,
        Support.REFRESH_OBLIGATION, Support.UNWRAP,
    ),
    ActionType.REPAY: (Support.WSOL, Support.WRAP),
    ActionType.MINT: (Support.WSOL, Support.WRAP, Support.C_ATA),
    ActionType.REDEEM: (
        Support.WSOL, Support.ATA, Support.REFRESH_RESERVES,
        Support.REFRESH_OBLIGATION, Support.UNWRAP,
    ),
    ActionType.DEPOSIT_COLLATERAL: (Support.CREATE_OBLIGATION,),
    ActionType.WITHDRAW_COLLATERAL: (
        Support.C_ATA, Support.REFRESH_RESERVES, Support.REFRESH_OBLIGATION,
    ),
    ActionType.FORGIVE: (),
    ActionType.LIQUIDATE: (
        Support.WSOL, Support.ATA, Support.C_ATA, Support.WRAP_UNWRAP_LIQUIDATE,
        Support.REFRESH_RESERVES, Support.REFRESH_OBLIGATION,
    ),
}


Resolver = Callable[[ActionContext, ActionPlan, SupportDeps], Awaitable[None]]


async def resolve_create_obligation(
    ctx: ActionContext, plan: ActionPlan, deps: SupportDeps
) -> None:
    if ctx.obligation is not None:
        return
    if not plan.schedule_creation(ctx.obligation_address):
        return

    lamports = await deps.rpc.get_minimum_balance_for_rent_exemption(OBLIGATION_SIZE)
    plan.add(
        Bucket.SETUP,
        create_account_with_seed(
            CreateAccountWithSeedParams(
                from_pubkey=ctx.owner,
                to_pubkey=ctx.obligation_address,
                base=ctx.owner,
                seed=ctx.seed,
                lamports=lamports,
                space=OBLIGATION_SIZE,
                owner=ctx.program_id,
            )
        ),
        ix.init_obligation(
            ctx.obligation_address, ctx.pool.address, ctx.owner, ctx.program_id
        ),
    )


async def _create_ata(
    ctx: ActionContext, plan: ActionPlan, account: Pubkey, mint: Pubkey
) -> None:
    if ctx.exists(account) or not plan.schedule_creation(account):
        return
    plan.add(
        ctx.creation_bucket,
        ix.create_associated_token_account_idempotent(ctx.owner, ctx.owner, mint),
    )


async def resolve_ata(ctx: ActionContext, plan: ActionPlan, deps: SupportDeps) -> None:
    # The native mint's account is owned by the wsol resolver.
    if ctx.reserve.mint_address == WRAPPED_SOL_MINT:
        return
    await _create_ata(ctx, plan, ctx.user_token_account, ctx.reserve.mint_address)


async def resolve_c_ata(ctx: ActionContext, plan: ActionPlan, deps: SupportDeps) -> None:
    await _create_ata(
        ctx, plan, ctx.user_collateral_account, ctx.reserve.collateral_mint_address
    )


async def resolve_refresh_reserves(
    ctx: ActionContext, plan: ActionPlan, deps: SupportDeps
) -> None:
    addresses = list(
        dict.fromkeys(
            [*ctx.deposit_reserves, *ctx.borrow_reserves, ctx.reserve.address]
        )
    )

    reserves: list[Reserve] = []
    for address in addresses:
        reserve = ctx.pool.reserve_by_address(address)
        if reserve is None:
            raise OracleResolutionError(
                f"Could not find reserve {address} in market {ctx.pool.name}"
            )
        reserves.append(reserve)

    oracle_keys = (
        [r.pyth_oracle for r in reserves]
        + [r.switchboard_oracle for r in reserves]
        + [r.extra_oracle or NULL_ORACLE for r in reserves]
    )
    if deps.refresher is not None:
        await deps.refresher.refresh(oracle_keys, plan, ctx.owner, ctx.tip_amount)
    else:
        logger.warning("No oracle refresher configured; skipping price updates")

    for reserve in reserves:
        plan.add(
            Bucket.SETUP,
            ix.refresh_reserve(
                reserve.address,
                ctx.program_id,
                reserve.pyth_oracle,
                reserve.switchboard_oracle,
                reserve.extra_oracle,
            ),
        )


async def resolve_refresh_obligation(
    ctx: ActionContext, plan: ActionPlan, deps: SupportDeps
) -> None:
    plan.add(
        Bucket.SETUP,
        ix.refresh_obligation(
            ctx.obligation_address,
            ctx.deposit_reserves,
            ctx.borrow_reserves,
            ctx.program_id,
        ),
    )


def _require_wrapper(ctx: ActionContext) -> tuple[Pubkey, Pubkey, Pubkey]:
    if ctx.wrapped_ata is None or ctx.wrapped_mint is None:
        raise PreconditionError("Wrapped token account not initialized")
    if ctx.wrapper_program_id is None:
        raise PreconditionError("Wrapped mint configured without a wrapper program id")
    return ctx.wrapped_mint, ctx.wrapped_ata, ctx.wrapper_program_id


async def resolve_wrap(ctx: ActionContext, plan: ActionPlan, deps: SupportDeps) -> None:
    if ctx.wrapped_mint is None:
        return
    wrapped_mint, wrapped_ata, wrapper_program_id = _require_wrapper(ctx)

    if plan.schedule_creation(ctx.user_token_account):
        plan.add(
            Bucket.PRE,
            ix.create_associated_token_account_idempotent(
                ctx.owner, ctx.owner, ctx.reserve.mint_address
            ),
        )
    plan.add(
        Bucket.PRE,
        ix.deposit_and_mint_wrapper_tokens(
            ctx.owner,
            wrapped_ata,
            ctx.user_token_account,
            wrapped_mint,
            ctx.reserve.mint_address,
            ctx.amount,
            wrapper_program_id,
        ),
    )


async def resolve_unwrap(ctx: ActionContext, plan: ActionPlan, deps: SupportDeps) -> None:
    if ctx.wrapped_mint is None:
        return
    wrapped_mint, wrapped_ata, wrapper_program_id = _require_wrapper(ctx)

    if plan.schedule_creation(wrapped_ata):
        plan.add(
            Bucket.PRE,
            ix.create_associated_token_account_idempotent(
                ctx.owner, ctx.owner, wrapped_mint, TOKEN_2022_PROGRAM_ID
            ),
        )
    plan.add(
        Bucket.POST,
        ix.withdraw_and_burn_wrapper_tokens(
            ctx.owner,
            wrapped_ata,
            ctx.user_token_account,
            wrapped_mint,
            ctx.reserve.mint_address,
            ctx.amount,
            wrapper_program_id,
        ),
    )


async def resolve_wrap_unwrap_liquidate(
    ctx: ActionContext, plan: ActionPlan, deps: SupportDeps
) -> None:
    """Liquidation of wrapped assets needs no extra instructions yet."""


RESOLVERS: dict[Support, Resolver] = {
    Support.CREATE_OBLIGATION: resolve_create_obligation,
    Support.WRAP: resolve_wrap,
    Support.UNWRAP: resolve_unwrap,
    Support.REFRESH_RESERVES: resolve_refresh_reserves,
    Support.REFRESH_OBLIGATION: resolve_refresh_obligation,
    Support.C_ATA: resolve_c_ata,
    Support.ATA: resolve_ata,
    Support.WRAP_UNWRAP_LIQUIDATE: resolve_wrap_unwrap_liquidate,
    Support.WSOL: resolve_wsol,
}


async def resolve_supports(
    ctx: ActionContext, plan: ActionPlan, deps: SupportDeps
) -> None:
    """Run every resolver the action requires, in table order."""
    for support in ACTION_SUPPORT_REQUIREMENTS[ctx.action]:
        await RESOLVERS[support](ctx, plan, deps)
