"""Native SOL funding: moving lamports in and out of the wrapped-SOL account."""
from __future__ import annotations

import logging

from solders.instruction import Instruction
from solders.system_program import TransferParams, transfer
from spl.token.constants import TOKEN_PROGRAM_ID, WRAPPED_SOL_MINT
from spl.token.instructions import close_account, sync_native
from spl.token.models import CloseAccountParams, SyncNativeParams

from ..constants import SOL_PADDING_FOR_INTEREST, TOKEN_ACCOUNT_SIZE, U64_MAX, WAD
from ..errors import PreconditionError
from ..models import ActionType
from ..protocols.solend import instructions as ix
from .context import ActionContext, SupportDeps
from .plan import ActionPlan

logger = logging.getLogger(__name__)

# Actions that move lamports into the wrapped account before the lending call.
FUNDING_ACTIONS = frozenset({ActionType.DEPOSIT, ActionType.REPAY, ActionType.MINT})


def compute_safe_repay(
    borrowed_amount_wads: int,
    snapshot_rate_wads: int,
    current_rate_wads: int,
    padding: int = SOL_PADDING_FOR_INTEREST,
) -> int:
    """Outstanding debt at ``current_rate_wads`` plus ``padding`` lamports.

    ``floor(B * r1 / r0 / WAD) + padding`` in exact integer arithmetic.
    """
    if snapshot_rate_wads <= 0:
        raise PreconditionError("Borrow has no cumulative rate snapshot")
    return (
        borrowed_amount_wads * current_rate_wads // (snapshot_rate_wads * WAD)
        + padding
    )


async def _funding_amount(ctx: ActionContext, deps: SupportDeps) -> int:
    if not (
        ctx.obligation is not None
        and ctx.action is ActionType.REPAY
        and ctx.amount == U64_MAX
    ):
        return ctx.amount

    reserve_state = await deps.state.load_reserve(ctx.reserve.address, "processed")
    borrow = ctx.obligation.find_borrow(ctx.reserve.address)
    if borrow is None:
        raise PreconditionError(
            f"Unable to find obligation borrow to repay for {ctx.obligation.owner}"
        )
    amount = compute_safe_repay(
        borrow.borrowed_amount_wads,
        borrow.cumulative_borrow_rate_wads,
        reserve_state.cumulative_borrow_rate_wads,
    )
    logger.debug("Full SOL repay sized to %d lamports", amount)
    return amount


async def resolve_wsol(ctx: ActionContext, plan: ActionPlan, deps: SupportDeps) -> None:
    if ctx.reserve.mint_address != WRAPPED_SOL_MINT:
        return

    account = ctx.user_token_account
    funding = ctx.action in FUNDING_ACTIONS
    amount = await _funding_amount(ctx, deps) if funding else 0

    on_chain = ctx.exists(account)
    create = not on_chain and plan.schedule_creation(account)
    rent = (
        await deps.rpc.get_minimum_balance_for_rent_exemption(TOKEN_ACCOUNT_SIZE)
        if create
        else 0
    )

    lamports = rent + amount
    if lamports > U64_MAX:
        raise PreconditionError(
            "Cannot fund wrapped SOL with the full-balance amount; pass a lamport amount"
        )

    opening: list[Instruction] = []
    closing: list[Instruction] = []

    if lamports > 0:
        opening.append(
            transfer(
                TransferParams(from_pubkey=ctx.owner, to_pubkey=account, lamports=lamports)
            )
        )

    close = close_account(
        CloseAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=account,
            dest=ctx.owner,
            owner=ctx.owner,
        )
    )

    if on_chain:
        if funding:
            opening.append(
                sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=account))
            )
        else:
            closing.append(close)
    elif create:
        opening.append(
            ix.create_associated_token_account_idempotent(
                ctx.owner, ctx.owner, WRAPPED_SOL_MINT
            )
        )
        closing.append(close)
    elif funding:
        # Created earlier in this plan, which also closes it.
        opening.append(
            sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=account))
        )

    plan.add(ctx.creation_bucket, *opening)
    plan.add(ctx.teardown_bucket, *closing)
