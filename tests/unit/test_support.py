"""Unit tests for support account scheduling."""
from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from solend_liquidator.actions.context import ActionContext, SupportDeps
from solend_liquidator.actions.plan import ActionPlan, Bucket
from solend_liquidator.actions.support import (
    resolve_ata,
    resolve_c_ata,
    resolve_create_obligation,
)
from solend_liquidator.constants import OBLIGATION_SIZE
from solend_liquidator.models import ActionType


def context(pool, reserve, positions: int = 0, host_ata=None, **kwargs) -> ActionContext:
    return ActionContext(
        action=ActionType.BORROW,
        pool=pool,
        reserve=reserve,
        amount=100,
        owner=Pubkey.new_unique(),
        program_id=Pubkey.new_unique(),
        obligation_address=Pubkey.new_unique(),
        seed="seed",
        obligation=None,
        positions=positions,
        user_token_account=Pubkey.new_unique(),
        user_collateral_account=Pubkey.new_unique(),
        host_ata=host_ata,
        **kwargs,
    )


def _deps(rent: int = 5_000) -> SupportDeps:
    rpc = AsyncMock()
    rpc.get_minimum_balance_for_rent_exemption.return_value = rent
    return SupportDeps(rpc=rpc, state=AsyncMock())


class TestAccountCreation:
    @pytest.mark.asyncio
    async def test_same_account_created_once(self, sample_pool, usdc_reserve) -> None:
        ctx = context(sample_pool, usdc_reserve)
        plan = ActionPlan()
        deps = SupportDeps(rpc=AsyncMock(), state=AsyncMock())

        await resolve_ata(ctx, plan, deps)
        await resolve_ata(ctx, plan, deps)

        assert len(plan.setup) == 1
        assert plan.is_scheduled(ctx.user_token_account)

    @pytest.mark.asyncio
    async def test_existing_account_not_created(self, sample_pool, usdc_reserve) -> None:
        ctx = context(sample_pool, usdc_reserve)
        ctx = replace(ctx, existing_accounts={ctx.user_collateral_account: True})
        plan = ActionPlan()

        await resolve_c_ata(ctx, plan, SupportDeps(rpc=AsyncMock(), state=AsyncMock()))

        assert plan.instructions() == []

    @pytest.mark.asyncio
    async def test_native_mint_left_to_wsol(self, sample_pool, sol_reserve) -> None:
        ctx = context(sample_pool, sol_reserve)
        plan = ActionPlan()

        await resolve_ata(ctx, plan, SupportDeps(rpc=AsyncMock(), state=AsyncMock()))

        assert plan.instructions() == []

    @pytest.mark.asyncio
    async def test_full_position_route_uses_pre(self, sample_pool, usdc_reserve) -> None:
        ctx = context(sample_pool, usdc_reserve, positions=6, host_ata=Pubkey.new_unique())
        plan = ActionPlan()

        await resolve_ata(ctx, plan, SupportDeps(rpc=AsyncMock(), state=AsyncMock()))

        assert ctx.creation_bucket is Bucket.PRE
        assert ctx.teardown_bucket is Bucket.POST
        assert len(plan.pre) == 1 and plan.setup == []

    def test_route_needs_host_account(self, sample_pool, usdc_reserve) -> None:
        ctx = context(sample_pool, usdc_reserve, positions=6)
        assert not ctx.full_position_route
        assert ctx.creation_bucket is Bucket.SETUP


class TestCreateObligation:
    @pytest.mark.asyncio
    async def test_resolving_twice_creates_once(self, sample_pool, usdc_reserve) -> None:
        ctx = context(sample_pool, usdc_reserve)
        plan = ActionPlan()
        deps = _deps()

        await resolve_create_obligation(ctx, plan, deps)
        await resolve_create_obligation(ctx, plan, deps)

        # create_account_with_seed followed by init_obligation.
        assert len(plan.setup) == 2
        create, init = plan.setup
        assert create.program_id == SYSTEM_PROGRAM_ID
        assert create.accounts[1].pubkey == ctx.obligation_address
        assert init.program_id == ctx.program_id
        assert bytes(init.data) == bytes([6])
        assert plan.is_scheduled(ctx.obligation_address)
        deps.rpc.get_minimum_balance_for_rent_exemption.assert_awaited_once_with(
            OBLIGATION_SIZE
        )

    @pytest.mark.asyncio
    async def test_existing_obligation_emits_nothing(
        self, sample_pool, usdc_reserve, make_obligation
    ) -> None:
        ctx = context(sample_pool, usdc_reserve)
        ctx = replace(ctx, obligation=make_obligation(pubkey=ctx.obligation_address))
        plan = ActionPlan()
        deps = _deps()

        await resolve_create_obligation(ctx, plan, deps)

        assert plan.instructions() == []
        deps.rpc.get_minimum_balance_for_rent_exemption.assert_not_called()
