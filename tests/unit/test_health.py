"""Unit tests for obligation health math and liquidation pair selection."""
from __future__ import annotations

from decimal import Decimal

import pytest
from solders.pubkey import Pubkey

from solend_liquidator.constants import WAD
from solend_liquidator.errors import OracleResolutionError, StateReadError
from solend_liquidator.models import (
    BorrowValue,
    DepositValue,
    RefreshedObligation,
    TokenOracleData,
)
from solend_liquidator.services.health import (
    calculate_refreshed_obligation,
    collateral_exchange_rate,
    select_repay_borrow,
    select_withdraw_deposit,
)


def oracle(reserve, price: str) -> TokenOracleData:
    return TokenOracleData(
        symbol=reserve.symbol,
        reserve_address=reserve.address,
        mint_address=reserve.mint_address,
        decimals=10**reserve.decimals,
        price=Decimal(price),
    )


def borrow_value(value: int) -> BorrowValue:
    return BorrowValue(
        reserve_address=Pubkey.new_unique(),
        mint_address=Pubkey.new_unique(),
        symbol=f"B{value}",
        borrow_amount_wads=Decimal(value),
        market_value=Decimal(value),
    )


def deposit_value(value: int) -> DepositValue:
    return DepositValue(
        reserve_address=Pubkey.new_unique(),
        symbol=f"D{value}",
        deposited_amount=value,
        market_value=Decimal(value),
    )


def refreshed(borrows=(), deposits=()) -> RefreshedObligation:
    return RefreshedObligation(
        deposited_value=Decimal(0),
        borrowed_value=Decimal(0),
        allowed_borrow_value=Decimal(0),
        unhealthy_borrow_value=Decimal(0),
        utilization_ratio=Decimal(0),
        deposits=tuple(deposits),
        borrows=tuple(borrows),
    )


class TestExchangeRate:
    def test_one_to_one(self, usdc_reserve, make_reserve_state) -> None:
        state = make_reserve_state(usdc_reserve)
        assert collateral_exchange_rate(state) == Decimal(1)

    def test_borrowed_liquidity_lowers_rate(self, usdc_reserve, make_reserve_state) -> None:
        state = make_reserve_state(
            usdc_reserve,
            available_amount=500_000,
            borrowed_amount_wads=1_500_000 * WAD,
            collateral_mint_total_supply=1_000_000,
        )
        assert collateral_exchange_rate(state) == Decimal("0.5")

    def test_empty_reserve_defaults_to_one(self, usdc_reserve, make_reserve_state) -> None:
        state = make_reserve_state(
            usdc_reserve, available_amount=0, collateral_mint_total_supply=0
        )
        assert collateral_exchange_rate(state) == Decimal(1)


class TestRefreshedObligation:
    @staticmethod
    def _setup(usdc_reserve, sol_reserve, make_reserve_state, make_obligation, borrow_usdc):
        obligation = make_obligation(
            deposits=[(sol_reserve.address, 1_000_000_000)],
            borrows=[(usdc_reserve.address, borrow_usdc * 10**6 * WAD, WAD)],
        )
        reserves = {
            usdc_reserve.address: make_reserve_state(usdc_reserve),
            sol_reserve.address: make_reserve_state(
                sol_reserve,
                available_amount=1_000_000_000,
                collateral_mint_total_supply=1_000_000_000,
            ),
        }
        oracles = [oracle(usdc_reserve, "1"), oracle(sol_reserve, "10")]
        return obligation, reserves, oracles

    def test_values_and_weights(
        self, usdc_reserve, sol_reserve, make_reserve_state, make_obligation
    ) -> None:
        obligation, reserves, oracles = self._setup(
            usdc_reserve, sol_reserve, make_reserve_state, make_obligation, 6
        )

        result = calculate_refreshed_obligation(obligation, reserves, oracles)

        assert result.deposited_value == Decimal(10)
        assert result.allowed_borrow_value == Decimal("7.5")
        assert result.unhealthy_borrow_value == Decimal(8)
        assert result.borrowed_value == Decimal(6)
        assert result.utilization_ratio == Decimal(80)
        assert result.is_healthy
        assert result.borrows[0].mint_address == usdc_reserve.mint_address
        assert result.deposits[0].symbol == "SOL"

    def test_underwater_is_unhealthy(
        self, usdc_reserve, sol_reserve, make_reserve_state, make_obligation
    ) -> None:
        obligation, reserves, oracles = self._setup(
            usdc_reserve, sol_reserve, make_reserve_state, make_obligation, 9
        )
        result = calculate_refreshed_obligation(obligation, reserves, oracles)
        assert result.borrowed_value > result.unhealthy_borrow_value
        assert not result.is_healthy

    def test_interest_accrues_from_snapshot(
        self, usdc_reserve, sol_reserve, make_reserve_state, make_obligation
    ) -> None:
        obligation, reserves, oracles = self._setup(
            usdc_reserve, sol_reserve, make_reserve_state, make_obligation, 6
        )
        reserves[usdc_reserve.address] = make_reserve_state(
            usdc_reserve, cumulative_borrow_rate_wads=WAD * 3 // 2
        )

        result = calculate_refreshed_obligation(obligation, reserves, oracles)

        assert result.borrowed_value == Decimal(9)
        assert not result.is_healthy

    def test_boundary_is_healthy(self) -> None:
        result = RefreshedObligation(
            deposited_value=Decimal(10),
            borrowed_value=Decimal(8),
            allowed_borrow_value=Decimal("7.5"),
            unhealthy_borrow_value=Decimal(8),
            utilization_ratio=Decimal(0),
        )
        assert result.is_healthy

    def test_missing_oracle_raises(
        self, usdc_reserve, sol_reserve, make_reserve_state, make_obligation
    ) -> None:
        obligation, reserves, oracles = self._setup(
            usdc_reserve, sol_reserve, make_reserve_state, make_obligation, 6
        )
        with pytest.raises(OracleResolutionError, match="Missing token info"):
            calculate_refreshed_obligation(obligation, reserves, oracles[:1])

    def test_missing_reserve_raises(
        self, usdc_reserve, sol_reserve, make_reserve_state, make_obligation
    ) -> None:
        obligation, reserves, oracles = self._setup(
            usdc_reserve, sol_reserve, make_reserve_state, make_obligation, 6
        )
        del reserves[sol_reserve.address]
        with pytest.raises(StateReadError):
            calculate_refreshed_obligation(obligation, reserves, oracles)

    def test_empty_obligation(self, make_obligation) -> None:
        result = calculate_refreshed_obligation(make_obligation(), {}, [])
        assert result.borrowed_value == 0
        assert result.utilization_ratio == 0
        assert result.is_healthy


class TestPairSelection:
    def test_largest_borrow_is_repaid(self) -> None:
        result = refreshed(borrows=[borrow_value(10), borrow_value(50), borrow_value(5)])
        assert select_repay_borrow(result).symbol == "B50"

    def test_largest_deposit_is_withdrawn(self) -> None:
        result = refreshed(deposits=[deposit_value(30), deposit_value(80)])
        assert select_withdraw_deposit(result).symbol == "D80"

    def test_zero_value_positions_are_skipped(self) -> None:
        result = refreshed(borrows=[borrow_value(0)], deposits=[deposit_value(0)])
        assert select_repay_borrow(result) is None
        assert select_withdraw_deposit(result) is None
