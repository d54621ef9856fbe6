"""Pure obligation health math, no I/O."""
from __future__ import annotations

from decimal import Decimal

from solders.pubkey import Pubkey

from ..constants import WAD
from ..errors import OracleResolutionError, StateReadError
from ..models import (
    BorrowValue,
    DepositValue,
    Obligation,
    RefreshedObligation,
    ReserveState,
    TokenOracleData,
)

_WAD = Decimal(WAD)


def collateral_exchange_rate(reserve: ReserveState) -> Decimal:
    """cTokens per unit of liquidity.

    rate = collateral_supply / (available + borrowed - protocol_fees)
    Falls back to 1 when either side is zero.
    """
    total_liquidity = (
        Decimal(reserve.available_amount)
        + Decimal(reserve.borrowed_amount_wads) / _WAD
        - Decimal(reserve.accumulated_protocol_fees_wads) / _WAD
    )
    supply = Decimal(reserve.collateral_mint_total_supply)
    if supply == 0 or total_liquidity == 0:
        return Decimal(1)
    return supply / total_liquidity


def _lookup(
    reserve_address: Pubkey,
    reserves: dict[Pubkey, ReserveState],
    oracles: dict[Pubkey, TokenOracleData],
) -> tuple[ReserveState, TokenOracleData]:
    oracle = oracles.get(reserve_address)
    if oracle is None:
        raise OracleResolutionError(f"Missing token info for reserve {reserve_address}")
    reserve = reserves.get(reserve_address)
    if reserve is None:
        raise StateReadError(f"Missing reserve state for {reserve_address}")
    return reserve, oracle


def calculate_refreshed_obligation(
    obligation: Obligation,
    reserves: dict[Pubkey, ReserveState],
    tokens_oracle: list[TokenOracleData],
) -> RefreshedObligation:
    """Recompute an obligation's values with current prices and interest.

    Deposits: ``amount / exchange_rate * price / 10^decimals``, weighted by
    the reserve's loan-to-value ratio and liquidation threshold. Borrows are
    compounded from their snapshot rate to the reserve's current rate.
    """
    oracles = {o.reserve_address: o for o in tokens_oracle}

    deposited_value = Decimal(0)
    allowed_borrow_value = Decimal(0)
    unhealthy_borrow_value = Decimal(0)
    deposits: list[DepositValue] = []
    for deposit in obligation.deposits:
        reserve, oracle = _lookup(deposit.deposit_reserve, reserves, oracles)
        rate = collateral_exchange_rate(reserve)
        market_value = (
            Decimal(deposit.deposited_amount) / rate * oracle.price / Decimal(oracle.decimals)
        )
        deposited_value += market_value
        allowed_borrow_value += market_value * Decimal(reserve.loan_to_value_ratio) / 100
        unhealthy_borrow_value += (
            market_value * Decimal(reserve.liquidation_threshold) / 100
        )
        deposits.append(
            DepositValue(
                reserve_address=deposit.deposit_reserve,
                symbol=oracle.symbol,
                deposited_amount=deposit.deposited_amount,
                market_value=market_value,
            )
        )

    borrowed_value = Decimal(0)
    borrows: list[BorrowValue] = []
    for borrow in obligation.borrows:
        reserve, oracle = _lookup(borrow.borrow_reserve, reserves, oracles)
        amount_wads = Decimal(borrow.borrowed_amount_wads)
        if borrow.cumulative_borrow_rate_wads:
            amount_wads = (
                amount_wads
                * Decimal(reserve.cumulative_borrow_rate_wads)
                / Decimal(borrow.cumulative_borrow_rate_wads)
            )
        market_value = amount_wads / _WAD * oracle.price / Decimal(oracle.decimals)
        borrowed_value += market_value
        borrows.append(
            BorrowValue(
                reserve_address=borrow.borrow_reserve,
                mint_address=oracle.mint_address,
                symbol=oracle.symbol,
                borrow_amount_wads=amount_wads,
                market_value=market_value,
            )
        )

    utilization_ratio = (
        borrowed_value / allowed_borrow_value * 100
        if allowed_borrow_value > 0
        else Decimal(0)
    )
    return RefreshedObligation(
        deposited_value=deposited_value,
        borrowed_value=borrowed_value,
        allowed_borrow_value=allowed_borrow_value,
        unhealthy_borrow_value=unhealthy_borrow_value,
        utilization_ratio=utilization_ratio,
        deposits=tuple(deposits),
        borrows=tuple(borrows),
    )


def select_repay_borrow(refreshed: RefreshedObligation) -> BorrowValue | None:
    """Highest-value borrow; zero-value positions are not candidates."""
    candidates = [b for b in refreshed.borrows if b.market_value > 0]
    return max(candidates, key=lambda b: b.market_value, default=None)


def select_withdraw_deposit(refreshed: RefreshedObligation) -> DepositValue | None:
    """Highest-value deposit; zero-value positions are not candidates."""
    candidates = [d for d in refreshed.deposits if d.market_value > 0]
    return max(candidates, key=lambda d: d.market_value, default=None)
