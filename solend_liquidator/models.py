"""Data models, all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey

from .constants import NULL_ORACLE


class ActionType(str, Enum):
    DEPOSIT = "deposit"
    BORROW = "borrow"
    WITHDRAW = "withdraw"
    REPAY = "repay"
    MINT = "mint"
    REDEEM = "redeem"
    DEPOSIT_COLLATERAL = "depositCollateral"
    WITHDRAW_COLLATERAL = "withdrawCollateral"
    FORGIVE = "forgive"
    LIQUIDATE = "liquidate"


# ---------------------------------------------------------------------------
# Static market metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Reserve:
    """One lending asset inside a market, as published in the market config."""

    address: Pubkey
    symbol: str
    mint_address: Pubkey
    decimals: int
    collateral_mint_address: Pubkey
    collateral_supply_address: Pubkey
    liquidity_address: Pubkey
    liquidity_fee_receiver_address: Pubkey
    pyth_oracle: Pubkey
    switchboard_oracle: Pubkey
    extra_oracle: Pubkey | None = None

    @property
    def oracle_keys(self) -> tuple[Pubkey, Pubkey, Pubkey]:
        """Primary, secondary and extra oracle (null sentinel when unset)."""
        return (
            self.pyth_oracle,
            self.switchboard_oracle,
            self.extra_oracle or NULL_ORACLE,
        )


@dataclass(frozen=True)
class Pool:
    """A lending market and the reserves it hosts."""

    name: str
    address: Pubkey
    authority_address: Pubkey
    owner: Pubkey
    reserves: tuple[Reserve, ...] = ()

    def reserve_by_address(self, address: Pubkey) -> Reserve | None:
        for reserve in self.reserves:
            if reserve.address == address:
                return reserve
        return None


# ---------------------------------------------------------------------------
# Decoded on-chain state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountInfo:
    """Raw account as returned by the RPC node."""

    owner: Pubkey
    lamports: int
    data: bytes
    executable: bool = False


@dataclass(frozen=True)
class ObligationCollateral:
    deposit_reserve: Pubkey
    deposited_amount: int
    market_value: int


@dataclass(frozen=True)
class ObligationLiquidity:
    borrow_reserve: Pubkey
    cumulative_borrow_rate_wads: int
    borrowed_amount_wads: int
    market_value: int


@dataclass(frozen=True)
class Obligation:
    """A borrower's position. Values are WAD-scaled as stored on chain."""

    pubkey: Pubkey
    version: int
    last_update_slot: int
    lending_market: Pubkey
    owner: Pubkey
    deposited_value: int
    borrowed_value: int
    allowed_borrow_value: int
    unhealthy_borrow_value: int
    deposits: tuple[ObligationCollateral, ...] = ()
    borrows: tuple[ObligationLiquidity, ...] = ()

    @property
    def deposit_reserves(self) -> list[Pubkey]:
        return [d.deposit_reserve for d in self.deposits]

    @property
    def borrow_reserves(self) -> list[Pubkey]:
        return [b.borrow_reserve for b in self.borrows]

    def find_borrow(self, reserve: Pubkey) -> ObligationLiquidity | None:
        for borrow in self.borrows:
            if borrow.borrow_reserve == reserve:
                return borrow
        return None


@dataclass(frozen=True)
class ReserveState:
    """Decoded reserve account (the fields the engine reads)."""

    pubkey: Pubkey
    version: int
    last_update_slot: int
    lending_market: Pubkey
    liquidity_mint: Pubkey
    liquidity_mint_decimals: int
    liquidity_supply: Pubkey
    pyth_oracle: Pubkey
    switchboard_oracle: Pubkey
    available_amount: int
    borrowed_amount_wads: int
    cumulative_borrow_rate_wads: int
    market_price: int
    collateral_mint: Pubkey
    collateral_mint_total_supply: int
    collateral_supply: Pubkey
    loan_to_value_ratio: int
    liquidation_bonus: int
    liquidation_threshold: int
    fee_receiver: Pubkey
    accumulated_protocol_fees_wads: int = 0


# ---------------------------------------------------------------------------
# Prices and health
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceQuote:
    """A price decoded from a feed account."""

    price: Decimal
    publish_time: int
    stale: bool = False


@dataclass(frozen=True)
class TokenOracleData:
    """Resolved price for one reserve, valid for a single evaluation."""

    symbol: str
    reserve_address: Pubkey
    mint_address: Pubkey
    decimals: int
    price: Decimal


@dataclass(frozen=True)
class DepositValue:
    reserve_address: Pubkey
    symbol: str
    deposited_amount: int
    market_value: Decimal


@dataclass(frozen=True)
class BorrowValue:
    reserve_address: Pubkey
    mint_address: Pubkey
    symbol: str
    borrow_amount_wads: Decimal
    market_value: Decimal


@dataclass(frozen=True)
class RefreshedObligation:
    """Obligation values recomputed off-chain from fresh prices."""

    deposited_value: Decimal
    borrowed_value: Decimal
    allowed_borrow_value: Decimal
    unhealthy_borrow_value: Decimal
    utilization_ratio: Decimal
    deposits: tuple[DepositValue, ...] = ()
    borrows: tuple[BorrowValue, ...] = ()

    @property
    def is_healthy(self) -> bool:
        return self.borrowed_value <= self.unhealthy_borrow_value


@dataclass(frozen=True)
class CompanionTransaction:
    """A pre-built transaction sent ahead of an action (e.g. a price update)."""

    message: MessageV0
    signers: tuple[Keypair, ...] = ()
