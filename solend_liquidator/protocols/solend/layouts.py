"""Binary layouts for Solend obligation and reserve accounts, with no I/O."""
from __future__ import annotations

from construct import (
    Adapter,
    Array,
    Bytes,
    BytesInteger,
    ConstructError,
    Int8ul,
    Int64ul,
    Padding,
    Struct,
    this,
)
from solders.pubkey import Pubkey

from ...constants import OBLIGATION_SIZE, RESERVE_SIZE
from ...errors import StateReadError
from ...models import (
    Obligation,
    ObligationCollateral,
    ObligationLiquidity,
    ReserveState,
)


class PubkeyAdapter(Adapter):
    def _decode(self, obj, context, path):
        return Pubkey.from_bytes(obj)

    def _encode(self, obj, context, path):
        return bytes(obj)


PublicKey = PubkeyAdapter(Bytes(32))
Int128ul = BytesInteger(16, swapped=True)

LastUpdate = Struct(
    "slot" / Int64ul,
    "stale" / Int8ul,
)

ObligationCollateralLayout = Struct(
    "deposit_reserve" / PublicKey,
    "deposited_amount" / Int64ul,
    "market_value" / Int128ul,
    Padding(32),
)

ObligationLiquidityLayout = Struct(
    "borrow_reserve" / PublicKey,
    "cumulative_borrow_rate_wads" / Int128ul,
    "borrowed_amount_wads" / Int128ul,
    "market_value" / Int128ul,
    Padding(32),
)

ObligationLayout = Struct(
    "version" / Int8ul,
    "last_update" / LastUpdate,
    "lending_market" / PublicKey,
    "owner" / PublicKey,
    "deposited_value" / Int128ul,
    "borrowed_value" / Int128ul,
    "allowed_borrow_value" / Int128ul,
    "unhealthy_borrow_value" / Int128ul,
    "borrowed_value_upper_bound" / Int128ul,
    "borrowing_isolated_asset" / Int8ul,
    "super_unhealthy_borrow_value" / Int128ul,
    "unweighted_borrowed_value" / Int128ul,
    "closeable" / Int8ul,
    Padding(14),
    "deposits_len" / Int8ul,
    "borrows_len" / Int8ul,
    "deposits" / Array(this.deposits_len, ObligationCollateralLayout),
    "borrows" / Array(this.borrows_len, ObligationLiquidityLayout),
)

# Byte offset of ``lending_market`` inside an obligation, used for RPC filters.
OBLIGATION_LENDING_MARKET_OFFSET = 10

ReserveLiquidityLayout = Struct(
    "mint" / PublicKey,
    "mint_decimals" / Int8ul,
    "supply" / PublicKey,
    "pyth_oracle" / PublicKey,
    "switchboard_oracle" / PublicKey,
    "available_amount" / Int64ul,
    "borrowed_amount_wads" / Int128ul,
    "cumulative_borrow_rate_wads" / Int128ul,
    "market_price" / Int128ul,
)

ReserveCollateralLayout = Struct(
    "mint" / PublicKey,
    "mint_total_supply" / Int64ul,
    "supply" / PublicKey,
)

ReserveFeesLayout = Struct(
    "borrow_fee_wad" / Int64ul,
    "flash_loan_fee_wad" / Int64ul,
    "host_fee_percentage" / Int8ul,
)

ReserveConfigLayout = Struct(
    "optimal_utilization_rate" / Int8ul,
    "loan_to_value_ratio" / Int8ul,
    "liquidation_bonus" / Int8ul,
    "liquidation_threshold" / Int8ul,
    "min_borrow_rate" / Int8ul,
    "optimal_borrow_rate" / Int8ul,
    "max_borrow_rate" / Int8ul,
    "fees" / ReserveFeesLayout,
    "deposit_limit" / Int64ul,
    "borrow_limit" / Int64ul,
    "fee_receiver" / PublicKey,
    "protocol_liquidation_fee" / Int8ul,
    "protocol_take_rate" / Int8ul,
)

ReserveLayout = Struct(
    "version" / Int8ul,
    "last_update" / LastUpdate,
    "lending_market" / PublicKey,
    "liquidity" / ReserveLiquidityLayout,
    "collateral" / ReserveCollateralLayout,
    "config" / ReserveConfigLayout,
    "accumulated_protocol_fees_wads" / Int128ul,
)

RESERVE_LENDING_MARKET_OFFSET = 10


def decode_obligation(pubkey: Pubkey, data: bytes) -> Obligation:
    """Decode a raw obligation account.

    Raises:
        StateReadError: wrong size, uninitialized (version 0) or undecodable.
    """
    if len(data) != OBLIGATION_SIZE:
        raise StateReadError(
            f"Obligation {pubkey} has size {len(data)}, expected {OBLIGATION_SIZE}"
        )
    try:
        raw = ObligationLayout.parse(data)
    except ConstructError as e:
        raise StateReadError(f"Unable to decode obligation {pubkey}: {e}") from e

    if raw.version == 0:
        raise StateReadError(f"Obligation {pubkey} is not initialized")

    return Obligation(
        pubkey=pubkey,
        version=raw.version,
        last_update_slot=raw.last_update.slot,
        lending_market=raw.lending_market,
        owner=raw.owner,
        deposited_value=raw.deposited_value,
        borrowed_value=raw.borrowed_value,
        allowed_borrow_value=raw.allowed_borrow_value,
        unhealthy_borrow_value=raw.unhealthy_borrow_value,
        deposits=tuple(
            ObligationCollateral(
                deposit_reserve=d.deposit_reserve,
                deposited_amount=d.deposited_amount,
                market_value=d.market_value,
            )
            for d in raw.deposits
        ),
        borrows=tuple(
            ObligationLiquidity(
                borrow_reserve=b.borrow_reserve,
                cumulative_borrow_rate_wads=b.cumulative_borrow_rate_wads,
                borrowed_amount_wads=b.borrowed_amount_wads,
                market_value=b.market_value,
            )
            for b in raw.borrows
        ),
    )


def decode_reserve(pubkey: Pubkey, data: bytes) -> ReserveState:
    """Decode a raw reserve account (only the leading, engine-relevant fields)."""
    if len(data) != RESERVE_SIZE:
        raise StateReadError(
            f"Reserve {pubkey} has size {len(data)}, expected {RESERVE_SIZE}"
        )
    try:
        raw = ReserveLayout.parse(data)
    except ConstructError as e:
        raise StateReadError(f"Unable to decode reserve {pubkey}: {e}") from e

    if raw.version == 0:
        raise StateReadError(f"Reserve {pubkey} is not initialized")

    liquidity = raw.liquidity
    collateral = raw.collateral
    config = raw.config
    return ReserveState(
        pubkey=pubkey,
        version=raw.version,
        last_update_slot=raw.last_update.slot,
        lending_market=raw.lending_market,
        liquidity_mint=liquidity.mint,
        liquidity_mint_decimals=liquidity.mint_decimals,
        liquidity_supply=liquidity.supply,
        pyth_oracle=liquidity.pyth_oracle,
        switchboard_oracle=liquidity.switchboard_oracle,
        available_amount=liquidity.available_amount,
        borrowed_amount_wads=liquidity.borrowed_amount_wads,
        cumulative_borrow_rate_wads=liquidity.cumulative_borrow_rate_wads,
        market_price=liquidity.market_price,
        collateral_mint=collateral.mint,
        collateral_mint_total_supply=collateral.mint_total_supply,
        collateral_supply=collateral.supply,
        loan_to_value_ratio=config.loan_to_value_ratio,
        liquidation_bonus=config.liquidation_bonus,
        liquidation_threshold=config.liquidation_threshold,
        fee_receiver=config.fee_receiver,
        accumulated_protocol_fees_wads=raw.accumulated_protocol_fees_wads,
    )
