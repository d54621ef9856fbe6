"""Solend instruction encoders plus the token helpers the action builder needs.

Every function is pure: it takes account addresses and amounts and returns a
``solders`` :class:`Instruction`. Account order follows the on-chain program.
"""
from __future__ import annotations

from enum import IntEnum

from construct import Int8ul, Int64ul, Struct
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.sysvar import RENT
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_associated_token_account,
    create_idempotent_associated_token_account,
)


class LendingInstruction(IntEnum):
    REFRESH_RESERVE = 3
    DEPOSIT_RESERVE_LIQUIDITY = 4
    REDEEM_RESERVE_COLLATERAL = 5
    INIT_OBLIGATION = 6
    REFRESH_OBLIGATION = 7
    DEPOSIT_OBLIGATION_COLLATERAL = 8
    WITHDRAW_OBLIGATION_COLLATERAL = 9
    BORROW_OBLIGATION_LIQUIDITY = 10
    REPAY_OBLIGATION_LIQUIDITY = 11
    DEPOSIT_RESERVE_LIQUIDITY_AND_OBLIGATION_COLLATERAL = 14
    WITHDRAW_OBLIGATION_COLLATERAL_AND_REDEEM_RESERVE_LIQUIDITY = 15
    LIQUIDATE_OBLIGATION_AND_REDEEM_RESERVE_COLLATERAL = 17
    FORGIVE_DEBT = 21
    DEPOSIT_MAX_RESERVE_LIQUIDITY_AND_OBLIGATION_COLLATERAL = 25
    REPAY_MAX_OBLIGATION_LIQUIDITY = 26
    WITHDRAW_EXACT = 27


TagOnly = Struct("instruction" / Int8ul)
TagAndAmount = Struct("instruction" / Int8ul, "amount" / Int64ul)


def _data(tag: LendingInstruction, amount: int | None = None) -> bytes:
    if amount is None:
        return TagOnly.build({"instruction": int(tag)})
    return TagAndAmount.build({"instruction": int(tag), "amount": int(amount)})


def _w(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=False, is_writable=True)


def _r(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=False, is_writable=False)


def _s(pubkey: Pubkey, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=True, is_writable=writable)


# ---------------------------------------------------------------------------
# Token account helpers
# ---------------------------------------------------------------------------


def create_associated_token_account_idempotent(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    """CreateIdempotent: succeeds whether or not the account already exists."""
    if token_program_id == TOKEN_PROGRAM_ID:
        return create_idempotent_associated_token_account(payer, owner, mint)
    # Create without its trailing rent sysvar; only the instruction byte differs.
    create = create_associated_token_account(payer, owner, mint, token_program_id)
    return Instruction(create.program_id, bytes([1]), create.accounts[:6])


# Token-2022 wrapper program: discriminators for its two user instructions.
_WRAPPER_DEPOSIT_AND_MINT = 0
_WRAPPER_WITHDRAW_AND_BURN = 1


def _wrapper_accounts(
    owner: Pubkey,
    user_wrapped_account: Pubkey,
    user_token_account: Pubkey,
    wrapped_mint: Pubkey,
    token_mint: Pubkey,
    wrapper_program_id: Pubkey,
) -> list[AccountMeta]:
    vault, _ = Pubkey.find_program_address(
        [b"vault", bytes(wrapped_mint)], wrapper_program_id
    )
    authority, _ = Pubkey.find_program_address(
        [b"mint_authority", bytes(token_mint)], wrapper_program_id
    )
    return [
        _s(owner, writable=True),
        _w(user_wrapped_account),
        _w(user_token_account),
        _r(wrapped_mint),
        _w(token_mint),
        _w(vault),
        _r(authority),
        _r(TOKEN_PROGRAM_ID),
        _r(TOKEN_2022_PROGRAM_ID),
    ]


def deposit_and_mint_wrapper_tokens(
    owner: Pubkey,
    user_wrapped_account: Pubkey,
    user_token_account: Pubkey,
    wrapped_mint: Pubkey,
    token_mint: Pubkey,
    amount: int,
    wrapper_program_id: Pubkey,
) -> Instruction:
    """Lock token-2022 units and mint the SPL representation the reserve uses."""
    return Instruction(
        wrapper_program_id,
        TagAndAmount.build({"instruction": _WRAPPER_DEPOSIT_AND_MINT, "amount": amount}),
        _wrapper_accounts(
            owner, user_wrapped_account, user_token_account,
            wrapped_mint, token_mint, wrapper_program_id,
        ),
    )


def withdraw_and_burn_wrapper_tokens(
    owner: Pubkey,
    user_wrapped_account: Pubkey,
    user_token_account: Pubkey,
    wrapped_mint: Pubkey,
    token_mint: Pubkey,
    amount: int,
    wrapper_program_id: Pubkey,
) -> Instruction:
    return Instruction(
        wrapper_program_id,
        TagAndAmount.build({"instruction": _WRAPPER_WITHDRAW_AND_BURN, "amount": amount}),
        _wrapper_accounts(
            owner, user_wrapped_account, user_token_account,
            wrapped_mint, token_mint, wrapper_program_id,
        ),
    )


# ---------------------------------------------------------------------------
# Obligation lifecycle and refresh
# ---------------------------------------------------------------------------


def init_obligation(
    obligation: Pubkey,
    lending_market: Pubkey,
    obligation_owner: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(LendingInstruction.INIT_OBLIGATION),
        [
            _w(obligation),
            _r(lending_market),
            _s(obligation_owner),
            _r(RENT),
            _r(TOKEN_PROGRAM_ID),
        ],
    )


def refresh_reserve(
    reserve: Pubkey,
    program_id: Pubkey,
    pyth_oracle: Pubkey,
    switchboard_oracle: Pubkey,
    extra_oracle: Pubkey | None = None,
) -> Instruction:
    keys = [_w(reserve), _r(pyth_oracle), _r(switchboard_oracle)]
    if extra_oracle is not None:
        keys.append(_r(extra_oracle))
    return Instruction(program_id, _data(LendingInstruction.REFRESH_RESERVE), keys)


def refresh_obligation(
    obligation: Pubkey,
    deposit_reserves: list[Pubkey],
    borrow_reserves: list[Pubkey],
    program_id: Pubkey,
) -> Instruction:
    """Deposit reserves first, then borrow reserves, in obligation order."""
    keys = [_w(obligation)]
    keys.extend(_r(r) for r in deposit_reserves)
    keys.extend(_r(r) for r in borrow_reserves)
    return Instruction(program_id, _data(LendingInstruction.REFRESH_OBLIGATION), keys)


def forgive_debt(
    obligation: Pubkey,
    reserve: Pubkey,
    lending_market: Pubkey,
    lending_market_owner: Pubkey,
    amount: int,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(LendingInstruction.FORGIVE_DEBT, amount),
        [
            _w(obligation),
            _w(reserve),
            _r(lending_market),
            _s(lending_market_owner),
        ],
    )


# ---------------------------------------------------------------------------
# Reserve liquidity / collateral
# ---------------------------------------------------------------------------


def deposit_reserve_liquidity(
    amount: int,
    source_liquidity: Pubkey,
    destination_collateral: Pubkey,
    reserve: Pubkey,
    reserve_liquidity_supply: Pubkey,
    reserve_collateral_mint: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(LendingInstruction.DEPOSIT_RESERVE_LIQUIDITY, amount),
        [
            _w(source_liquidity),
            _w(destination_collateral),
            _w(reserve),
            _w(reserve_liquidity_supply),
            _w(reserve_collateral_mint),
            _r(lending_market),
            _r(lending_market_authority),
            _s(transfer_authority),
            _r(TOKEN_PROGRAM_ID),
        ],
    )


def redeem_reserve_collateral(
    amount: int,
    source_collateral: Pubkey,
    destination_liquidity: Pubkey,
    reserve: Pubkey,
    reserve_collateral_mint: Pubkey,
    reserve_liquidity_supply: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(LendingInstruction.REDEEM_RESERVE_COLLATERAL, amount),
        [
            _w(source_collateral),
            _w(destination_liquidity),
            _w(reserve),
            _w(reserve_collateral_mint),
            _w(reserve_liquidity_supply),
            _r(lending_market),
            _r(lending_market_authority),
            _s(transfer_authority),
            _r(TOKEN_PROGRAM_ID),
        ],
    )


def deposit_obligation_collateral(
    amount: int,
    source_collateral: Pubkey,
    destination_collateral: Pubkey,
    deposit_reserve: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    obligation_owner: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(LendingInstruction.DEPOSIT_OBLIGATION_COLLATERAL, amount),
        [
            _w(source_collateral),
            _w(destination_collateral),
            _w(deposit_reserve),
            _w(obligation),
            _r(lending_market),
            _s(obligation_owner),
            _s(transfer_authority),
            _r(TOKEN_PROGRAM_ID),
        ],
    )


def withdraw_obligation_collateral(
    amount: int,
    source_collateral: Pubkey,
    destination_collateral: Pubkey,
    withdraw_reserve: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    obligation_owner: Pubkey,
    program_id: Pubkey,
    deposit_reserves: list[Pubkey],
) -> Instruction:
    keys = [
        _w(source_collateral),
        _w(destination_collateral),
        _r(withdraw_reserve),
        _w(obligation),
        _r(lending_market),
        _r(lending_market_authority),
        _s(obligation_owner),
        _r(TOKEN_PROGRAM_ID),
    ]
    keys.extend(_r(r) for r in deposit_reserves)
    return Instruction(
        program_id,
        _data(LendingInstruction.WITHDRAW_OBLIGATION_COLLATERAL, amount),
        keys,
    )


def borrow_obligation_liquidity(
    amount: int,
    source_liquidity: Pubkey,
    destination_liquidity: Pubkey,
    borrow_reserve: Pubkey,
    borrow_reserve_liquidity_fee_receiver: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    obligation_owner: Pubkey,
    program_id: Pubkey,
    deposit_reserves: list[Pubkey],
    host_fee_receiver: Pubkey | None = None,
) -> Instruction:
    keys = [
        _w(source_liquidity),
        _w(destination_liquidity),
        _w(borrow_reserve),
        _w(borrow_reserve_liquidity_fee_receiver),
        _w(obligation),
        _r(lending_market),
        _r(lending_market_authority),
        _s(obligation_owner),
        _r(TOKEN_PROGRAM_ID),
    ]
    keys.extend(_r(r) for r in deposit_reserves)
    if host_fee_receiver is not None:
        keys.append(_w(host_fee_receiver))
    return Instruction(
        program_id,
        _data(LendingInstruction.BORROW_OBLIGATION_LIQUIDITY, amount),
        keys,
    )


def _repay_accounts(
    source_liquidity: Pubkey,
    destination_liquidity: Pubkey,
    repay_reserve: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    transfer_authority: Pubkey,
) -> list[AccountMeta]:
    return [
        _w(source_liquidity),
        _w(destination_liquidity),
        _w(repay_reserve),
        _w(obligation),
        _r(lending_market),
        _s(transfer_authority),
        _r(TOKEN_PROGRAM_ID),
    ]


def repay_obligation_liquidity(
    amount: int,
    source_liquidity: Pubkey,
    destination_liquidity: Pubkey,
    repay_reserve: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(LendingInstruction.REPAY_OBLIGATION_LIQUIDITY, amount),
        _repay_accounts(
            source_liquidity, destination_liquidity, repay_reserve,
            obligation, lending_market, transfer_authority,
        ),
    )


def repay_max_obligation_liquidity(
    source_liquidity: Pubkey,
    destination_liquidity: Pubkey,
    repay_reserve: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(LendingInstruction.REPAY_MAX_OBLIGATION_LIQUIDITY),
        _repay_accounts(
            source_liquidity, destination_liquidity, repay_reserve,
            obligation, lending_market, transfer_authority,
        ),
    )


def _deposit_and_collateralize_accounts(
    source_liquidity: Pubkey,
    user_collateral: Pubkey,
    reserve: Pubkey,
    reserve_liquidity_supply: Pubkey,
    reserve_collateral_mint: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    destination_collateral: Pubkey,
    obligation: Pubkey,
    obligation_owner: Pubkey,
    pyth_oracle: Pubkey,
    switchboard_oracle: Pubkey,
    transfer_authority: Pubkey,
) -> list[AccountMeta]:
    return [
        _w(source_liquidity),
        _w(user_collateral),
        _w(reserve),
        _w(reserve_liquidity_supply),
        _w(reserve_collateral_mint),
        _r(lending_market),
        _r(lending_market_authority),
        _w(destination_collateral),
        _w(obligation),
        _s(obligation_owner),
        _r(pyth_oracle),
        _r(switchboard_oracle),
        _s(transfer_authority),
        _r(TOKEN_PROGRAM_ID),
    ]


def deposit_reserve_liquidity_and_obligation_collateral(
    amount: int,
    source_liquidity: Pubkey,
    user_collateral: Pubkey,
    reserve: Pubkey,
    reserve_liquidity_supply: Pubkey,
    reserve_collateral_mint: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    destination_collateral: Pubkey,
    obligation: Pubkey,
    obligation_owner: Pubkey,
    pyth_oracle: Pubkey,
    switchboard_oracle: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(
            LendingInstruction.DEPOSIT_RESERVE_LIQUIDITY_AND_OBLIGATION_COLLATERAL,
            amount,
        ),
        _deposit_and_collateralize_accounts(
            source_liquidity, user_collateral, reserve, reserve_liquidity_supply,
            reserve_collateral_mint, lending_market, lending_market_authority,
            destination_collateral, obligation, obligation_owner,
            pyth_oracle, switchboard_oracle, transfer_authority,
        ),
    )


def deposit_max_reserve_liquidity_and_obligation_collateral(
    source_liquidity: Pubkey,
    user_collateral: Pubkey,
    reserve: Pubkey,
    reserve_liquidity_supply: Pubkey,
    reserve_collateral_mint: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    destination_collateral: Pubkey,
    obligation: Pubkey,
    obligation_owner: Pubkey,
    pyth_oracle: Pubkey,
    switchboard_oracle: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    """Deposit the owner's entire token balance and collateralize it."""
    return Instruction(
        program_id,
        _data(LendingInstruction.DEPOSIT_MAX_RESERVE_LIQUIDITY_AND_OBLIGATION_COLLATERAL),
        _deposit_and_collateralize_accounts(
            source_liquidity, user_collateral, reserve, reserve_liquidity_supply,
            reserve_collateral_mint, lending_market, lending_market_authority,
            destination_collateral, obligation, obligation_owner,
            pyth_oracle, switchboard_oracle, transfer_authority,
        ),
    )


def _withdraw_and_redeem_accounts(
    source_collateral: Pubkey,
    destination_collateral: Pubkey,
    withdraw_reserve: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    destination_liquidity: Pubkey,
    reserve_collateral_mint: Pubkey,
    reserve_liquidity_supply: Pubkey,
    obligation_owner: Pubkey,
    transfer_authority: Pubkey,
    deposit_reserves: list[Pubkey],
) -> list[AccountMeta]:
    keys = [
        _w(source_collateral),
        _w(destination_collateral),
        _w(withdraw_reserve),
        _w(obligation),
        _r(lending_market),
        _r(lending_market_authority),
        _w(destination_liquidity),
        _w(reserve_collateral_mint),
        _w(reserve_liquidity_supply),
        _s(obligation_owner),
        _s(transfer_authority),
        _r(TOKEN_PROGRAM_ID),
    ]
    keys.extend(_r(r) for r in deposit_reserves)
    return keys


def withdraw_obligation_collateral_and_redeem_reserve_liquidity(
    amount: int,
    source_collateral: Pubkey,
    destination_collateral: Pubkey,
    withdraw_reserve: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    destination_liquidity: Pubkey,
    reserve_collateral_mint: Pubkey,
    reserve_liquidity_supply: Pubkey,
    obligation_owner: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
    deposit_reserves: list[Pubkey],
) -> Instruction:
    """Amount is in collateral (cToken) units; ``U64_MAX`` withdraws everything."""
    return Instruction(
        program_id,
        _data(
            LendingInstruction.WITHDRAW_OBLIGATION_COLLATERAL_AND_REDEEM_RESERVE_LIQUIDITY,
            amount,
        ),
        _withdraw_and_redeem_accounts(
            source_collateral, destination_collateral, withdraw_reserve,
            obligation, lending_market, lending_market_authority,
            destination_liquidity, reserve_collateral_mint,
            reserve_liquidity_supply, obligation_owner, transfer_authority,
            deposit_reserves,
        ),
    )


def withdraw_exact(
    amount: int,
    source_collateral: Pubkey,
    destination_collateral: Pubkey,
    withdraw_reserve: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    destination_liquidity: Pubkey,
    reserve_collateral_mint: Pubkey,
    reserve_liquidity_supply: Pubkey,
    obligation_owner: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
    deposit_reserves: list[Pubkey],
) -> Instruction:
    """Amount is in liquidity units: withdraw exactly this many tokens."""
    return Instruction(
        program_id,
        _data(LendingInstruction.WITHDRAW_EXACT, amount),
        _withdraw_and_redeem_accounts(
            source_collateral, destination_collateral, withdraw_reserve,
            obligation, lending_market, lending_market_authority,
            destination_liquidity, reserve_collateral_mint,
            reserve_liquidity_supply, obligation_owner, transfer_authority,
            deposit_reserves,
        ),
    )


def liquidate_obligation_and_redeem_reserve_collateral(
    amount: int,
    source_liquidity: Pubkey,
    destination_collateral: Pubkey,
    destination_liquidity: Pubkey,
    repay_reserve: Pubkey,
    repay_reserve_liquidity_supply: Pubkey,
    withdraw_reserve: Pubkey,
    withdraw_reserve_collateral_mint: Pubkey,
    withdraw_reserve_collateral_supply: Pubkey,
    withdraw_reserve_liquidity_supply: Pubkey,
    withdraw_reserve_fee_receiver: Pubkey,
    obligation: Pubkey,
    lending_market: Pubkey,
    lending_market_authority: Pubkey,
    transfer_authority: Pubkey,
    program_id: Pubkey,
) -> Instruction:
    return Instruction(
        program_id,
        _data(
            LendingInstruction.LIQUIDATE_OBLIGATION_AND_REDEEM_RESERVE_COLLATERAL,
            amount,
        ),
        [
            _w(source_liquidity),
            _w(destination_collateral),
            _w(destination_liquidity),
            _w(repay_reserve),
            _w(repay_reserve_liquidity_supply),
            _w(withdraw_reserve),
            _w(withdraw_reserve_collateral_mint),
            _w(withdraw_reserve_collateral_supply),
            _w(withdraw_reserve_liquidity_supply),
            _w(withdraw_reserve_fee_receiver),
            _w(obligation),
            _r(lending_market),
            _r(lending_market_authority),
            _s(transfer_authority),
            _r(TOKEN_PROGRAM_ID),
        ],
    )
