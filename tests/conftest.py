"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock

import pytest
from solders.pubkey import Pubkey
from spl.token.constants import WRAPPED_SOL_MINT

from solend_liquidator.config import (
    AppConfig,
    ChainConfig,
    LiquidatorConfig,
    MarketsConfig,
    NotificationsConfig,
    PythConfig,
    TelegramConfig,
    WalletConfig,
)
from solend_liquidator.constants import OBLIGATION_SIZE, RESERVE_SIZE, WAD
from solend_liquidator.models import (
    Obligation,
    ObligationCollateral,
    ObligationLiquidity,
    Pool,
    Reserve,
    ReserveState,
)
from solend_liquidator.protocols.solend.layouts import ObligationLayout, ReserveLayout


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_app_config(sample_chain_config: ChainConfig) -> AppConfig:
    return AppConfig(
        liquidator=LiquidatorConfig(
            environment="production",
            max_attempts_per_obligation=5,
        ),
        chain=sample_chain_config,
        wallet=WalletConfig(keypair_path="", keypair_env="TEST_KEYPAIR"),
        markets=MarketsConfig(),
        pyth=PythConfig(hermes_url="https://hermes.example.com"),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(enabled=True, bot_token="fake-token", chat_id="12345"),
        ),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    liquidator:
      environment: production
      throttle_ms: 250
      max_attempts_per_obligation: 7
      dry_run: false
    chain:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    wallet:
      keypair_path: /tmp/keypair.json
    markets:
      source: api
      names: [main]
    pyth:
      hermes_url: "https://hermes.example.com"
    notifications:
      telegram:
        enabled: true
        bot_token: "tok"
        chat_id: 999
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Market fixtures
# ---------------------------------------------------------------------------


def _reserve(symbol: str, mint: Pubkey | None = None, decimals: int = 6) -> Reserve:
    return Reserve(
        address=Pubkey.new_unique(),
        symbol=symbol,
        mint_address=mint or Pubkey.new_unique(),
        decimals=decimals,
        collateral_mint_address=Pubkey.new_unique(),
        collateral_supply_address=Pubkey.new_unique(),
        liquidity_address=Pubkey.new_unique(),
        liquidity_fee_receiver_address=Pubkey.new_unique(),
        pyth_oracle=Pubkey.new_unique(),
        switchboard_oracle=Pubkey.new_unique(),
    )


@pytest.fixture()
def make_reserve() -> Callable[..., Reserve]:
    return _reserve


@pytest.fixture()
def usdc_reserve() -> Reserve:
    return _reserve("USDC")


@pytest.fixture()
def sol_reserve() -> Reserve:
    return _reserve("SOL", mint=WRAPPED_SOL_MINT, decimals=9)


@pytest.fixture()
def sample_pool(usdc_reserve: Reserve, sol_reserve: Reserve) -> Pool:
    authority = Pubkey.new_unique()
    return Pool(
        name="main",
        address=Pubkey.new_unique(),
        authority_address=authority,
        owner=Pubkey.new_unique(),
        reserves=(usdc_reserve, sol_reserve),
    )


@pytest.fixture()
def sample_market_config(sample_pool: Pool) -> dict:
    """The pool above in the markets API shape."""
    return {
        "name": sample_pool.name,
        "address": str(sample_pool.address),
        "authorityAddress": str(sample_pool.authority_address),
        "owner": str(sample_pool.owner),
        "reserves": [
            {
                "address": str(r.address),
                "liquidityToken": {
                    "mint": str(r.mint_address),
                    "symbol": r.symbol,
                    "decimals": r.decimals,
                },
                "collateralMintAddress": str(r.collateral_mint_address),
                "collateralSupplyAddress": str(r.collateral_supply_address),
                "liquidityAddress": str(r.liquidity_address),
                "liquidityFeeReceiverAddress": str(r.liquidity_fee_receiver_address),
                "pythOracle": str(r.pyth_oracle),
                "switchboardOracle": str(r.switchboard_oracle),
            }
            for r in sample_pool.reserves
        ],
    }


# ---------------------------------------------------------------------------
# On-chain state
# ---------------------------------------------------------------------------


def _obligation(
    deposits: list[tuple[Pubkey, int]] = (),
    borrows: list[tuple[Pubkey, int, int]] = (),
    owner: Pubkey | None = None,
    pubkey: Pubkey | None = None,
    lending_market: Pubkey | None = None,
) -> Obligation:
    """deposits: (reserve, amount); borrows: (reserve, amount_wads, rate_wads)."""
    return Obligation(
        pubkey=pubkey or Pubkey.new_unique(),
        version=1,
        last_update_slot=100,
        lending_market=lending_market or Pubkey.new_unique(),
        owner=owner or Pubkey.new_unique(),
        deposited_value=0,
        borrowed_value=0,
        allowed_borrow_value=0,
        unhealthy_borrow_value=0,
        deposits=tuple(
            ObligationCollateral(deposit_reserve=r, deposited_amount=a, market_value=0)
            for r, a in deposits
        ),
        borrows=tuple(
            ObligationLiquidity(
                borrow_reserve=r,
                cumulative_borrow_rate_wads=rate,
                borrowed_amount_wads=a,
                market_value=0,
            )
            for r, a, rate in borrows
        ),
    )


@pytest.fixture()
def make_obligation() -> Callable[..., Obligation]:
    return _obligation


def _obligation_bytes(obligation: Obligation, version: int | None = None) -> bytes:
    data = ObligationLayout.build(
        {
            "version": obligation.version if version is None else version,
            "last_update": {"slot": obligation.last_update_slot, "stale": 0},
            "lending_market": obligation.lending_market,
            "owner": obligation.owner,
            "deposited_value": obligation.deposited_value,
            "borrowed_value": obligation.borrowed_value,
            "allowed_borrow_value": obligation.allowed_borrow_value,
            "unhealthy_borrow_value": obligation.unhealthy_borrow_value,
            "borrowed_value_upper_bound": 0,
            "borrowing_isolated_asset": 0,
            "super_unhealthy_borrow_value": 0,
            "unweighted_borrowed_value": 0,
            "closeable": 0,
            "deposits_len": len(obligation.deposits),
            "borrows_len": len(obligation.borrows),
            "deposits": [
                {
                    "deposit_reserve": d.deposit_reserve,
                    "deposited_amount": d.deposited_amount,
                    "market_value": d.market_value,
                }
                for d in obligation.deposits
            ],
            "borrows": [
                {
                    "borrow_reserve": b.borrow_reserve,
                    "cumulative_borrow_rate_wads": b.cumulative_borrow_rate_wads,
                    "borrowed_amount_wads": b.borrowed_amount_wads,
                    "market_value": b.market_value,
                }
                for b in obligation.borrows
            ],
        }
    )
    assert len(data) <= OBLIGATION_SIZE
    return data + bytes(OBLIGATION_SIZE - len(data))


@pytest.fixture()
def obligation_bytes() -> Callable[..., bytes]:
    return _obligation_bytes


def _reserve_state(
    reserve: Reserve,
    lending_market: Pubkey | None = None,
    available_amount: int = 1_000_000,
    borrowed_amount_wads: int = 0,
    cumulative_borrow_rate_wads: int = WAD,
    collateral_mint_total_supply: int = 1_000_000,
    loan_to_value_ratio: int = 75,
    liquidation_threshold: int = 80,
) -> ReserveState:
    return ReserveState(
        pubkey=reserve.address,
        version=1,
        last_update_slot=100,
        lending_market=lending_market or Pubkey.new_unique(),
        liquidity_mint=reserve.mint_address,
        liquidity_mint_decimals=reserve.decimals,
        liquidity_supply=reserve.liquidity_address,
        pyth_oracle=reserve.pyth_oracle,
        switchboard_oracle=reserve.switchboard_oracle,
        available_amount=available_amount,
        borrowed_amount_wads=borrowed_amount_wads,
        cumulative_borrow_rate_wads=cumulative_borrow_rate_wads,
        market_price=0,
        collateral_mint=reserve.collateral_mint_address,
        collateral_mint_total_supply=collateral_mint_total_supply,
        collateral_supply=reserve.collateral_supply_address,
        loan_to_value_ratio=loan_to_value_ratio,
        liquidation_bonus=5,
        liquidation_threshold=liquidation_threshold,
        fee_receiver=reserve.liquidity_fee_receiver_address,
    )


@pytest.fixture()
def make_reserve_state() -> Callable[..., ReserveState]:
    return _reserve_state


def _reserve_bytes(state: ReserveState) -> bytes:
    data = ReserveLayout.build(
        {
            "version": state.version,
            "last_update": {"slot": state.last_update_slot, "stale": 0},
            "lending_market": state.lending_market,
            "liquidity": {
                "mint": state.liquidity_mint,
                "mint_decimals": state.liquidity_mint_decimals,
                "supply": state.liquidity_supply,
                "pyth_oracle": state.pyth_oracle,
                "switchboard_oracle": state.switchboard_oracle,
                "available_amount": state.available_amount,
                "borrowed_amount_wads": state.borrowed_amount_wads,
                "cumulative_borrow_rate_wads": state.cumulative_borrow_rate_wads,
                "market_price": state.market_price,
            },
            "collateral": {
                "mint": state.collateral_mint,
                "mint_total_supply": state.collateral_mint_total_supply,
                "supply": state.collateral_supply,
            },
            "config": {
                "optimal_utilization_rate": 80,
                "loan_to_value_ratio": state.loan_to_value_ratio,
                "liquidation_bonus": state.liquidation_bonus,
                "liquidation_threshold": state.liquidation_threshold,
                "min_borrow_rate": 0,
                "optimal_borrow_rate": 4,
                "max_borrow_rate": 30,
                "fees": {
                    "borrow_fee_wad": 0,
                    "flash_loan_fee_wad": 0,
                    "host_fee_percentage": 20,
                },
                "deposit_limit": 10**12,
                "borrow_limit": 10**12,
                "fee_receiver": state.fee_receiver,
                "protocol_liquidation_fee": 0,
                "protocol_take_rate": 0,
            },
            "accumulated_protocol_fees_wads": state.accumulated_protocol_fees_wads,
        }
    )
    return data + bytes(RESERVE_SIZE - len(data))


@pytest.fixture()
def reserve_bytes() -> Callable[[ReserveState], bytes]:
    return _reserve_bytes


# ---------------------------------------------------------------------------
# RPC
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_rpc() -> AsyncMock:
    """A chain client where nothing exists yet and rent is 2_039_280 lamports."""
    rpc = AsyncMock()
    rpc.get_account_info.return_value = None
    rpc.get_multiple_accounts.side_effect = lambda keys, *args: [None] * len(keys)
    rpc.get_minimum_balance_for_rent_exemption.return_value = 2_039_280
    return rpc
