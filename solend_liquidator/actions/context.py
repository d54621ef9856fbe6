"""Per-build context shared by the support resolvers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.pubkey import Pubkey

from ..constants import POSITION_LIMIT
from ..interfaces.chain import ChainClient
from ..models import ActionType, Obligation, Pool, Reserve
from ..protocols.solend.state import StateLoader
from .plan import Bucket

if TYPE_CHECKING:
    from ..oracles.refresh import OracleRefresher


@dataclass(frozen=True)
class ActionContext:
    """Everything the resolvers and the lending instruction need for one build."""

    action: ActionType
    pool: Pool
    reserve: Reserve
    amount: int
    owner: Pubkey
    program_id: Pubkey
    obligation_address: Pubkey
    seed: str
    obligation: Obligation | None
    positions: int
    user_token_account: Pubkey
    user_collateral_account: Pubkey
    existing_accounts: dict[Pubkey, bool] = field(default_factory=dict)
    position_limit: int = POSITION_LIMIT
    host_ata: Pubkey | None = None
    lookup_table: AddressLookupTableAccount | None = None
    repay_reserve: Reserve | None = None
    user_repay_token_account: Pubkey | None = None
    user_repay_collateral_account: Pubkey | None = None
    wrapped_mint: Pubkey | None = None
    wrapped_ata: Pubkey | None = None
    wrapper_program_id: Pubkey | None = None
    tip_amount: int | None = None

    @property
    def deposit_reserves(self) -> list[Pubkey]:
        return self.obligation.deposit_reserves if self.obligation else []

    @property
    def borrow_reserves(self) -> list[Pubkey]:
        return self.obligation.borrow_reserves if self.obligation else []

    @property
    def full_position_route(self) -> bool:
        """Account creation moves from setup/cleanup to pre/post.

        Only when the obligation sits exactly at the position limit, a host
        referral account is set and no lookup table was supplied.
        """
        return (
            self.positions == self.position_limit
            and self.host_ata is not None
            and self.lookup_table is None
        )

    @property
    def creation_bucket(self) -> Bucket:
        return Bucket.PRE if self.full_position_route else Bucket.SETUP

    @property
    def teardown_bucket(self) -> Bucket:
        return Bucket.POST if self.full_position_route else Bucket.CLEANUP

    def exists(self, address: Pubkey) -> bool:
        return self.existing_accounts.get(address, False)


@dataclass
class SupportDeps:
    """I/O collaborators the resolvers may call."""

    rpc: ChainClient
    state: StateLoader
    refresher: OracleRefresher | None = None
