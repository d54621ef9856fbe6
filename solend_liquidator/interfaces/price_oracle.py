"""Price update protocols for on-demand oracle update builders."""
from typing import Protocol

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..models import CompanionTransaction


class PullOracleUpdater(Protocol):
    """Builds the update instructions for a set of pull-oracle feeds."""

    async def fetch_update_instructions(
        self, feeds: list[Pubkey], num_signatures: int, payer: Pubkey
    ) -> tuple[list[Instruction], list[Pubkey]]:
        """Return the update instructions and the lookup tables they need."""
        ...


class PriceUpdateTransactionBuilder(Protocol):
    """Turns push-oracle update data into signed-ready update transactions."""

    async def build(
        self,
        update_data: list[bytes],
        payer: Pubkey,
        tip_lamports: int | None,
    ) -> list[CompanionTransaction]: ...
