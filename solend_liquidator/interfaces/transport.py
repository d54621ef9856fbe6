"""Transaction sender protocol."""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from solders.keypair import Keypair

if TYPE_CHECKING:
    from ..actions.plan import ActionPlan


class TransactionSender(Protocol):
    """Abstract interface for submitting an action plan."""

    async def send_plan(self, plan: ActionPlan, payer: Keypair) -> str: ...
