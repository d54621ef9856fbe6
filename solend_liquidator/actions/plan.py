"""The five-bucket action plan."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..models import CompanionTransaction


class Bucket(str, Enum):
    SETUP = "setup"
    PRE = "pre"
    LENDING = "lending"
    POST = "post"
    CLEANUP = "cleanup"


BUCKET_ORDER: tuple[Bucket, ...] = (
    Bucket.SETUP,
    Bucket.PRE,
    Bucket.LENDING,
    Bucket.POST,
    Bucket.CLEANUP,
)


@dataclass
class ActionPlan:
    """Instructions for one action, grouped into ordered append-only buckets.

    ``setup`` holds account creation and refreshes, ``pre`` wrapping, funding
    and pull-oracle updates, ``lending`` the single action instruction,
    ``post`` unwrapping and ``cleanup`` teardown of what setup created.
    Buckets are only concatenated by :meth:`instructions`.
    """

    setup: list[Instruction] = field(default_factory=list)
    pre: list[Instruction] = field(default_factory=list)
    lending: list[Instruction] = field(default_factory=list)
    post: list[Instruction] = field(default_factory=list)
    cleanup: list[Instruction] = field(default_factory=list)
    companion_transactions: list[CompanionTransaction] = field(default_factory=list)
    lookup_table_addresses: list[Pubkey] = field(default_factory=list)
    tip_amount: int | None = None
    _scheduled: set[Pubkey] = field(default_factory=set, repr=False)

    def bucket(self, name: Bucket) -> list[Instruction]:
        return getattr(self, Bucket(name).value)

    def add(self, name: Bucket, *instructions: Instruction) -> None:
        self.bucket(name).extend(instructions)

    def instructions(self) -> list[Instruction]:
        """All instructions in execution order: setup, pre, lending, post, cleanup."""
        ordered: list[Instruction] = []
        for name in BUCKET_ORDER:
            ordered.extend(self.bucket(name))
        return ordered

    def schedule_creation(self, address: Pubkey) -> bool:
        """Record that ``address`` will be created by this plan.

        Returns False when it was already scheduled (the caller emits nothing).
        """
        if address in self._scheduled:
            return False
        self._scheduled.add(address)
        return True

    def is_scheduled(self, address: Pubkey) -> bool:
        return address in self._scheduled

    def merge_lookup_tables(self, addresses: list[Pubkey]) -> None:
        for address in addresses:
            if address not in self.lookup_table_addresses:
                self.lookup_table_addresses.append(address)
