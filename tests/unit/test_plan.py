"""Unit tests for the five-bucket action plan."""
from __future__ import annotations

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from solend_liquidator.actions.plan import BUCKET_ORDER, ActionPlan, Bucket


def _ix(tag: int) -> Instruction:
    return Instruction(Pubkey.new_unique(), bytes([tag]), [])


class TestActionPlan:
    def test_instructions_follow_bucket_order(self) -> None:
        plan = ActionPlan()
        # Filled out of order on purpose.
        plan.add(Bucket.CLEANUP, _ix(5))
        plan.add(Bucket.LENDING, _ix(3))
        plan.add(Bucket.SETUP, _ix(1))
        plan.add(Bucket.POST, _ix(4))
        plan.add(Bucket.PRE, _ix(2))

        assert [bytes(i.data)[0] for i in plan.instructions()] == [1, 2, 3, 4, 5]

    def test_append_order_within_bucket(self) -> None:
        plan = ActionPlan()
        plan.add(Bucket.SETUP, _ix(1), _ix(2))
        plan.add(Bucket.SETUP, _ix(3))
        assert [bytes(i.data)[0] for i in plan.setup] == [1, 2, 3]

    def test_bucket_accepts_names(self) -> None:
        plan = ActionPlan()
        assert plan.bucket("pre") is plan.pre
        assert [b.value for b in BUCKET_ORDER] == [
            "setup", "pre", "lending", "post", "cleanup",
        ]

    def test_schedule_creation_once(self) -> None:
        plan = ActionPlan()
        address = Pubkey.new_unique()
        assert plan.schedule_creation(address) is True
        assert plan.schedule_creation(address) is False
        assert plan.is_scheduled(address)

    def test_merge_lookup_tables_dedupes(self) -> None:
        plan = ActionPlan()
        a, b = Pubkey.new_unique(), Pubkey.new_unique()
        plan.merge_lookup_tables([a])
        plan.merge_lookup_tables([a, b])
        assert plan.lookup_table_addresses == [a, b]
