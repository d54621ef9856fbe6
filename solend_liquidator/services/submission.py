"""Compile, sign, send and confirm action plans."""
from __future__ import annotations

import asyncio
import logging
import time

from solders.compute_budget import set_compute_unit_price
from solders.errors import BincodeError, SignerError
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from ..actions.plan import ActionPlan
from ..chains.solana.lookup_tables import load_lookup_tables
from ..errors import SubmissionError
from ..interfaces.chain import ChainClient
from ..models import CompanionTransaction

logger = logging.getLogger(__name__)

# Maximum serialized transaction size accepted by the cluster.
PACKET_DATA_SIZE = 1232

_CONFIRMED = ("confirmed", "finalized")


class SolanaTransactionSender:
    """Sends a plan's companion transactions, then its instructions.

    Instructions go out as one v0 transaction when they fit; otherwise setup,
    the pre/lending/post core and cleanup are sent as consecutive
    transactions, each confirmed before the next.
    """

    def __init__(
        self,
        rpc: ChainClient,
        compute_unit_price: int = 0,
        tip_account: Pubkey | None = None,
        confirm_timeout: float = 60.0,
        poll_interval: float = 1.0,
    ) -> None:
        self._rpc = rpc
        self.compute_unit_price = compute_unit_price
        self.tip_account = tip_account
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval

    async def send_plan(self, plan: ActionPlan, payer: Keypair) -> str:
        """Submit ``plan`` and return the signature of the lending transaction."""
        try:
            for companion in plan.companion_transactions:
                await self._send_companion(companion, payer)

            tables = await load_lookup_tables(self._rpc, plan.lookup_table_addresses)
            blockhash = await self._rpc.get_latest_blockhash()

            instructions = self._wrap(plan.instructions(), plan, payer.pubkey())
            single = self._compile(payer, instructions, tables, blockhash)
            if single is not None:
                return await self._send_and_confirm(single)

            signature = ""
            groups = (plan.setup, plan.pre + plan.lending + plan.post, plan.cleanup)
            for index, group in enumerate(groups):
                if not group:
                    continue
                instructions = (
                    self._wrap(group, plan, payer.pubkey()) if index == 1 else list(group)
                )
                tx = self._compile(payer, instructions, tables, blockhash)
                if tx is None:
                    raise SubmissionError("Transaction too large even after splitting")
                sig = await self._send_and_confirm(tx)
                if index == 1:
                    signature = sig
                blockhash = await self._rpc.get_latest_blockhash()
            return signature
        except SubmissionError:
            raise
        except (RuntimeError, ValueError, SignerError, BincodeError) as e:
            raise SubmissionError(f"Unable to submit transaction: {e}") from e

    def _wrap(
        self, instructions: list[Instruction], plan: ActionPlan, payer: Pubkey
    ) -> list[Instruction]:
        """Add the optional priority fee in front and the tip transfer at the end."""
        wrapped: list[Instruction] = []
        if self.compute_unit_price:
            wrapped.append(set_compute_unit_price(self.compute_unit_price))
        wrapped.extend(instructions)
        if plan.tip_amount and self.tip_account is not None:
            wrapped.append(
                transfer(
                    TransferParams(
                        from_pubkey=payer,
                        to_pubkey=self.tip_account,
                        lamports=plan.tip_amount,
                    )
                )
            )
        return wrapped

    def _compile(self, payer, instructions, tables, blockhash) -> VersionedTransaction | None:
        message = MessageV0.try_compile(payer.pubkey(), instructions, tables, blockhash)
        tx = VersionedTransaction(message, [payer])
        if len(bytes(tx)) > PACKET_DATA_SIZE:
            return None
        return tx

    async def _send_companion(self, companion: CompanionTransaction, payer: Keypair) -> None:
        signers: list[Keypair] = [payer]
        signers.extend(s for s in companion.signers if s.pubkey() != payer.pubkey())
        tx = VersionedTransaction(companion.message, signers)
        await self._send_and_confirm(tx)

    async def _send_and_confirm(self, tx: VersionedTransaction) -> str:
        signature = await self._rpc.send_transaction(bytes(tx))
        logger.info("Sent transaction %s", signature)

        deadline = time.monotonic() + self.confirm_timeout
        while time.monotonic() < deadline:
            statuses = await self._rpc.get_signature_statuses([signature])
            status = statuses[0] if statuses else None
            if status:
                if status.get("err"):
                    raise SubmissionError(
                        f"Transaction {signature} failed: {status['err']}"
                    )
                if status.get("confirmationStatus") in _CONFIRMED:
                    return signature
            await asyncio.sleep(self.poll_interval)

        raise SubmissionError(f"Transaction {signature} not confirmed in time")
