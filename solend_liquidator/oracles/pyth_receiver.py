"""Pyth push-feed update transactions built from Hermes accumulator data.

Each accumulator update carries one Wormhole VAA plus a Merkle proof per price
message. The VAA is written into an encoded VAA account and verified against
the guardian set, every message is then posted to its sponsored price feed
and the VAA account is closed again.
"""
from __future__ import annotations

import hashlib
import logging

from construct import (
    Bytes,
    Const,
    ConstructError,
    GreedyBytes,
    Int8ub,
    Int8ul,
    Int16ub,
    Int16ul,
    Int32ul,
    Prefixed,
    PrefixedArray,
    Struct,
)
from solders.compute_budget import set_compute_unit_limit
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import (
    CreateAccountParams,
    TransferParams,
    create_account,
    transfer,
)
from solders.transaction import VersionedTransaction

from ..config import PythConfig
from ..constants import (
    PYTH_PUSH_ORACLE_PROGRAM_ID,
    PYTH_RECEIVER_PROGRAM_ID,
    WORMHOLE_RECEIVER_PROGRAM_ID,
)
from ..errors import OracleResolutionError
from ..interfaces.chain import ChainClient
from ..models import CompanionTransaction

logger = logging.getLogger(__name__)

PACKET_DATA_SIZE = 1232

# Encoded VAA account header: discriminator, status, write authority,
# version and the length prefix of the VAA buffer.
ENCODED_VAA_HEADER_SIZE = 46
# VAA bytes written together with the account creation.
VAA_SPLIT_INDEX = 755

INIT_ENCODED_VAA_COMPUTE_UNITS = 3_000
WRITE_ENCODED_VAA_COMPUTE_UNITS = 3_000
VERIFY_ENCODED_VAA_COMPUTE_UNITS = 350_000
CLOSE_ENCODED_VAA_COMPUTE_UNITS = 30_000
UPDATE_PRICE_FEED_COMPUTE_UNITS = 55_000
SYSTEM_COMPUTE_UNITS = 5_000

WORMHOLE_MERKLE_PROOF = 0

AccumulatorUpdate = Struct(
    "magic" / Const(b"PNAU"),
    "major_version" / Int8ub,
    "minor_version" / Int8ub,
    "trailing" / Prefixed(Int8ub, GreedyBytes),
    "proof_type" / Int8ub,
    "vaa" / Prefixed(Int16ub, GreedyBytes),
    "updates" / PrefixedArray(
        Int8ub,
        Struct(
            "message" / Prefixed(Int16ub, GreedyBytes),
            "proof" / PrefixedArray(Int8ub, Bytes(20)),
        ),
    ),
)

WriteEncodedVaaArgs = Struct(
    "index" / Int32ul,
    "data" / Prefixed(Int32ul, GreedyBytes),
)

UpdatePriceFeedArgs = Struct(
    "message" / Prefixed(Int32ul, GreedyBytes),
    "proof" / PrefixedArray(Int32ul, Bytes(20)),
    "treasury_id" / Int8ul,
    "shard_id" / Int16ul,
    "feed_id" / Bytes(32),
)


def anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def parse_accumulator_update(data: bytes):
    """Split a Hermes accumulator update into its VAA and price messages."""
    try:
        update = AccumulatorUpdate.parse(data)
    except ConstructError as e:
        raise OracleResolutionError(f"Unable to decode accumulator update: {e}") from e
    if update.major_version != 1:
        raise OracleResolutionError(
            f"Unsupported accumulator version {update.major_version}"
        )
    if update.proof_type != WORMHOLE_MERKLE_PROOF:
        raise OracleResolutionError(f"Unsupported proof type {update.proof_type}")
    return update


def guardian_set_index(vaa: bytes) -> int:
    return int.from_bytes(vaa[1:5], "big")


def message_feed_id(message: bytes) -> bytes:
    # Price feed messages start with a type byte followed by the feed id.
    return message[1:33]


def guardian_set_address(index: int) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [b"GuardianSet", index.to_bytes(4, "big")], WORMHOLE_RECEIVER_PROGRAM_ID
    )
    return address


def receiver_config_address() -> Pubkey:
    address, _ = Pubkey.find_program_address([b"config"], PYTH_RECEIVER_PROGRAM_ID)
    return address


def treasury_address(treasury_id: int) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [b"treasury", bytes([treasury_id])], PYTH_RECEIVER_PROGRAM_ID
    )
    return address


def price_feed_address(shard_id: int, feed_id: bytes) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [shard_id.to_bytes(2, "little"), feed_id], PYTH_PUSH_ORACLE_PROGRAM_ID
    )
    return address


# ---------------------------------------------------------------------------
# Instruction encoders
# ---------------------------------------------------------------------------


def init_encoded_vaa(write_authority: Pubkey, encoded_vaa: Pubkey) -> Instruction:
    return Instruction(
        WORMHOLE_RECEIVER_PROGRAM_ID,
        anchor_discriminator("init_encoded_vaa"),
        [
            AccountMeta(write_authority, is_signer=True, is_writable=False),
            AccountMeta(encoded_vaa, is_signer=False, is_writable=True),
        ],
    )


def write_encoded_vaa(
    write_authority: Pubkey, encoded_vaa: Pubkey, index: int, data: bytes
) -> Instruction:
    return Instruction(
        WORMHOLE_RECEIVER_PROGRAM_ID,
        anchor_discriminator("write_encoded_vaa")
        + WriteEncodedVaaArgs.build({"index": index, "data": data}),
        [
            AccountMeta(write_authority, is_signer=True, is_writable=False),
            AccountMeta(encoded_vaa, is_signer=False, is_writable=True),
        ],
    )


def verify_encoded_vaa(
    write_authority: Pubkey, encoded_vaa: Pubkey, guardian_set: Pubkey
) -> Instruction:
    return Instruction(
        WORMHOLE_RECEIVER_PROGRAM_ID,
        anchor_discriminator("verify_encoded_vaa_v1"),
        [
            AccountMeta(write_authority, is_signer=True, is_writable=False),
            AccountMeta(encoded_vaa, is_signer=False, is_writable=True),
            AccountMeta(guardian_set, is_signer=False, is_writable=False),
        ],
    )


def close_encoded_vaa(write_authority: Pubkey, encoded_vaa: Pubkey) -> Instruction:
    return Instruction(
        WORMHOLE_RECEIVER_PROGRAM_ID,
        anchor_discriminator("close_encoded_vaa"),
        [
            AccountMeta(write_authority, is_signer=True, is_writable=True),
            AccountMeta(encoded_vaa, is_signer=False, is_writable=True),
        ],
    )


def update_price_feed(
    payer: Pubkey,
    encoded_vaa: Pubkey,
    message: bytes,
    proof: list[bytes],
    shard_id: int,
    treasury_id: int,
) -> Instruction:
    feed_id = message_feed_id(message)
    data = anchor_discriminator("update_price_feed") + UpdatePriceFeedArgs.build(
        {
            "message": message,
            "proof": proof,
            "treasury_id": treasury_id,
            "shard_id": shard_id,
            "feed_id": feed_id,
        }
    )
    return Instruction(
        PYTH_PUSH_ORACLE_PROGRAM_ID,
        data,
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(PYTH_RECEIVER_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(encoded_vaa, is_signer=False, is_writable=False),
            AccountMeta(receiver_config_address(), is_signer=False, is_writable=False),
            AccountMeta(treasury_address(treasury_id), is_signer=False, is_writable=True),
            AccountMeta(
                price_feed_address(shard_id, feed_id), is_signer=False, is_writable=True
            ),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


# ---------------------------------------------------------------------------
# Transaction builder
# ---------------------------------------------------------------------------


class _Group:
    """Instructions bound for one transaction and the compute they need."""

    def __init__(self, signers: tuple[Keypair, ...] = ()) -> None:
        self.instructions: list[Instruction] = []
        self.units = 0
        self.signers = signers

    def add(self, instruction: Instruction, units: int) -> None:
        self.instructions.append(instruction)
        self.units += units


class PythPushUpdateBuilder:
    """Builds the companion transactions that post fresh prices to push feeds."""

    def __init__(
        self,
        rpc: ChainClient,
        config: PythConfig,
        tip_account: Pubkey | None = None,
    ) -> None:
        self._rpc = rpc
        self.shard_id = config.shard_id
        self.treasury_id = config.treasury_id
        self.tip_account = tip_account

    async def build(
        self,
        update_data: list[bytes],
        payer: Pubkey,
        tip_lamports: int | None,
    ) -> list[CompanionTransaction]:
        if not update_data:
            return []

        groups: list[_Group] = []
        for data in update_data:
            groups.extend(await self._post_update(parse_accumulator_update(data), payer))

        if tip_lamports and self.tip_account is not None:
            self._append(
                groups,
                transfer(
                    TransferParams(
                        from_pubkey=payer, to_pubkey=self.tip_account, lamports=tip_lamports
                    )
                ),
                SYSTEM_COMPUTE_UNITS,
                payer,
            )

        blockhash = await self._rpc.get_latest_blockhash()
        transactions = [
            CompanionTransaction(
                message=self._compile(payer, group, blockhash), signers=group.signers
            )
            for group in groups
        ]
        logger.info(
            "Built %d price update transaction(s) for %d accumulator update(s)",
            len(transactions),
            len(update_data),
        )
        return transactions

    async def _post_update(self, update, payer: Pubkey) -> list[_Group]:
        vaa = bytes(update.vaa)
        encoded_vaa = Keypair()
        space = ENCODED_VAA_HEADER_SIZE + len(vaa)
        lamports = await self._rpc.get_minimum_balance_for_rent_exemption(space)

        create = _Group(signers=(encoded_vaa,))
        create.add(
            create_account(
                CreateAccountParams(
                    from_pubkey=payer,
                    to_pubkey=encoded_vaa.pubkey(),
                    lamports=lamports,
                    space=space,
                    owner=WORMHOLE_RECEIVER_PROGRAM_ID,
                )
            ),
            SYSTEM_COMPUTE_UNITS,
        )
        create.add(
            init_encoded_vaa(payer, encoded_vaa.pubkey()), INIT_ENCODED_VAA_COMPUTE_UNITS
        )
        create.add(
            write_encoded_vaa(payer, encoded_vaa.pubkey(), 0, vaa[:VAA_SPLIT_INDEX]),
            WRITE_ENCODED_VAA_COMPUTE_UNITS,
        )

        verify = _Group()
        if len(vaa) > VAA_SPLIT_INDEX:
            verify.add(
                write_encoded_vaa(
                    payer, encoded_vaa.pubkey(), VAA_SPLIT_INDEX, vaa[VAA_SPLIT_INDEX:]
                ),
                WRITE_ENCODED_VAA_COMPUTE_UNITS,
            )
        verify.add(
            verify_encoded_vaa(
                payer, encoded_vaa.pubkey(), guardian_set_address(guardian_set_index(vaa))
            ),
            VERIFY_ENCODED_VAA_COMPUTE_UNITS,
        )

        groups = [create, verify]
        updates: list[_Group] = []
        for item in update.updates:
            self._append(
                updates,
                update_price_feed(
                    payer,
                    encoded_vaa.pubkey(),
                    bytes(item.message),
                    [bytes(p) for p in item.proof],
                    self.shard_id,
                    self.treasury_id,
                ),
                UPDATE_PRICE_FEED_COMPUTE_UNITS,
                payer,
            )
        groups.extend(updates)
        self._append(
            groups,
            close_encoded_vaa(payer, encoded_vaa.pubkey()),
            CLOSE_ENCODED_VAA_COMPUTE_UNITS,
            payer,
        )
        return groups

    def _append(
        self, groups: list[_Group], instruction: Instruction, units: int, payer: Pubkey
    ) -> None:
        """Add to the last group when the transaction still fits, else start one."""
        if groups:
            last = groups[-1]
            candidate = _Group(last.signers)
            candidate.instructions = last.instructions + [instruction]
            candidate.units = last.units + units
            if _transaction_size(payer, candidate) <= PACKET_DATA_SIZE:
                last.add(instruction, units)
                return
        group = _Group()
        group.add(instruction, units)
        groups.append(group)

    @staticmethod
    def _compile(payer: Pubkey, group: _Group, blockhash: Hash) -> MessageV0:
        return MessageV0.try_compile(
            payer,
            [set_compute_unit_limit(group.units), *group.instructions],
            [],
            blockhash,
        )


def _transaction_size(payer: Pubkey, group: _Group) -> int:
    message = PythPushUpdateBuilder._compile(payer, group, Hash.default())
    signatures = [Signature.default()] * message.header.num_required_signatures
    return len(bytes(VersionedTransaction.populate(message, signatures)))
