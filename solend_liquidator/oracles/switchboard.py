"""Switchboard on-demand pull feeds and the Crossbar update service."""
from __future__ import annotations

import base64
import logging
import ssl
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import aiohttp
import certifi
from construct import BytesInteger, ConstructError, Int8ul, Int64sl, Pointer, Struct
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..config import SwitchboardConfig
from ..errors import OracleResolutionError
from ..models import PriceQuote

logger = logging.getLogger(__name__)

SWITCHBOARD_PRECISION = 18

PullFeedLayout = Struct(
    "min_sample_size" / Pointer(2215, Int8ul),
    "last_update_timestamp" / Pointer(2216, Int64sl),
    "result_value" / Pointer(2264, BytesInteger(16, signed=True, swapped=True)),
)


@dataclass(frozen=True)
class PullFeedState:
    min_sample_size: int
    last_update_timestamp: int
    value: Decimal


def decode_pull_feed(data: bytes) -> PullFeedState:
    try:
        raw = PullFeedLayout.parse(data)
    except ConstructError as e:
        raise OracleResolutionError(f"Unable to decode Switchboard pull feed: {e}") from e
    return PullFeedState(
        min_sample_size=raw.min_sample_size,
        last_update_timestamp=raw.last_update_timestamp,
        value=Decimal(raw.result_value).scaleb(-SWITCHBOARD_PRECISION),
    )


def decode_pull_feed_quote(
    data: bytes, now: float, staleness_threshold: int
) -> PriceQuote:
    feed = decode_pull_feed(data)
    return PriceQuote(
        price=feed.value,
        publish_time=feed.last_update_timestamp,
        stale=now - feed.last_update_timestamp > staleness_threshold,
    )


def _instruction_data(raw) -> bytes:
    # Buffers arrive either base64 encoded or as Node's {"type": "Buffer"} JSON.
    if isinstance(raw, str):
        return base64.b64decode(raw)
    if isinstance(raw, dict):
        return bytes(raw["data"])
    return bytes(raw)


def parse_instruction(raw: dict[str, Any]) -> Instruction:
    """Build an Instruction from its JSON form (programId, keys, data)."""
    try:
        accounts = [
            AccountMeta(
                pubkey=Pubkey.from_string(key["pubkey"]),
                is_signer=bool(key["isSigner"]),
                is_writable=bool(key["isWritable"]),
            )
            for key in raw["keys"]
        ]
        return Instruction(
            Pubkey.from_string(raw["programId"]), _instruction_data(raw["data"]), accounts
        )
    except (KeyError, TypeError, ValueError) as e:
        raise OracleResolutionError(f"Malformed update instruction: {e}") from e


class CrossbarClient:
    """Fetch pull-feed update instructions from a Switchboard Crossbar server."""

    def __init__(self, config: SwitchboardConfig) -> None:
        self.crossbar_url = config.crossbar_url.rstrip("/")
        self.network = config.network

    async def fetch_update_instructions(
        self, feeds: list[Pubkey], num_signatures: int, payer: Pubkey
    ) -> tuple[list[Instruction], list[Pubkey]]:
        """Signed update instructions for ``feeds`` and their lookup tables.

        Raises:
            OracleResolutionError: Crossbar unreachable, answered non-200 or
                returned no usable instruction.
        """
        if not feeds:
            return [], []

        url = (
            f"{self.crossbar_url}/updates/solana/{self.network}/"
            f"{','.join(str(feed) for feed in feeds)}"
        )
        params = {"payer": str(payer), "numSignatures": str(num_signatures)}

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url, params=params) as response:
                    if response.status != 200:
                        raise OracleResolutionError(
                            f"Crossbar returned HTTP {response.status}"
                        )
                    payload = await response.json()
        except aiohttp.ClientError as e:
            raise OracleResolutionError(f"Error fetching pull feed updates: {e}") from e

        instructions: list[Instruction] = []
        lookup_tables: list[Pubkey] = []
        for entry in payload if isinstance(payload, list) else [payload]:
            if not entry.get("success", True):
                raise OracleResolutionError(
                    f"Crossbar could not update feeds: {entry.get('responses')}"
                )
            instructions.extend(parse_instruction(raw) for raw in entry.get("pullIxns", []))
            for table in entry.get("lookupTables", []):
                try:
                    key = Pubkey.from_string(table)
                except ValueError as e:
                    raise OracleResolutionError(f"Malformed lookup table {table}: {e}") from e
                if key not in lookup_tables:
                    lookup_tables.append(key)

        if not instructions:
            raise OracleResolutionError("Crossbar returned no update instruction")
        logger.info(
            "Fetched %d pull feed update instruction(s) for %d feed(s)",
            len(instructions),
            len(feeds),
        )
        return instructions, lookup_tables
