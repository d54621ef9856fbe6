"""Address lookup table decoding and loading."""
from __future__ import annotations

import logging

from solders.address_lookup_table_account import (
    AddressLookupTable,
    AddressLookupTableAccount,
)
from solders.pubkey import Pubkey

from ...interfaces.chain import ChainClient

logger = logging.getLogger(__name__)


def decode_lookup_table(key: Pubkey, data: bytes) -> AddressLookupTableAccount:
    table = AddressLookupTable.deserialize(data)
    return AddressLookupTableAccount(key=key, addresses=table.addresses)


async def load_lookup_tables(
    rpc: ChainClient, keys: list[Pubkey]
) -> list[AddressLookupTableAccount]:
    """Fetch lookup tables in one batch; tables that do not exist are skipped."""
    if not keys:
        return []
    infos = await rpc.get_multiple_accounts(keys)
    tables: list[AddressLookupTableAccount] = []
    for key, info in zip(keys, infos):
        if info is None:
            logger.warning("Lookup table %s not found", key)
            continue
        tables.append(decode_lookup_table(key, info.data))
    return tables
