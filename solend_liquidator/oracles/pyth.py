"""Pyth Network price accounts and the Hermes update-data service."""
from __future__ import annotations

import base64
import logging
import ssl
from decimal import Decimal

import aiohttp
import certifi
from construct import (
    Bytes,
    ConstructError,
    If,
    Int8ul,
    Int32sl,
    Int32ul,
    Int64sl,
    Int64ul,
    Padding,
    Struct,
    this,
)

from ..config import PythConfig
from ..errors import OracleResolutionError
from ..models import PriceQuote

logger = logging.getLogger(__name__)

PYTH_MAGIC = 0xA1B2C3D4
PYTH_STATUS_TRADING = 1

# Legacy push price account: only the fields read here, at their fixed offsets.
PythPriceAccount = Struct(
    "magic" / Int32ul,
    "version" / Int32ul,
    "account_type" / Int32ul,
    "size" / Int32ul,
    "price_type" / Int32ul,
    "exponent" / Int32sl,
    Padding(72),
    "timestamp" / Int64sl,
    Padding(104),
    "agg_price" / Int64sl,
    "agg_conf" / Int64ul,
    "agg_status" / Int32ul,
)

# Receiver program PriceUpdateV2 (Anchor account).
PriceUpdateV2 = Struct(
    "discriminator" / Bytes(8),
    "write_authority" / Bytes(32),
    "verification_level" / Int8ul,
    "num_signatures" / If(this.verification_level == 0, Int8ul),
    "feed_id" / Bytes(32),
    "price" / Int64sl,
    "conf" / Int64ul,
    "exponent" / Int32sl,
    "publish_time" / Int64sl,
    "prev_publish_time" / Int64sl,
    "ema_price" / Int64sl,
    "ema_conf" / Int64ul,
    "posted_slot" / Int64ul,
)


def decode_pyth_price(data: bytes, now: float, staleness_threshold: int) -> PriceQuote:
    """Decode a legacy Pyth price account.

    Stale when the aggregate is not trading or older than the threshold.
    """
    try:
        raw = PythPriceAccount.parse(data)
    except ConstructError as e:
        raise OracleResolutionError(f"Unable to decode Pyth price account: {e}") from e
    if raw.magic != PYTH_MAGIC:
        raise OracleResolutionError("Not a Pyth price account")

    stale = (
        raw.agg_status != PYTH_STATUS_TRADING
        or now - raw.timestamp > staleness_threshold
    )
    return PriceQuote(
        price=Decimal(raw.agg_price).scaleb(raw.exponent),
        publish_time=raw.timestamp,
        stale=stale,
    )


def decode_price_update(data: bytes):
    """Parse a PriceUpdateV2 account into its construct container."""
    try:
        return PriceUpdateV2.parse(data)
    except ConstructError as e:
        raise OracleResolutionError(f"Unable to decode price update: {e}") from e


def decode_price_update_quote(
    data: bytes, now: float, staleness_threshold: int
) -> PriceQuote:
    raw = decode_price_update(data)
    return PriceQuote(
        price=Decimal(raw.price).scaleb(raw.exponent),
        publish_time=raw.publish_time,
        stale=now - raw.publish_time > staleness_threshold,
    )


def feed_id_hex(feed_id: bytes) -> str:
    return "0x" + feed_id.hex()


class HermesClient:
    """Fetch signed price update data from Pyth Hermes."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url.rstrip("/")

    async def fetch_update_data(self, feed_ids: list[str]) -> list[bytes]:
        """Latest update data (accumulator messages) for ``feed_ids``.

        Raises:
            OracleResolutionError: Hermes unreachable or answered non-200.
        """
        if not feed_ids:
            return []

        query_params = "&".join(f"ids[]={fid}" for fid in feed_ids)
        url = f"{self.hermes_url}/v2/updates/price/latest?{query_params}&encoding=base64"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise OracleResolutionError(
                            f"Hermes returned HTTP {response.status}"
                        )
                    payload = await response.json()
        except aiohttp.ClientError as e:
            raise OracleResolutionError(f"Error fetching price updates: {e}") from e

        data = payload.get("binary", {}).get("data", [])
        logger.info("Fetched %d price update(s) from Hermes", len(data))
        return [base64.b64decode(item) for item in data]
