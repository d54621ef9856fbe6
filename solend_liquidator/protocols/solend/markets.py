"""Pure parsing of Solend market configs (API or YAML format)."""
from __future__ import annotations

from typing import Any

from solders.pubkey import Pubkey

from ...models import Pool, Reserve


def _key(value: str | None) -> Pubkey | None:
    if not value:
        return None
    return Pubkey.from_string(value)


def parse_reserve(raw: dict[str, Any]) -> Reserve:
    """Parse one reserve entry of a market config.

    Accepts the camelCase shape served by the Solend markets API, e.g.::

        {"address": ..., "liquidityToken": {"mint": ..., "symbol": ..., "decimals": 6},
         "collateralMintAddress": ..., "collateralSupplyAddress": ...,
         "liquidityAddress": ..., "liquidityFeeReceiverAddress": ...,
         "pythOracle": ..., "switchboardOracle": ..., "extraOracle": ...}
    """
    token = raw.get("liquidityToken", {})
    try:
        return Reserve(
            address=Pubkey.from_string(raw["address"]),
            symbol=token.get("symbol", ""),
            mint_address=Pubkey.from_string(token["mint"]),
            decimals=int(token.get("decimals", 0)),
            collateral_mint_address=Pubkey.from_string(raw["collateralMintAddress"]),
            collateral_supply_address=Pubkey.from_string(raw["collateralSupplyAddress"]),
            liquidity_address=Pubkey.from_string(raw["liquidityAddress"]),
            liquidity_fee_receiver_address=Pubkey.from_string(
                raw["liquidityFeeReceiverAddress"]
            ),
            pyth_oracle=Pubkey.from_string(raw["pythOracle"]),
            switchboard_oracle=Pubkey.from_string(raw["switchboardOracle"]),
            extra_oracle=_key(raw.get("extraOracle")),
        )
    except KeyError as e:
        raise ValueError(
            f"Reserve {raw.get('address', '?')} is missing field {e}"
        ) from e


def parse_market(raw: dict[str, Any]) -> Pool:
    """Parse one market config into a :class:`Pool`."""
    try:
        address = Pubkey.from_string(raw["address"])
        authority = Pubkey.from_string(raw["authorityAddress"])
    except KeyError as e:
        raise ValueError(f"Market config is missing field {e}") from e

    owner = _key(raw.get("owner")) or authority
    return Pool(
        name=raw.get("name") or str(address),
        address=address,
        authority_address=authority,
        owner=owner,
        reserves=tuple(parse_reserve(r) for r in raw.get("reserves", [])),
    )


def parse_markets(
    raw_markets: list[dict[str, Any]], names: tuple[str, ...] = ()
) -> list[Pool]:
    """Parse a list of market configs, optionally keeping only ``names``.

    The name filter is case-insensitive and also matches market addresses.
    """
    wanted = {n.lower() for n in names}
    pools: list[Pool] = []
    for raw in raw_markets:
        if raw.get("hidden"):
            continue
        pool = parse_market(raw)
        if wanted and pool.name.lower() not in wanted and str(pool.address).lower() not in wanted:
            continue
        pools.append(pool)
    return pools
