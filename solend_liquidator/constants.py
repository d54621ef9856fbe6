"""Protocol constants shared by the action builder and the liquidation engine."""
from __future__ import annotations

from solders.pubkey import Pubkey

WAD = 10**18
U64_MAX = 2**64 - 1

# Distinct deposit + borrow reserves one obligation may reference.
POSITION_LIMIT = 6

OBLIGATION_SIZE = 1300
RESERVE_SIZE = 619
TOKEN_ACCOUNT_SIZE = 165

# Absorbs interest accrued between reading a reserve and executing a full repay.
SOL_PADDING_FOR_INTEREST = 1_000_000

PRICE_STALENESS_THRESHOLD_SECONDS = 30

PULL_ORACLE_COMPUTE_UNIT_PRICE = 1_000_000
PULL_ORACLE_COMPUTE_UNIT_LIMIT = 1_000_000

DEFAULT_TIP_LAMPORTS = 1000

NULL_ORACLE = Pubkey.from_string("nu11111111111111111111111111111111111111111")

PROGRAM_IDS: dict[str, Pubkey] = {
    "production": Pubkey.from_string("So1endDq2YkqhipRh3WViPa8hdiSpxWy6z3Z6tMCpAo"),
    "beta": Pubkey.from_string("BLendhFh4HGnycEDDFhbeFEUYLP4fXB5tTHMoTX8Dch5"),
    "devnet": Pubkey.from_string("ALend7Ketfx5bxh6ghsCDXAoDrhvEmsXT3cynB6aPLgx"),
}

# Legacy Pyth price accounts.
PYTH_ORACLE_PROGRAM_ID = Pubkey.from_string("FsJ3A3u2vn5cTVofAjvy6y5kwABJAqYWpe4975bi2epH")
PYTH_RECEIVER_PROGRAM_ID = Pubkey.from_string("rec5EKMGg6MxZYaMdyBfgwp4d5rB9T1VQH5pJv5LtFJ")
PYTH_PUSH_ORACLE_PROGRAM_ID = Pubkey.from_string(
    "pythWSnswVUd12oZpeFP8e9CVaEqJg25g1Vtc2biRsT"
)
# Wormhole core bridge instance the Pyth receiver verifies VAAs against.
WORMHOLE_RECEIVER_PROGRAM_ID = Pubkey.from_string(
    "HDwcJBJXjL9FpJ7UBsYBtaDjsBUhuLCUYoz3zr8SWWaQ"
)
SWITCHBOARD_ON_DEMAND_PROGRAM_ID = Pubkey.from_string(
    "SBondMDrcV3K4kxZR1HNVT7osZxAHVHgYXL5Ze1oMUv"
)
SWITCHBOARD_CROSSBAR_URL = "https://crossbar.save.finance"


def get_program_id(environment: str) -> Pubkey:
    """Map an environment name to the lending program address."""
    try:
        return PROGRAM_IDS[environment]
    except KeyError:
        raise ValueError(f"Unknown environment '{environment}'") from None
