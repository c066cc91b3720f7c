"""
Project-wide immutable parameters for the ALPHA holder rewards program.

These values define the public rules of the draw and of the fee split.
Changing them changes eligibility or payouts and MUST be publicly announced.
"""

from decimal import Decimal

# Token mint (MAINNET)
TOKEN_MINT = "4eyM1uhJkMajFAWfHHmSMKq6geXaiVMi95yMcpABpump"

# Pump.fun tokens use 6 decimals
TOKEN_DECIMALS = 6

# Minimum balance to be recorded at all (raw units). Dust below this is dropped.
MIN_RAW_BALANCE = 1 * (10**TOKEN_DECIMALS)

# Wallet that receives creator fees
FEE_WALLET = "8Dibf82AXq5zN44ZwgLGrn22LYvebbiqSBEVBPaffetX"

# A fee claim must touch this program to count
FEE_SOURCE_PROGRAM = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"

LAMPORTS_PER_SOL = 1_000_000_000

# Tier thresholds (USD)
TIER_THRESHOLDS = {
    "Bronze": Decimal("10"),
    "Silver": Decimal("100"),
    "Gold": Decimal("1000"),
}

# One entry per this many USD held
ENTRY_UNIT_USD = Decimal("10")

MIN_ELIGIBLE_USD = Decimal("10")

# Paid membership multipliers
VIP_MULTIPLIERS = {
    "None": 1,
    "Silver": 2,
    "Gold": 3,
    "Platinum": 5,
}

# Fee split
REWARD_RATIO = Decimal("0.4")
BURN_RATIO = Decimal("0.3")
# Ops receives whatever reward and burn leave over.

# Fee monitor safety limits (lamports)
MAX_DAILY_REWARD = 5 * LAMPORTS_PER_SOL
MIN_REWARD_AMOUNT = LAMPORTS_PER_SOL // 100
MATCH_TOLERANCE = LAMPORTS_PER_SOL // 1000

# How many recent transactions to inspect when verifying a fee claim
HISTORY_WINDOW = 10

POLL_INTERVAL_S = 30.0

# Accounts that may never win (applied by SYSTEM)
SYSTEM_EXCLUDED_WALLETS = {
    "8Dibf82AXq5zN44ZwgLGrn22LYvebbiqSBEVBPaffetX": "Dev Wallet",
    "FKgbiugoUP6rRWvbE1vZeU71sFQKhL7ZGrkQQbr7PPnM": "Bonding Curve AMM",
    "FXoAHEeM7EhXGvU1tCVVU3Y3veZpeJMjznDXeBcdRLoC": "Bonding Curve AMM",
    "59n9Vmc3V9aSJF4yt3knctHDGbg5BSSDnsEzHRjgDGDb": "Locked Tokens Account",
}

SYSTEM_ACTOR = "SYSTEM"
