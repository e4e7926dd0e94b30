# src/feeburn/ledger/constants.py
from __future__ import annotations

"""Protocol constants for base-fee disposition and epoch rewards.

Anchors (Celo L1):
- FixidityLib fractions use an implicit scale of 10^24
- FeeHandler burns to a fixed, unspendable address
- Epochs are 17,280 blocks (one day at 5s blocks)
"""

from enum import Enum

# FixidityLib fixed-point scale: raw / 10^24
FIXIDITY_DIGITS: int = 24
FIXIDITY_SCALE: int = 10**FIXIDITY_DIGITS

# Working precision for fee arithmetic. A 10^24-scaled fraction times an
# 18-decimal amount with up to 54 integer digits stays exact.
DECIMAL_PRECISION: int = 96

BURN_ADDRESS: str = "0x000000000000000000000000000000000000d008"

BLOCKS_PER_EPOCH: int = 17_280


class CoreContract(str, Enum):
    """Logical names of the core contracts tracked by the registry."""

    FEE_HANDLER = "FeeHandler"
    GOVERNANCE = "Governance"


class CoreContractEvent(str, Enum):
    FEE_BENEFICIARY_SET = "FeeBeneficiarySet"
    BURN_FRACTION_SET = "BurnFractionSet"


class ElectionRewardType(str, Enum):
    VOTER = "voter"
    VALIDATOR = "validator"
    GROUP = "group"
    DELEGATED_PAYMENT = "delegated_payment"


# Named token transfers settled at each epoch block, in render order.
EPOCH_TRANSFER_SLOTS = (
    "reserve_bolster_transfer",
    "community_transfer",
    "carbon_offsetting_transfer",
)
