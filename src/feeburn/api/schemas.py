from __future__ import annotations

"""Pydantic response schemas for block/epoch JSON extensions.

Amounts and percentages are Decimal; JSON-mode dumps render them as strings
so no precision is lost to floats.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

Json = Dict[str, Any]


class _OutModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def to_json(self) -> Json:
        return self.model_dump(mode="json")


class BaseFeeBreakdownItem(_OutModel):
    address: Json
    amount: Decimal
    percentage: Decimal


class BaseFeeOut(_OutModel):
    recipient: Json
    amount: Decimal = Field(..., description="Total base fee of the block")
    breakdown: List[BaseFeeBreakdownItem] = Field(default_factory=list)


class AggregatedElectionRewardsOut(_OutModel):
    voter: Decimal
    validator: Decimal
    group: Decimal
    delegated_payment: Decimal


class EpochDistributionsOut(_OutModel):
    reserve_bolster_transfer: Optional[Json] = None
    community_transfer: Optional[Json] = None
    carbon_offsetting_transfer: Optional[Json] = None


class PendingElectionRewardOut(_OutModel):
    amount: Decimal
    account: Json
    associated_account: Json


class ElectionRewardOut(PendingElectionRewardOut):
    block_number: int
    block_hash: Optional[str] = None
    epoch_number: int
    type: str
