"""feeburn.ledger.types

Immutable value snapshots derived from chain history.

This module defines:
  - chain inputs: Block, Transaction, TokenTransfer, ElectionReward, EpochRewardRecord
  - registry records: GovernanceEvent, ContractDeployment
  - fee distribution results: Distribution (tagged by Regime) and Unknown
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from feeburn.ledger.constants import ElectionRewardType

Json = Dict[str, Any]


def _coerce_decimal(v: Any, *, field: str) -> Decimal:
    # bool is an int subclass; disallow it explicitly
    if isinstance(v, bool):
        raise ValueError(f"field '{field}' must be decimal-coercible (got bool)")
    if isinstance(v, Decimal):
        return v
    if isinstance(v, float):
        # Go through repr so 0.1 stays 0.1 rather than its binary expansion.
        return Decimal(repr(v))
    try:
        return Decimal(str(v).strip())
    except Exception as e:
        raise ValueError(f"field '{field}' must be decimal-coercible (got {type(v).__name__})") from e


@dataclass(frozen=True, slots=True)
class Transaction:
    hash: str
    gas_used: int = 0
    gas_token_contract_address: Optional[str] = None
    # Rendered-ready token metadata; None when not loaded from the token table.
    gas_token: Optional[Json] = None


@dataclass(frozen=True, slots=True)
class Block:
    number: int
    hash: str = ""
    base_fee_per_gas: Optional[Decimal] = None
    transactions: Tuple[Transaction, ...] = ()

    def __post_init__(self) -> None:
        if isinstance(self.number, bool) or int(self.number) < 0:
            raise ValueError(f"block number must be a non-negative int (got {self.number!r})")
        if self.base_fee_per_gas is not None and not isinstance(self.base_fee_per_gas, Decimal):
            object.__setattr__(
                self, "base_fee_per_gas", _coerce_decimal(self.base_fee_per_gas, field="base_fee_per_gas")
            )
        if not isinstance(self.transactions, tuple):
            object.__setattr__(self, "transactions", tuple(self.transactions))


@dataclass(frozen=True, slots=True)
class TokenTransfer:
    transaction_hash: str
    log_index: int
    block_number: int
    block_hash: str
    from_address: str
    to_address: str
    token_contract_address: str
    amount: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", _coerce_decimal(self.amount, field="amount"))


@dataclass(frozen=True, slots=True)
class ElectionReward:
    amount: Decimal
    account_address: str
    associated_account_address: str
    type: ElectionRewardType
    # None while the reward is pending (not yet settled at an epoch block).
    block_number: Optional[int] = None
    block_hash: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", _coerce_decimal(self.amount, field="amount"))
        if not isinstance(self.type, ElectionRewardType):
            object.__setattr__(self, "type", ElectionRewardType(str(self.type)))


@dataclass(frozen=True, slots=True)
class EpochRewardRecord:
    block_number: int
    block_hash: str = ""
    reserve_bolster_transfer: Optional[TokenTransfer] = None
    community_transfer: Optional[TokenTransfer] = None
    carbon_offsetting_transfer: Optional[TokenTransfer] = None


@dataclass(frozen=True, slots=True)
class GovernanceEvent:
    contract: str
    kind: str
    block_height: int
    payload: Json = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ContractDeployment:
    """Address of a logical contract from `block_height` onwards.

    address=None marks a range where the contract is not deployed.
    """

    logical_name: str
    block_height: int
    address: Optional[str]


class Regime(str, Enum):
    FEE_HANDLER = "fee_handler"
    GOVERNANCE = "governance"


@dataclass(frozen=True, slots=True)
class BreakdownEntry:
    address: str
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True, slots=True)
class Distribution:
    """A determined disposition of a block's base fee.

    An empty breakdown means the recipient retained the whole amount.
    """

    regime: Regime
    recipient: str
    total_amount: Decimal
    breakdown: Tuple[BreakdownEntry, ...] = ()

    def addresses(self) -> Tuple[str, ...]:
        out = [self.recipient]
        for e in self.breakdown:
            if e.address not in out:
                out.append(e.address)
        return tuple(out)


@dataclass(frozen=True, slots=True)
class Unknown:
    """Base-fee disposition could not be determined from protocol state."""

    height: int


FeeDistribution = Union[Distribution, Unknown]
