# src/feeburn/runtime/epoch_rewards.py
from __future__ import annotations

import logging
from decimal import Decimal, localcontext
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Union

from feeburn.ledger.constants import BLOCKS_PER_EPOCH, DECIMAL_PRECISION, EPOCH_TRANSFER_SLOTS, ElectionRewardType
from feeburn.ledger.types import EpochRewardRecord, TokenTransfer
from feeburn.runtime.errors import StoreError
from feeburn.runtime.structured_logging import log_event

Json = Dict[str, Any]

RewardTotals = Dict[ElectionRewardType, Decimal]
TokenTransferRenderer = Callable[[TokenTransfer], Any]

_logger = logging.getLogger("feeburn.epochs")


class RewardStore(Protocol):
    def fetch_election_reward_totals(self, height: int) -> Mapping[Union[str, ElectionRewardType], Decimal]: ...

    def fetch_epoch_reward_record(self, height: int) -> Optional[EpochRewardRecord]: ...


def is_epoch_block_number(number: int, blocks_per_epoch: int = BLOCKS_PER_EPOCH) -> bool:
    n = int(number)
    return n > 0 and n % int(blocks_per_epoch) == 0


def block_number_to_epoch_number(number: int, blocks_per_epoch: int = BLOCKS_PER_EPOCH) -> int:
    """Epoch containing the block; the epoch block itself closes its epoch."""
    n = int(number)
    if n <= 0:
        return 0
    return -(-n // int(blocks_per_epoch))


def token_transfer_to_json(tt: TokenTransfer) -> Json:
    return {
        "transaction_hash": tt.transaction_hash,
        "log_index": int(tt.log_index),
        "block_number": int(tt.block_number),
        "block_hash": tt.block_hash,
        "from": {"hash": tt.from_address},
        "to": {"hash": tt.to_address},
        "token": {"address": tt.token_contract_address},
        "total": {"value": str(tt.amount)},
    }


def _reward_type(key: Union[str, ElectionRewardType]) -> ElectionRewardType:
    if isinstance(key, ElectionRewardType):
        return key
    try:
        return ElectionRewardType(str(key).strip().lower())
    except ValueError as e:
        raise StoreError("unknown_reward_type", "reward type outside the protocol set", {"type": str(key)}) from e


def zero_fill_election_reward_totals(
    sparse: Mapping[Union[str, ElectionRewardType], Any],
) -> RewardTotals:
    """Dense totals: every ElectionRewardType present, missing ones 0."""
    out: RewardTotals = {t: Decimal(0) for t in ElectionRewardType}
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        for key, amount in (sparse or {}).items():
            t = _reward_type(key)
            out[t] = out[t] + Decimal(amount)
    return out


def aggregate_epoch_transfers(
    record: Optional[EpochRewardRecord],
    render_token_transfer: TokenTransferRenderer = token_transfer_to_json,
) -> Optional[Dict[str, Any]]:
    """Fixed three-slot view of an epoch's token transfers.

    A missing record yields None for the whole result; a missing transfer
    yields None for its slot only.
    """
    if record is None:
        return None

    out: Dict[str, Any] = {}
    for slot in EPOCH_TRANSFER_SLOTS:
        tt = getattr(record, slot)
        out[slot] = render_token_transfer(tt) if tt is not None else None
    return out


class EpochRewardAggregator:
    def __init__(
        self,
        store: RewardStore,
        *,
        blocks_per_epoch: int = BLOCKS_PER_EPOCH,
        render_token_transfer: TokenTransferRenderer = token_transfer_to_json,
    ) -> None:
        if int(blocks_per_epoch) <= 0:
            raise ValueError(f"blocks_per_epoch must be > 0; got: {blocks_per_epoch}")
        self._store = store
        self._blocks_per_epoch = int(blocks_per_epoch)
        self._render = render_token_transfer

    @property
    def blocks_per_epoch(self) -> int:
        return self._blocks_per_epoch

    def is_epoch_block(self, height: int) -> bool:
        return is_epoch_block_number(height, self._blocks_per_epoch)

    def epoch_number(self, height: int) -> int:
        return block_number_to_epoch_number(height, self._blocks_per_epoch)

    def aggregate_election_reward_totals(self, height: int) -> Optional[RewardTotals]:
        """Dense per-type totals at an epoch block; None for any other height."""
        if not self.is_epoch_block(height):
            return None
        sparse = self._store.fetch_election_reward_totals(int(height))
        totals = zero_fill_election_reward_totals(sparse)
        log_event(
            _logger,
            "election_reward_totals",
            level=logging.DEBUG,
            height=int(height),
            types_present=sorted(str(_reward_type(k).value) for k in (sparse or {})),
        )
        return totals

    def aggregate_epoch_transfers(self, record: Optional[EpochRewardRecord]) -> Optional[Dict[str, Any]]:
        return aggregate_epoch_transfers(record, self._render)

    def epoch_transfers_at(self, height: int) -> Optional[Dict[str, Any]]:
        return self.aggregate_epoch_transfers(self._store.fetch_epoch_reward_record(int(height)))
