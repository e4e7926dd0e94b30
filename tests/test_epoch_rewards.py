from __future__ import annotations

from decimal import Decimal
from typing import Dict, Optional

import pytest

from feeburn.ledger.constants import BLOCKS_PER_EPOCH, EPOCH_TRANSFER_SLOTS, ElectionRewardType
from feeburn.ledger.types import EpochRewardRecord, TokenTransfer
from feeburn.runtime.epoch_rewards import (
    EpochRewardAggregator,
    aggregate_epoch_transfers,
    block_number_to_epoch_number,
    is_epoch_block_number,
    token_transfer_to_json,
    zero_fill_election_reward_totals,
)
from feeburn.runtime.errors import StoreError


def _transfer(log_index: int, amount: str = "10") -> TokenTransfer:
    return TokenTransfer(
        transaction_hash="0xepoch",
        log_index=log_index,
        block_number=BLOCKS_PER_EPOCH,
        block_hash="0xblock",
        from_address="0x0000000000000000000000000000000000000000",
        to_address=f"0x{log_index:040x}",
        token_contract_address="0x471ece3750da237f93b8e339c536989b8978a438",
        amount=Decimal(amount),
    )


class _FakeStore:
    def __init__(self, totals: Dict, record: Optional[EpochRewardRecord] = None) -> None:
        self.totals = totals
        self.record = record
        self.calls: list = []

    def fetch_election_reward_totals(self, height: int):
        self.calls.append(("totals", height))
        return self.totals

    def fetch_epoch_reward_record(self, height: int):
        self.calls.append(("record", height))
        return self.record


def test_epoch_arithmetic() -> None:
    assert not is_epoch_block_number(0)
    assert not is_epoch_block_number(1)
    assert is_epoch_block_number(BLOCKS_PER_EPOCH)
    assert is_epoch_block_number(3 * BLOCKS_PER_EPOCH)
    assert not is_epoch_block_number(3 * BLOCKS_PER_EPOCH + 1)
    assert is_epoch_block_number(10, blocks_per_epoch=5)

    assert block_number_to_epoch_number(0) == 0
    assert block_number_to_epoch_number(1) == 1
    assert block_number_to_epoch_number(BLOCKS_PER_EPOCH) == 1
    assert block_number_to_epoch_number(BLOCKS_PER_EPOCH + 1) == 2
    assert block_number_to_epoch_number(11, blocks_per_epoch=5) == 3


def test_zero_fill_covers_every_type() -> None:
    dense = zero_fill_election_reward_totals({"voter": Decimal("12.5"), ElectionRewardType.GROUP: 3})

    assert set(dense) == set(ElectionRewardType)
    assert dense[ElectionRewardType.VOTER] == Decimal("12.5")
    assert dense[ElectionRewardType.GROUP] == 3
    assert dense[ElectionRewardType.VALIDATOR] == 0
    assert dense[ElectionRewardType.DELEGATED_PAYMENT] == 0
    assert sum(dense.values()) == Decimal("15.5")


def test_zero_fill_of_nothing() -> None:
    dense = zero_fill_election_reward_totals({})
    assert dense == {t: Decimal(0) for t in ElectionRewardType}


def test_zero_fill_rejects_unknown_type() -> None:
    with pytest.raises(StoreError) as ei:
        zero_fill_election_reward_totals({"miner": 1})
    assert ei.value.code == "unknown_reward_type"


def test_aggregate_totals_only_at_epoch_blocks() -> None:
    store = _FakeStore({ElectionRewardType.VALIDATOR: Decimal(7)})
    agg = EpochRewardAggregator(store, blocks_per_epoch=100)

    assert agg.aggregate_election_reward_totals(150) is None
    # Non-epoch heights do not touch the store.
    assert store.calls == []

    totals = agg.aggregate_election_reward_totals(200)
    assert totals is not None
    assert totals[ElectionRewardType.VALIDATOR] == 7
    assert totals[ElectionRewardType.VOTER] == 0
    assert store.calls == [("totals", 200)]


def test_zero_rewards_at_epoch_block_differ_from_non_epoch() -> None:
    agg = EpochRewardAggregator(_FakeStore({}), blocks_per_epoch=100)
    assert agg.aggregate_election_reward_totals(100) == {t: Decimal(0) for t in ElectionRewardType}
    assert agg.aggregate_election_reward_totals(101) is None


def test_only_community_transfer_set() -> None:
    tt = _transfer(3)
    out = aggregate_epoch_transfers(EpochRewardRecord(block_number=BLOCKS_PER_EPOCH, community_transfer=tt))

    assert out is not None
    assert tuple(out.keys()) == EPOCH_TRANSFER_SLOTS
    assert out["community_transfer"] == token_transfer_to_json(tt)
    assert out["reserve_bolster_transfer"] is None
    assert out["carbon_offsetting_transfer"] is None


def test_missing_record_is_absent_as_a_whole() -> None:
    assert aggregate_epoch_transfers(None) is None


def test_custom_transfer_renderer_and_store_lookup() -> None:
    record = EpochRewardRecord(
        block_number=100,
        reserve_bolster_transfer=_transfer(1),
        community_transfer=_transfer(2),
        carbon_offsetting_transfer=_transfer(3),
    )
    store = _FakeStore({}, record)
    agg = EpochRewardAggregator(store, blocks_per_epoch=100, render_token_transfer=lambda tt: tt.log_index)

    assert agg.epoch_transfers_at(100) == {
        "reserve_bolster_transfer": 1,
        "community_transfer": 2,
        "carbon_offsetting_transfer": 3,
    }
    assert store.calls == [("record", 100)]


def test_token_transfer_json_keeps_amount_exact() -> None:
    j = token_transfer_to_json(_transfer(0, amount="1234567890.123456789012345678"))
    assert j["total"] == {"value": "1234567890.123456789012345678"}
    assert j["to"] == {"hash": "0x" + "0" * 40}


def test_invalid_epoch_size_rejected() -> None:
    with pytest.raises(ValueError):
        EpochRewardAggregator(_FakeStore({}), blocks_per_epoch=0)
