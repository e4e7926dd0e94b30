from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Dict, Optional, Set

import pytest

from feeburn.api.block_view import BlockView, address_with_info, default_render_token
from feeburn.ledger.constants import BURN_ADDRESS, ElectionRewardType
from feeburn.ledger.types import (
    Block,
    ContractDeployment,
    ElectionReward,
    EpochRewardRecord,
    GovernanceEvent,
    TokenTransfer,
    Transaction,
)
from feeburn.runtime.core_contracts import CoreContractRegistry
from feeburn.runtime.epoch_rewards import EpochRewardAggregator
from feeburn.runtime.fee_distribution import FeeDistributionCalculator

GOVERNANCE = "0xd533ca259b330c7a88f74e000a3faea2d63b7972"
FEE_HANDLER = "0xcd437749e43a154c07f3553504c68fbfd56b8778"
BENEFICIARY = "0x22579ca45ee22e2e16ddf72d955d6cf4c767b0ef"

EPOCH = 10


def _registry() -> CoreContractRegistry:
    return CoreContractRegistry(
        deployments=[
            ContractDeployment("Governance", 10, GOVERNANCE),
            ContractDeployment("FeeHandler", 100, FEE_HANDLER),
        ],
        events=[
            GovernanceEvent("FeeHandler", "FeeBeneficiarySet", 120, {"address": BENEFICIARY}),
            GovernanceEvent("FeeHandler", "BurnFractionSet", 130, {"value": 800_000_000_000_000_000_000_000}),
        ],
    )


def _transfer(log_index: int) -> TokenTransfer:
    return TokenTransfer(
        transaction_hash="0xepoch",
        log_index=log_index,
        block_number=130,
        block_hash="0xb130",
        from_address="0x0000000000000000000000000000000000000000",
        to_address=f"0x{log_index:040x}",
        token_contract_address="0xcelo",
        amount=Decimal("5.5"),
    )


class _FakeStore:
    def __init__(self, totals: Optional[Dict] = None, record: Optional[EpochRewardRecord] = None) -> None:
        self.totals = totals or {}
        self.record = record

    def fetch_election_reward_totals(self, height: int):
        return self.totals

    def fetch_epoch_reward_record(self, height: int):
        return self.record


class _Lookup:
    def __init__(self, known: Dict[str, dict]) -> None:
        self.known = known
        self.calls: list = []

    def __call__(self, addresses: Set[str]):
        self.calls.append(set(addresses))
        return {a: self.known[a] for a in addresses if a in self.known}


def _view(store: Optional[_FakeStore] = None, lookup=None) -> BlockView:
    kwargs = {}
    if lookup is not None:
        kwargs["lookup_addresses"] = lookup
    return BlockView(
        fees=FeeDistributionCalculator(_registry()),
        epochs=EpochRewardAggregator(store or _FakeStore(), blocks_per_epoch=EPOCH),
        **kwargs,
    )


def _block(number: int, base_fee: Optional[str] = "10", gas: int = 100) -> Block:
    return Block(
        number=number,
        hash=f"0xb{number}",
        base_fee_per_gas=Decimal(base_fee) if base_fee is not None else None,
        transactions=(Transaction("0xt1", gas_used=gas // 2), Transaction("0xt2", gas_used=gas - gas // 2)),
    )


def test_base_fee_split_renders_recipient_and_breakdown() -> None:
    out = _view().render_base_fee(_block(130))

    assert out is not None
    assert out["recipient"] == {"hash": FEE_HANDLER}
    assert Decimal(out["amount"]) == 1000

    burn, rest = out["breakdown"]
    assert burn["address"] == {"hash": BURN_ADDRESS}
    assert Decimal(burn["amount"]) == 800
    assert Decimal(burn["percentage"]) == 80
    assert rest["address"] == {"hash": BENEFICIARY}
    assert Decimal(rest["amount"]) == 200
    assert Decimal(rest["percentage"]) == 20


def test_amounts_render_as_strings() -> None:
    out = _view().render_base_fee(_block(130, base_fee="0.000000000000000001", gas=3))
    assert isinstance(out["amount"], str)
    assert Decimal(out["amount"]) == Decimal("0.000000000000000003")


def test_governance_retention_renders_empty_breakdown() -> None:
    out = _view().render_base_fee(_block(50))
    assert out["recipient"] == {"hash": GOVERNANCE}
    assert out["breakdown"] == []


def test_unknown_disposition_renders_as_none() -> None:
    assert _view().render_base_fee(_block(5)) is None


def test_address_info_enriches_known_addresses_only() -> None:
    lookup = _Lookup({FEE_HANDLER: {"name": "FeeHandler", "is_contract": True}})
    out = _view(lookup=lookup).render_base_fee(_block(130))

    assert out["recipient"] == {"hash": FEE_HANDLER, "name": "FeeHandler", "is_contract": True}
    assert out["breakdown"][1]["address"] == {"hash": BENEFICIARY}
    # One batched lookup per distribution.
    assert lookup.calls == [{FEE_HANDLER, BURN_ADDRESS, BENEFICIARY}]


def test_address_with_info_keeps_hash() -> None:
    assert address_with_info(None, "0xa") == {"hash": "0xa"}
    assert address_with_info({"name": "x"}, "0xa") == {"name": "x", "hash": "0xa"}


def test_extend_block_for_list_views_only_adds_epoch_position() -> None:
    out = _view().extend_block_json_response({"height": 130}, _block(130), single_block=False)

    assert out["height"] == 130
    assert out["celo"] == {"epoch": {"is_epoch_block": True, "number": 13}}


def test_extend_block_does_not_mutate_input() -> None:
    original = {"height": 131}
    _view().extend_block_json_response(original, _block(131), single_block=True)
    assert original == {"height": 131}


def test_extend_single_epoch_block_with_indexed_transfers() -> None:
    store = _FakeStore(
        totals={"voter": Decimal("1.5"), ElectionRewardType.GROUP: Decimal(2)},
        record=EpochRewardRecord(block_number=130, block_hash="0xb130", community_transfer=_transfer(7)),
    )
    out = _view(store).extend_block_json_response({}, _block(130), single_block=True)
    epoch = out["celo"]["epoch"]

    assert epoch["is_epoch_block"] is True
    assert epoch["number"] == 13
    assert epoch["distributions"]["reserve_bolster_transfer"] is None
    assert epoch["distributions"]["carbon_offsetting_transfer"] is None
    assert epoch["distributions"]["community_transfer"]["log_index"] == 7

    totals = {k: Decimal(v) for k, v in epoch["aggregated_election_rewards"].items()}
    assert totals == {
        "voter": Decimal("1.5"),
        "validator": Decimal(0),
        "group": Decimal(2),
        "delegated_payment": Decimal(0),
    }
    assert out["celo"]["base_fee"] is not None


def test_aggregated_rewards_hidden_until_transfers_indexed() -> None:
    store = _FakeStore(totals={"voter": Decimal(1)}, record=None)
    epoch = _view(store).extend_block_json_response({}, _block(130), single_block=True)["celo"]["epoch"]

    assert epoch["distributions"] is None
    assert epoch["aggregated_election_rewards"] is None


def test_non_epoch_block_has_no_aggregated_rewards() -> None:
    store = _FakeStore(
        totals={"voter": Decimal(1)},
        record=EpochRewardRecord(block_number=131, reserve_bolster_transfer=_transfer(1)),
    )
    out = _view(store).extend_block_json_response({}, _block(131), single_block=True)
    epoch = out["celo"]["epoch"]

    assert epoch["is_epoch_block"] is False
    assert epoch["number"] == 14
    assert epoch["aggregated_election_rewards"] is None


def test_extend_single_block_with_unknown_base_fee() -> None:
    out = _view().extend_block_json_response({}, _block(5), single_block=True)
    assert "base_fee" in out["celo"]
    assert out["celo"]["base_fee"] is None


def test_extend_transaction_without_gas_token() -> None:
    out = _view().extend_transaction_json_response({"hash": "0xt"}, Transaction("0xt", gas_used=21_000))
    assert out == {"hash": "0xt", "celo": {"gas_token": None}}


def test_extend_transaction_with_gas_token() -> None:
    tx = Transaction(
        "0xt",
        gas_used=21_000,
        gas_token_contract_address="0x765de816845861e75a25fca122bb6898b8b1282a",
        gas_token={"symbol": "cUSD", "decimals": 18},
    )
    out = _view().extend_transaction_json_response({}, tx)
    assert out["celo"]["gas_token"] == {
        "symbol": "cUSD",
        "decimals": 18,
        "address": "0x765de816845861e75a25fca122bb6898b8b1282a",
    }


def test_missing_gas_token_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    tx = Transaction("0xt", gas_token_contract_address="0xtoken", gas_token=None)
    with caplog.at_level(logging.ERROR, logger="feeburn.view"):
        out = _view().extend_transaction_json_response({}, tx)

    assert out["celo"]["gas_token"] == default_render_token(None, "0xtoken") == {"address": "0xtoken"}
    events = [json.loads(r.getMessage()) for r in caplog.records if r.name == "feeburn.view"]
    assert [e["event"] for e in events] == ["gas_token_missing"]
    assert events[0]["transaction"] == "0xt"


def _reward(block_number: Optional[int]) -> ElectionReward:
    return ElectionReward(
        amount=Decimal("12.000000000000000001"),
        account_address="0xvoter",
        associated_account_address="0xgroup",
        type=ElectionRewardType.VOTER,
        block_number=block_number,
        block_hash=f"0xb{block_number}" if block_number is not None else None,
    )


def test_pending_election_reward_has_no_block_fields() -> None:
    out = _view().prepare_election_reward(_reward(None))
    assert out == {
        "amount": "12.000000000000000001",
        "account": {"hash": "0xvoter"},
        "associated_account": {"hash": "0xgroup"},
    }


def test_settled_election_reward_carries_epoch() -> None:
    out = _view().prepare_election_reward(_reward(130))
    assert out["block_number"] == 130
    assert out["block_hash"] == "0xb130"
    assert out["epoch_number"] == 13
    assert out["type"] == "voter"


def test_election_reward_page_batches_address_lookup() -> None:
    lookup = _Lookup({"0xgroup": {"name": "Group"}})
    page = _view(lookup=lookup).render_election_rewards([_reward(130), _reward(140)], {"block_number": 140})

    assert len(lookup.calls) == 1
    assert page["next_page_params"] == {"block_number": 140}
    assert [i["epoch_number"] for i in page["items"]] == [13, 14]
    assert page["items"][0]["associated_account"] == {"name": "Group", "hash": "0xgroup"}
