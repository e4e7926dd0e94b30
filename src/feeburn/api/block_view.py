# src/feeburn/api/block_view.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from feeburn.api.schemas import (
    AggregatedElectionRewardsOut,
    BaseFeeBreakdownItem,
    BaseFeeOut,
    ElectionRewardOut,
    EpochDistributionsOut,
    PendingElectionRewardOut,
)
from feeburn.ledger.types import Block, Distribution, ElectionReward, Transaction
from feeburn.runtime.epoch_rewards import EpochRewardAggregator
from feeburn.runtime.fee_distribution import FeeDistributionCalculator
from feeburn.runtime.structured_logging import log_event

Json = Dict[str, Any]

AddressInfoLookup = Callable[[Set[str]], Mapping[str, Json]]
TokenRenderer = Callable[[Optional[Json], str], Json]

_logger = logging.getLogger("feeburn.view")


def no_address_info(addresses: Set[str]) -> Mapping[str, Json]:
    return {}


def default_render_token(token: Optional[Json], contract_address: str) -> Json:
    out = dict(token or {})
    out.setdefault("address", contract_address)
    return out


def address_with_info(info: Optional[Mapping[str, Any]], address: str) -> Json:
    """Display form of an address: enrichment when known, else just the hash."""
    if not info:
        return {"hash": address}
    out = dict(info)
    out.setdefault("hash", address)
    return out


class BlockView:
    """Shapes core results into the block/transaction JSON extensions.

    Unknown base-fee disposition and non-epoch aggregation render as None
    (explicit absence), never as zero.
    """

    def __init__(
        self,
        *,
        fees: FeeDistributionCalculator,
        epochs: EpochRewardAggregator,
        lookup_addresses: AddressInfoLookup = no_address_info,
        render_token: TokenRenderer = default_render_token,
    ) -> None:
        self._fees = fees
        self._epochs = epochs
        self._lookup = lookup_addresses
        self._render_token = render_token

    def _addresses_with_info(self, addresses: Iterable[str]) -> Dict[str, Json]:
        wanted = {a for a in addresses if a}
        infos = self._lookup(set(wanted)) if wanted else {}
        return {a: address_with_info(infos.get(a), a) for a in wanted}

    # ---- base fee ----

    def render_distribution(self, dist: Distribution) -> Json:
        infos = self._addresses_with_info(dist.addresses())
        return BaseFeeOut(
            recipient=infos[dist.recipient],
            amount=dist.total_amount,
            breakdown=[
                BaseFeeBreakdownItem(address=infos[e.address], amount=e.amount, percentage=e.percentage)
                for e in dist.breakdown
            ],
        ).to_json()

    def render_base_fee(self, block: Block) -> Optional[Json]:
        dist = self._fees.compute_for_block(block)
        if not isinstance(dist, Distribution):
            return None
        return self.render_distribution(dist)

    # ---- epoch ----

    def render_epoch_distributions(self, block: Block) -> Optional[Json]:
        slots = self._epochs.epoch_transfers_at(block.number)
        if slots is None:
            return None
        return EpochDistributionsOut(**slots).to_json()

    def render_aggregated_election_rewards(self, block: Block) -> Optional[Json]:
        totals = self._epochs.aggregate_election_reward_totals(block.number)
        if totals is None:
            return None
        return AggregatedElectionRewardsOut(**{t.value: v for t, v in totals.items()}).to_json()

    def prepare_election_reward(self, reward: ElectionReward, infos: Optional[Mapping[str, Json]] = None) -> Json:
        if infos is None:
            infos = self._addresses_with_info([reward.account_address, reward.associated_account_address])
        account = infos.get(reward.account_address) or {"hash": reward.account_address}
        associated = infos.get(reward.associated_account_address) or {"hash": reward.associated_account_address}

        if reward.block_number is None:
            return PendingElectionRewardOut(
                amount=reward.amount, account=account, associated_account=associated
            ).to_json()

        return ElectionRewardOut(
            amount=reward.amount,
            account=account,
            associated_account=associated,
            block_number=int(reward.block_number),
            block_hash=reward.block_hash,
            epoch_number=self._epochs.epoch_number(reward.block_number),
            type=reward.type.value,
        ).to_json()

    def render_election_rewards(self, rewards: List[ElectionReward], next_page_params: Any = None) -> Json:
        infos = self._addresses_with_info(
            a for r in rewards for a in (r.account_address, r.associated_account_address)
        )
        return {
            "items": [self.prepare_election_reward(r, infos) for r in rewards],
            "next_page_params": next_page_params,
        }

    # ---- response extension ----

    def extend_block_json_response(self, out_json: Json, block: Block, single_block: bool) -> Json:
        epoch_json: Json = {
            "is_epoch_block": self._epochs.is_epoch_block(block.number),
            "number": self._epochs.epoch_number(block.number),
        }

        if single_block:
            distributions = self.render_epoch_distributions(block)
            # Rewards are only shown once the epoch's transfers were indexed.
            aggregated = self.render_aggregated_election_rewards(block) if distributions is not None else None
            epoch_json["distributions"] = distributions
            epoch_json["aggregated_election_rewards"] = aggregated

        celo_json: Json = {"epoch": epoch_json}
        if single_block:
            celo_json["base_fee"] = self.render_base_fee(block)

        out = dict(out_json)
        out["celo"] = celo_json
        return out

    def extend_transaction_json_response(self, out_json: Json, tx: Transaction) -> Json:
        token_json: Optional[Json] = None
        contract = tx.gas_token_contract_address
        if contract:
            if tx.gas_token is None:
                log_event(
                    _logger,
                    "gas_token_missing",
                    level=logging.ERROR,
                    transaction=tx.hash,
                    gas_token_contract_address=contract,
                )
            token_json = self._render_token(tx.gas_token, contract)

        out = dict(out_json)
        out["celo"] = {"gas_token": token_json}
        return out
