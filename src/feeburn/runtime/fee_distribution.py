# src/feeburn/runtime/fee_distribution.py
from __future__ import annotations

"""Base-fee disposition as of a block height.

Two regimes, tried in order; the first that fully resolves wins:

  A. FeeHandler split: the FeeHandler contract is deployed and both a
     FeeBeneficiarySet and a BurnFractionSet event exist at or before the
     height. The burn fraction goes to BURN_ADDRESS, the rest to the
     beneficiary.

  B. Governance retention: the Governance contract is deployed. The whole
     base fee is retained (empty breakdown).

Otherwise the result is Unknown. For such blocks the base fee was refunded
to the sender, so callers must omit it rather than render a zero split.

Any partial Regime A failure (e.g. FeeHandler deployed but no BurnFractionSet
yet) falls back to Regime B.
"""

import logging
from decimal import Decimal, localcontext
from typing import Any, Dict, Iterable, Optional

from feeburn.ledger.constants import (
    BURN_ADDRESS,
    DECIMAL_PRECISION,
    CoreContract,
    CoreContractEvent,
)
from feeburn.ledger.fixidity import in_protocol_range, to_fraction
from feeburn.ledger.types import (
    Block,
    BreakdownEntry,
    Distribution,
    FeeDistribution,
    Regime,
    Transaction,
    Unknown,
)
from feeburn.runtime.core_contracts import HistoricalParameterResolver
from feeburn.runtime.metrics import inc_counter
from feeburn.runtime.structured_logging import log_event

Json = Dict[str, Any]

_logger = logging.getLogger("feeburn.fees")

_HUNDRED = Decimal(100)


def burnt_fees(transactions: Iterable[Transaction], base_fee_per_gas: Optional[Decimal]) -> Decimal:
    """Total base fee of a block: sum(gas_used) * base_fee_per_gas.

    Blocks without a base fee (pre-London) yield 0.
    """
    if base_fee_per_gas is None:
        return Decimal(0)
    gas = sum(int(tx.gas_used or 0) for tx in transactions)
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        return Decimal(gas) * Decimal(base_fee_per_gas)


def _payload_str(payload: Optional[Json], key: str) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    v = payload.get(key)
    if not isinstance(v, str) or not v.strip():
        return None
    return v.strip()


def _payload_int(payload: Optional[Json], key: str) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    v = payload.get(key)
    if isinstance(v, bool) or not isinstance(v, int):
        return None
    return v


class FeeDistributionCalculator:
    """Pure calculator over a HistoricalParameterResolver.

    Holds no mutable state; safe to share across threads.
    """

    def __init__(self, resolver: HistoricalParameterResolver, *, burn_address: str = BURN_ADDRESS) -> None:
        self._resolver = resolver
        self._burn_address = str(burn_address)

    def compute_fee_distribution(self, base_fee: Decimal, height: int) -> FeeDistribution:
        base_fee = Decimal(base_fee)
        h = int(height)

        if base_fee < 0:
            log_event(_logger, "negative_base_fee", level=logging.WARNING, height=h, base_fee=base_fee)

        dist = self._fee_handler_split(base_fee, h)
        if dist is None:
            dist = self._governance_retention(base_fee, h)

        if dist is None:
            inc_counter("fee_distribution_unknown")
            return Unknown(height=h)

        inc_counter(f"fee_distribution_{dist.regime.value}")
        return dist

    def compute_for_block(self, block: Block) -> FeeDistribution:
        return self.compute_fee_distribution(burnt_fees(block.transactions, block.base_fee_per_gas), block.number)

    # ---- regimes ----

    def _fee_handler_split(self, base_fee: Decimal, height: int) -> Optional[Distribution]:
        r = self._resolver

        fee_handler = r.resolve_address(CoreContract.FEE_HANDLER, height)
        if not fee_handler:
            return None

        beneficiary = _payload_str(
            r.resolve_latest_event(CoreContract.FEE_HANDLER, CoreContractEvent.FEE_BENEFICIARY_SET, height),
            "address",
        )
        if beneficiary is None:
            return None

        raw_fraction = _payload_int(
            r.resolve_latest_event(CoreContract.FEE_HANDLER, CoreContractEvent.BURN_FRACTION_SET, height),
            "value",
        )
        if raw_fraction is None:
            return None

        fraction = to_fraction(raw_fraction)
        if not in_protocol_range(fraction):
            log_event(
                _logger,
                "burn_fraction_out_of_range",
                level=logging.WARNING,
                height=height,
                raw=str(raw_fraction),
                fraction=fraction,
            )

        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            burnt_amount = base_fee * fraction
            burnt_percentage = fraction * _HUNDRED
            # Subtract from the totals so both sums hold exactly.
            remainder_amount = base_fee - burnt_amount
            remainder_percentage = _HUNDRED - burnt_percentage

        return Distribution(
            regime=Regime.FEE_HANDLER,
            recipient=fee_handler,
            total_amount=base_fee,
            breakdown=(
                BreakdownEntry(address=self._burn_address, amount=burnt_amount, percentage=burnt_percentage),
                BreakdownEntry(address=beneficiary, amount=remainder_amount, percentage=remainder_percentage),
            ),
        )

    def _governance_retention(self, base_fee: Decimal, height: int) -> Optional[Distribution]:
        governance = self._resolver.resolve_address(CoreContract.GOVERNANCE, height)
        if not governance:
            return None
        return Distribution(regime=Regime.GOVERNANCE, recipient=governance, total_amount=base_fee, breakdown=())


def compute_fee_distribution(
    base_fee: Decimal,
    height: int,
    *,
    resolver: HistoricalParameterResolver,
    burn_address: str = BURN_ADDRESS,
) -> FeeDistribution:
    """Functional entrypoint; see FeeDistributionCalculator."""
    return FeeDistributionCalculator(resolver, burn_address=burn_address).compute_fee_distribution(base_fee, height)
