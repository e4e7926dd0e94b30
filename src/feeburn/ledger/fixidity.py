# src/feeburn/ledger/fixidity.py
from __future__ import annotations

from decimal import Context, Decimal

from feeburn.ledger.constants import DECIMAL_PRECISION, FIXIDITY_SCALE

FIXIDITY_CONTEXT = Context(prec=DECIMAL_PRECISION)

_SCALE = Decimal(FIXIDITY_SCALE)


def to_fraction(raw: int) -> Decimal:
    """Convert a FixidityLib integer (scale 10^24) into an exact Decimal.

    Values outside [0, 1] are returned as-is; the chain is the source of truth.
    """
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise TypeError(f"fixidity value must be int (got {type(raw).__name__})")
    return FIXIDITY_CONTEXT.divide(Decimal(raw), _SCALE)


def in_protocol_range(fraction: Decimal) -> bool:
    return Decimal(0) <= fraction <= Decimal(1)
