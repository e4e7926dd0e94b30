# src/feeburn/runtime/boot.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from feeburn.api.block_view import AddressInfoLookup, BlockView, no_address_info
from feeburn.runtime.chain_config import FeeburnConfig, load_feeburn_config
from feeburn.runtime.core_contracts import CoreContractRegistry, load_core_contracts, load_core_contracts_from_env
from feeburn.runtime.epoch_rewards import EpochRewardAggregator
from feeburn.runtime.fee_distribution import FeeDistributionCalculator
from feeburn.runtime.metrics import format_prometheus, snapshot
from feeburn.runtime.sqlite_db import SqliteDB, SqliteRewardStore
from feeburn.runtime.structured_logging import configure_structured_logging, log_event

_logger = logging.getLogger("feeburn.boot")


@dataclass
class Runtime:
    config: FeeburnConfig
    registry: CoreContractRegistry
    store: SqliteRewardStore
    fees: FeeDistributionCalculator
    epochs: EpochRewardAggregator
    view: BlockView

    def metrics_snapshot(self) -> dict:
        return snapshot()

    def metrics_text(self) -> str:
        """Prometheus exposition of the in-process counters."""
        return format_prometheus()


def build_runtime(
    cfg: Optional[FeeburnConfig] = None,
    *,
    lookup_addresses: AddressInfoLookup = no_address_info,
) -> Runtime:
    """Wire config -> registry -> store -> calculator/aggregator -> view.

    With no explicit config, everything is resolved from FEEBURN_* env vars
    (and a .env file, if present).
    """
    c = cfg or load_feeburn_config()
    configure_structured_logging(c.log_level)

    if c.core_contracts_path:
        registry = load_core_contracts(c.core_contracts_path)
    else:
        registry = load_core_contracts_from_env()

    store = SqliteRewardStore(db=SqliteDB(path=c.db_path))
    fees = FeeDistributionCalculator(registry)
    epochs = EpochRewardAggregator(store, blocks_per_epoch=c.blocks_per_epoch)
    view = BlockView(fees=fees, epochs=epochs, lookup_addresses=lookup_addresses)

    log_event(
        _logger,
        "runtime_booted",
        chain_id=c.chain_id,
        mode=c.mode,
        blocks_per_epoch=c.blocks_per_epoch,
        db_path=c.db_path,
    )
    return Runtime(config=c, registry=registry, store=store, fees=fees, epochs=epochs, view=view)
