# src/feeburn/runtime/core_contracts.py
from __future__ import annotations

"""Historical core-contract registry.

Answers "as of block height H" questions about the core contracts:

  - resolve_address(name, H): address the logical contract had at H
  - resolve_latest_event(name, kind, H): payload of the latest governance
    event of that kind recorded at or before H

A miss is None, never an error: most blocks predate most governance changes.

Source shape (JSON or YAML):

  {
    "addresses": {
      "FeeHandler": [{"address": "0x..", "updated_at_block_number": 100}],
      "Governance": [{"address": "0x..", "updated_at_block_number": 1}]
    },
    "events": {
      "FeeHandler": {
        "FeeBeneficiarySet": [{"address": "0x..", "updated_at_block_number": 120}],
        "BurnFractionSet":   [{"value": 800000000000000000000000, "updated_at_block_number": 130}]
      }
    }
  }

An address entry with a null address marks the start of an undeployed range.
"""

import json
import logging
import os
from bisect import bisect_right
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Type, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from feeburn.ledger.constants import CoreContractEvent
from feeburn.ledger.types import ContractDeployment, GovernanceEvent
from feeburn.runtime.errors import RegistryError
from feeburn.runtime.structured_logging import log_event

Json = Dict[str, Any]

NameLike = Union[str, Enum]

_logger = logging.getLogger("feeburn.registry")


def _name(v: NameLike) -> str:
    if isinstance(v, Enum):
        return str(v.value)
    return str(v)


class HistoricalParameterResolver(Protocol):
    def resolve_address(self, logical_name: NameLike, block_height: int) -> Optional[str]: ...

    def resolve_latest_event(
        self, logical_name: NameLike, event_kind: NameLike, block_height: int
    ) -> Optional[Json]: ...


# ---------------------------------------------------------------------------
# Source validation
# ---------------------------------------------------------------------------


class _AddressEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    address: Optional[str] = None
    updated_at_block_number: int = Field(..., ge=0)


class _EventEntry(BaseModel):
    """Generic event entry: payload keys may evolve."""

    model_config = ConfigDict(extra="allow")

    updated_at_block_number: int = Field(..., ge=0)


class _FeeBeneficiarySetEntry(_EventEntry):
    address: str


class _BurnFractionSetEntry(_EventEntry):
    # FixidityLib raw value; range is not checked here.
    value: int

    @field_validator("value", mode="before")
    @classmethod
    def _digits_to_int(cls, v: Any) -> Any:
        # Raw values exceed 2^64; accept them as decimal strings too.
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        return v


_EVENT_MODELS: Dict[str, Type[_EventEntry]] = {
    CoreContractEvent.FEE_BENEFICIARY_SET.value: _FeeBeneficiarySetEntry,
    CoreContractEvent.BURN_FRACTION_SET.value: _BurnFractionSetEntry,
}


class _CoreContractsSource(BaseModel):
    model_config = ConfigDict(extra="forbid")

    addresses: Dict[str, List[_AddressEntry]] = Field(default_factory=dict)
    events: Dict[str, Dict[str, List[Json]]] = Field(default_factory=dict)


def _parse_event(contract: str, kind: str, raw: Json) -> GovernanceEvent:
    model = _EVENT_MODELS.get(kind, _EventEntry)
    entry = model.model_validate(raw)
    payload = entry.model_dump()
    height = int(payload.pop("updated_at_block_number"))
    return GovernanceEvent(contract=contract, kind=kind, block_height=height, payload=payload)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class CoreContractRegistry:
    """In-memory, immutable-after-build implementation of HistoricalParameterResolver.

    Each (contract) and (contract, kind) key maps to parallel lists sorted by
    height; lookups bisect for the largest height <= query. Entries sharing a
    height keep insertion order, so the last one registered is effective.
    """

    def __init__(
        self,
        *,
        deployments: Iterable[ContractDeployment] = (),
        events: Iterable[GovernanceEvent] = (),
    ) -> None:
        by_name: Dict[str, List[ContractDeployment]] = {}
        for d in deployments:
            by_name.setdefault(_name(d.logical_name), []).append(d)

        self._addresses: Dict[str, Tuple[List[int], List[Optional[str]]]] = {}
        for name, items in by_name.items():
            items = sorted(items, key=lambda d: int(d.block_height))
            self._addresses[name] = (
                [int(d.block_height) for d in items],
                [_normalize_address(d.address) for d in items],
            )

        by_key: Dict[Tuple[str, str], List[GovernanceEvent]] = {}
        for ev in events:
            by_key.setdefault((_name(ev.contract), _name(ev.kind)), []).append(ev)

        self._events: Dict[Tuple[str, str], Tuple[List[int], List[Json]]] = {}
        for key, evs in by_key.items():
            evs = sorted(evs, key=lambda e: int(e.block_height))
            self._events[key] = (
                [int(e.block_height) for e in evs],
                [dict(e.payload) for e in evs],
            )

    # ---- construction ----

    @classmethod
    def from_dict(cls, obj: Any) -> "CoreContractRegistry":
        if not isinstance(obj, dict):
            raise RegistryError("invalid_source", "core contracts source must be an object", {"type": type(obj).__name__})

        try:
            src = _CoreContractsSource.model_validate(obj)
            deployments = [
                ContractDeployment(logical_name=name, block_height=e.updated_at_block_number, address=e.address)
                for name, entries in src.addresses.items()
                for e in entries
            ]
            events = [
                _parse_event(contract, kind, raw)
                for contract, kinds in src.events.items()
                for kind, entries in kinds.items()
                for raw in entries
            ]
        except ValidationError as e:
            raise RegistryError("invalid_source", "core contracts source failed validation", {"errors": e.errors()}) from e

        reg = cls(deployments=deployments, events=events)
        log_event(
            _logger,
            "core_contracts_loaded",
            contracts=sorted(reg._addresses.keys()),
            deployments=len(deployments),
            events=len(events),
        )
        return reg

    # ---- reads ----

    def resolve_address(self, logical_name: NameLike, block_height: int) -> Optional[str]:
        entry = self._addresses.get(_name(logical_name))
        if entry is None:
            return None
        heights, addresses = entry
        i = bisect_right(heights, int(block_height)) - 1
        if i < 0:
            return None
        return addresses[i]

    def resolve_latest_event(
        self, logical_name: NameLike, event_kind: NameLike, block_height: int
    ) -> Optional[Json]:
        entry = self._events.get((_name(logical_name), _name(event_kind)))
        if entry is None:
            return None
        heights, payloads = entry
        i = bisect_right(heights, int(block_height)) - 1
        if i < 0:
            return None
        return dict(payloads[i])

    def event_heights(self, logical_name: NameLike, event_kind: NameLike) -> List[int]:
        entry = self._events.get((_name(logical_name), _name(event_kind)))
        return list(entry[0]) if entry else []


def _normalize_address(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_core_contracts(path: str) -> CoreContractRegistry:
    """Load a registry from a .json, .yaml or .yml file."""
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise RegistryError("unreadable_source", "cannot read core contracts file", {"path": str(p)}) from e

    try:
        if p.suffix.lower() in {".yaml", ".yml"}:
            obj = yaml.safe_load(text)
        else:
            obj = json.loads(text)
    except (ValueError, yaml.YAMLError) as e:
        raise RegistryError("unparseable_source", "core contracts file is not valid JSON/YAML", {"path": str(p)}) from e

    return CoreContractRegistry.from_dict(obj)


def load_core_contracts_from_env() -> CoreContractRegistry:
    """Resolve the registry from FEEBURN_CORE_CONTRACTS_PATH, else inline FEEBURN_CORE_CONTRACTS JSON.

    With neither set the registry is empty and every lookup is absent.
    """
    path = (os.environ.get("FEEBURN_CORE_CONTRACTS_PATH") or "").strip()
    if path:
        return load_core_contracts(path)

    inline = (os.environ.get("FEEBURN_CORE_CONTRACTS") or "").strip()
    if inline:
        try:
            obj = json.loads(inline)
        except ValueError as e:
            raise RegistryError("unparseable_source", "FEEBURN_CORE_CONTRACTS is not valid JSON", {}) from e
        return CoreContractRegistry.from_dict(obj)

    return CoreContractRegistry()
