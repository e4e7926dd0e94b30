# src/feeburn/runtime/chain_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from feeburn.env import load_dotenv_if_present
from feeburn.ledger.constants import BLOCKS_PER_EPOCH

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_opt_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


@dataclass(frozen=True)
class FeeburnConfig:
    chain_id: str
    mode: str  # "dev" | "testnet" | "prod"

    blocks_per_epoch: int

    # JSON/YAML file describing core contract deployments and governance events.
    core_contracts_path: Optional[str]

    # SQLite file holding election/epoch rewards and token transfers.
    db_path: str

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_feeburn_config(cfg: FeeburnConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.chain_id, str) or not cfg.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if int(cfg.blocks_per_epoch) <= 0:
        raise ValueError(f"blocks_per_epoch must be > 0; got: {cfg.blocks_per_epoch}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    if str(cfg.log_level or "").strip().upper() not in _ALLOWED_LOG_LEVELS:
        raise ValueError(f"log_level must be one of {_ALLOWED_LOG_LEVELS}; got: {cfg.log_level!r}")

    if cfg.core_contracts_path is not None and not Path(cfg.core_contracts_path).is_file():
        raise ValueError(f"core_contracts_path does not exist or is not a file: {cfg.core_contracts_path!r}")


def default_feeburn_config() -> FeeburnConfig:
    return FeeburnConfig(
        chain_id="celo-mainnet",
        mode="prod",
        blocks_per_epoch=BLOCKS_PER_EPOCH,
        core_contracts_path=None,
        db_path="./data/feeburn.db",
        log_level="INFO",
    )


def _apply_env_overrides(cfg: FeeburnConfig) -> FeeburnConfig:
    env = os.environ
    return FeeburnConfig(
        chain_id=_as_str(env.get("FEEBURN_CHAIN_ID"), cfg.chain_id),
        mode=_as_str(env.get("FEEBURN_MODE"), cfg.mode).strip().lower(),
        blocks_per_epoch=_as_int(env.get("FEEBURN_BLOCKS_PER_EPOCH"), cfg.blocks_per_epoch),
        core_contracts_path=_as_opt_str(env.get("FEEBURN_CORE_CONTRACTS_PATH")) or cfg.core_contracts_path,
        db_path=_as_str(env.get("FEEBURN_DB_PATH"), cfg.db_path),
        log_level=_as_str(env.get("FEEBURN_LOG_LEVEL"), cfg.log_level).strip().upper(),
    )


def read_feeburn_config_file(path: str) -> FeeburnConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("feeburn config must be a JSON object")

    d = default_feeburn_config()

    cfg = FeeburnConfig(
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        blocks_per_epoch=_as_int(raw.get("blocks_per_epoch"), d.blocks_per_epoch),
        core_contracts_path=_as_opt_str(raw.get("core_contracts_path")),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        log_level=_as_str(raw.get("log_level"), d.log_level).strip().upper(),
    )

    validate_feeburn_config(cfg)
    return cfg


def load_feeburn_config(*, config_path: Optional[str] = None) -> FeeburnConfig:
    """Resolve config: file (arg or FEEBURN_CONFIG_PATH), then FEEBURN_* env overrides."""
    load_dotenv_if_present()

    p = config_path or os.environ.get("FEEBURN_CONFIG_PATH")
    base = read_feeburn_config_file(p) if p else default_feeburn_config()

    cfg = _apply_env_overrides(base)
    validate_feeburn_config(cfg)
    return cfg
