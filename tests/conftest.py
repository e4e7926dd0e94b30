from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "feeburn" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "FEEBURN_CONFIG_PATH",
        "FEEBURN_CORE_CONTRACTS_PATH",
        "FEEBURN_CORE_CONTRACTS",
        "FEEBURN_CHAIN_ID",
        "FEEBURN_MODE",
        "FEEBURN_BLOCKS_PER_EPOCH",
        "FEEBURN_DB_PATH",
        "FEEBURN_LOG_LEVEL",
        "FEEBURN_METRICS_ENABLED",
        "FEEBURN_SQLITE_SYNCHRONOUS",
        "FEEBURN_SQLITE_BUSY_TIMEOUT_MS",
        "FEEBURN_SQLITE_CONNECT_TIMEOUT_MS",
    ):
        monkeypatch.delenv(name, raising=False)
    # Never pick up a developer's .env during tests.
    monkeypatch.setenv("FEEBURN_DOTENV_PATH", "/nonexistent/.env")
