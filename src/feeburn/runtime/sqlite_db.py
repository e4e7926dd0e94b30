# src/feeburn/runtime/sqlite_db.py
from __future__ import annotations

import os
import random
import sqlite3
import time
from contextlib import contextmanager
from decimal import Decimal, localcontext
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from feeburn.ledger.constants import DECIMAL_PRECISION, EPOCH_TRANSFER_SLOTS, ElectionRewardType
from feeburn.ledger.types import ElectionReward, EpochRewardRecord, TokenTransfer
from feeburn.runtime.errors import StoreError


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for the reward/transfer store.

    Design goals:
      - single durable DB file
      - cross-thread safe by never sharing connections
      - bounded retry on writer-lock contention in write_tx()
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """PRAGMA synchronous: FULL in prod, NORMAL otherwise; FEEBURN_SQLITE_SYNCHRONOUS overrides."""
        mode = (os.environ.get("FEEBURN_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("FEEBURN_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("FEEBURN_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        con.execute("PRAGMA journal_mode=WAL;")
        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("FEEBURN_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS token_transfers (
                  transaction_hash TEXT NOT NULL,
                  log_index INTEGER NOT NULL,
                  block_number INTEGER NOT NULL,
                  block_hash TEXT NOT NULL,
                  from_address TEXT NOT NULL,
                  to_address TEXT NOT NULL,
                  token_contract_address TEXT NOT NULL,
                  amount TEXT NOT NULL,
                  PRIMARY KEY (transaction_hash, log_index)
                );
                """
            )

            # Amounts are decimal text: SQLite SUM() would go through floats.
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS election_rewards (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  block_number INTEGER,
                  block_hash TEXT,
                  type TEXT NOT NULL,
                  account_address TEXT NOT NULL,
                  associated_account_address TEXT NOT NULL,
                  amount TEXT NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_election_rewards_block ON election_rewards(block_number);")
            con.execute("CREATE INDEX IF NOT EXISTS idx_election_rewards_account ON election_rewards(account_address);")

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS epoch_rewards (
                  block_number INTEGER PRIMARY KEY,
                  block_hash TEXT NOT NULL,
                  reserve_bolster_transfer_tx TEXT,
                  reserve_bolster_transfer_log_index INTEGER,
                  community_transfer_tx TEXT,
                  community_transfer_log_index INTEGER,
                  carbon_offsetting_transfer_tx TEXT,
                  carbon_offsetting_transfer_log_index INTEGER,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except Exception:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction, retrying BEGIN IMMEDIATE with jittered backoff until a deadline."""
        deadline_ms = max(250, _env_int("FEEBURN_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("FEEBURN_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("FEEBURN_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except Exception:
                con.execute("ROLLBACK;")
                raise


def _transfer_from_row(row: sqlite3.Row) -> TokenTransfer:
    return TokenTransfer(
        transaction_hash=str(row["transaction_hash"]),
        log_index=int(row["log_index"]),
        block_number=int(row["block_number"]),
        block_hash=str(row["block_hash"]),
        from_address=str(row["from_address"]),
        to_address=str(row["to_address"]),
        token_contract_address=str(row["token_contract_address"]),
        amount=Decimal(str(row["amount"])),
    )


def _reward_type_from_row(row: sqlite3.Row) -> ElectionRewardType:
    try:
        return ElectionRewardType(str(row["type"]))
    except ValueError as e:
        raise StoreError(
            "unknown_reward_type", "stored reward type outside the protocol set", {"type": str(row["type"])}
        ) from e


def _reward_from_row(row: sqlite3.Row) -> ElectionReward:
    bn = row["block_number"]
    return ElectionReward(
        amount=Decimal(str(row["amount"])),
        account_address=str(row["account_address"]),
        associated_account_address=str(row["associated_account_address"]),
        type=_reward_type_from_row(row),
        block_number=int(bn) if bn is not None else None,
        block_hash=str(row["block_hash"]) if row["block_hash"] is not None else None,
    )


class SqliteRewardStore:
    """Reward/transfer store persisted in SQLite.

    Implements the RewardStore protocol read by EpochRewardAggregator:
      - fetch_election_reward_totals(height): sparse per-type totals
      - fetch_epoch_reward_record(height): the epoch's transfer references, or None

    Read failures surface as StoreError so callers can tell an
    infrastructure fault from protocol absence.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    # ---- writes (indexer side) ----

    def insert_token_transfers(self, transfers: Iterable[TokenTransfer]) -> None:
        with self._db.write_tx() as con:
            self._insert_token_transfers(con, transfers)

    @staticmethod
    def _insert_token_transfers(con: sqlite3.Connection, transfers: Iterable[TokenTransfer]) -> None:
        for tt in transfers:
            con.execute(
                """
                INSERT OR REPLACE INTO token_transfers(
                  transaction_hash, log_index, block_number, block_hash,
                  from_address, to_address, token_contract_address, amount
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    tt.transaction_hash,
                    int(tt.log_index),
                    int(tt.block_number),
                    tt.block_hash,
                    tt.from_address,
                    tt.to_address,
                    tt.token_contract_address,
                    str(tt.amount),
                ),
            )

    def insert_election_rewards(self, rewards: Iterable[ElectionReward]) -> None:
        with self._db.write_tx() as con:
            for r in rewards:
                con.execute(
                    """
                    INSERT INTO election_rewards(
                      block_number, block_hash, type, account_address, associated_account_address, amount
                    ) VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    (
                        r.block_number,
                        r.block_hash,
                        r.type.value,
                        r.account_address,
                        r.associated_account_address,
                        str(r.amount),
                    ),
                )

    def upsert_epoch_reward(self, record: EpochRewardRecord) -> None:
        """Store the epoch record and the transfers it references."""
        transfers = [getattr(record, s) for s in EPOCH_TRANSFER_SLOTS if getattr(record, s) is not None]

        refs: List[Optional[object]] = []
        for slot in EPOCH_TRANSFER_SLOTS:
            tt = getattr(record, slot)
            refs.extend([tt.transaction_hash, int(tt.log_index)] if tt is not None else [None, None])

        with self._db.write_tx() as con:
            self._insert_token_transfers(con, transfers)
            con.execute(
                """
                INSERT OR REPLACE INTO epoch_rewards(
                  block_number, block_hash,
                  reserve_bolster_transfer_tx, reserve_bolster_transfer_log_index,
                  community_transfer_tx, community_transfer_log_index,
                  carbon_offsetting_transfer_tx, carbon_offsetting_transfer_log_index,
                  updated_ts_ms
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (int(record.block_number), record.block_hash, *refs, _now_ms()),
            )

    # ---- reads ----

    def fetch_election_reward_totals(self, height: int) -> Dict[ElectionRewardType, Decimal]:
        try:
            with self._db.connection() as con:
                rows = con.execute(
                    "SELECT type, amount FROM election_rewards WHERE block_number=?;",
                    (int(height),),
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError("store_unavailable", "election reward totals query failed", {"height": int(height)}) from e

        totals: Dict[ElectionRewardType, Decimal] = {}
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            for row in rows:
                t = _reward_type_from_row(row)
                totals[t] = totals.get(t, Decimal(0)) + Decimal(str(row["amount"]))
        return totals

    def fetch_epoch_reward_record(self, height: int) -> Optional[EpochRewardRecord]:
        try:
            with self._db.connection() as con:
                row = con.execute("SELECT * FROM epoch_rewards WHERE block_number=?;", (int(height),)).fetchone()
                if row is None:
                    return None

                slots: Dict[str, Optional[TokenTransfer]] = {}
                for slot in EPOCH_TRANSFER_SLOTS:
                    tx_hash = row[f"{slot}_tx"]
                    if tx_hash is None:
                        slots[slot] = None
                        continue
                    tt_row = con.execute(
                        "SELECT * FROM token_transfers WHERE transaction_hash=? AND log_index=?;",
                        (str(tx_hash), int(row[f"{slot}_log_index"])),
                    ).fetchone()
                    if tt_row is None:
                        raise StoreError(
                            "dangling_transfer_reference",
                            "epoch record points at a missing token transfer",
                            {"height": int(height), "slot": slot, "transaction_hash": str(tx_hash)},
                        )
                    slots[slot] = _transfer_from_row(tt_row)
        except sqlite3.Error as e:
            raise StoreError("store_unavailable", "epoch reward query failed", {"height": int(height)}) from e

        return EpochRewardRecord(block_number=int(row["block_number"]), block_hash=str(row["block_hash"]), **slots)

    def list_election_rewards(
        self,
        *,
        block_number: Optional[int] = None,
        account_address: Optional[str] = None,
        limit: int = 50,
    ) -> List[ElectionReward]:
        where: List[str] = []
        params: List[object] = []
        if block_number is not None:
            where.append("block_number=?")
            params.append(int(block_number))
        if account_address is not None:
            where.append("account_address=?")
            params.append(str(account_address))

        sql = "SELECT * FROM election_rewards"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY id ASC LIMIT ?;"
        params.append(max(1, int(limit)))

        try:
            with self._db.connection() as con:
                rows = con.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise StoreError("store_unavailable", "election reward listing failed", {}) from e
        return [_reward_from_row(r) for r in rows]
