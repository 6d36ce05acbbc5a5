# src/bookledger/runtime/sqlite_db.py
from __future__ import annotations

import os
import json
import sqlite3
import time
import random
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Keep this stable: identical states must serialize to identical bytes.
    """
    # Do not silently coerce unknown types (e.g. default=str); fail fast instead.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite manager for the ledger.

    Design goals:
      - single durable DB file for ledger state + receipt log
      - cross-process safe (SQLite locks)
      - cross-thread safe by never sharing connections

    SQLite allows only one writer at a time. Under multi-process workloads,
    BEGIN IMMEDIATE can transiently fail with "database is locked", so
    write_tx() retries with bounded backoff.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return a safe PRAGMA synchronous value.

        Defaults:
          - prod -> FULL
          - dev  -> NORMAL

        Override with BOOKLEDGER_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("BOOKLEDGER_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("BOOKLEDGER_SQLITE_SYNCHRONOUS") or default).strip().upper()

        allowed = {"OFF", "NORMAL", "FULL", "EXTRA"}
        if raw not in allowed:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        p = Path(self.path)
        p.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("BOOKLEDGER_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        # WAL keeps readers unblocked while the single writer commits.
        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        allow_non_wal = (os.environ.get("BOOKLEDGER_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        if mode and mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = _env_int("BOOKLEDGER_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000))
        busy_ms = max(0, int(busy_ms))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        # Schema creation takes write locks; do it with write_tx() so we inherit
        # the same bounded retry policy used for all other writes.
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
                CREATE TABLE IF NOT EXISTS ledger_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  height INTEGER NOT NULL,
                  tip TEXT NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS tx_receipts (
                  seq INTEGER PRIMARY KEY AUTOINCREMENT,
                  tx_id TEXT NOT NULL,
                  tx_type TEXT NOT NULL,
                  signer TEXT NOT NULL,
                  ok INTEGER NOT NULL,
                  height INTEGER NOT NULL,
                  receipt_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_receipts_tx_id ON tx_receipts(tx_id);")
            con.execute("CREATE INDEX IF NOT EXISTS idx_receipts_signer ON tx_receipts(signer);")

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
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
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise (fail closed) if we cannot acquire within deadline
        """
        deadline_ms = _env_int("BOOKLEDGER_SQLITE_WRITE_DEADLINE_MS", 30_000)
        deadline_ms = max(250, int(deadline_ms))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = float(_env_int("BOOKLEDGER_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0
        max_sleep = float(_env_int("BOOKLEDGER_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0
        base_sleep = max(0.001, base_sleep)
        max_sleep = max(base_sleep, max_sleep)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e):
                        raise
                    if _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    sleep_s = sleep_s * (0.5 + random.random())  # jitter in [0.5x, 1.5x]
                    time.sleep(sleep_s)
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except BaseException:
                # A failed ROLLBACK must not mask the error that caused it.
                try:
                    con.execute("ROLLBACK;")
                except sqlite3.Error:
                    pass
                raise


class SqliteLedgerStore:
    """Ledger snapshot store persisted in SQLite.

    This provides:
      - read(): load latest ledger snapshot
      - write(st): overwrite the snapshot atomically
      - update(mut): read-modify-write inside a single write transaction
      - append_receipt()/list_receipts(): the tx receipt log

    The authoritative snapshot is a single row.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    @staticmethod
    def _load_row(con: sqlite3.Connection) -> Json:
        row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
        if row is None:
            raise FileNotFoundError("sqlite ledger_state is missing")
        st = json.loads(str(row["state_json"]))
        if not isinstance(st, dict):
            raise ValueError("ledger_state is not a JSON object")
        return st

    def read(self) -> Json:
        with self._db.connection() as con:
            return self._load_row(con)

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        payload = _canon_json(st)
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO ledger_state(id, height, tip, state_json, updated_ts_ms)
                VALUES(1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  height=excluded.height,
                  tip=excluded.tip,
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (int(st.get("height", 0)), str(st.get("tip") or ""), payload, _now_ms()),
            )

    def update(self, mut: Callable[[Json], Any]) -> Any:
        """Run mut(state) and persist the result in one write transaction.

        If mut raises, the transaction rolls back and the stored snapshot is
        untouched. Returns whatever mut returns.
        """
        with self._db.write_tx() as con:
            st = self._load_row(con)

            out = mut(st)

            con.execute(
                "UPDATE ledger_state SET height=?, tip=?, state_json=?, updated_ts_ms=? WHERE id=1;",
                (int(st.get("height", 0)), str(st.get("tip") or ""), _canon_json(st), _now_ms()),
            )
            return out

    def append_receipt(self, receipt: Json) -> None:
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO tx_receipts(tx_id, tx_type, signer, ok, height, receipt_json, created_ts_ms)
                VALUES(?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    str(receipt.get("tx_id") or ""),
                    str(receipt.get("tx_type") or ""),
                    str(receipt.get("signer") or ""),
                    1 if receipt.get("ok") else 0,
                    int(receipt.get("height", 0) or 0),
                    _canon_json(receipt),
                    _now_ms(),
                ),
            )

    def list_receipts(self, *, tx_id: Optional[str] = None, limit: int = 100) -> List[Json]:
        lim = max(1, int(limit))
        with self._db.connection() as con:
            if tx_id:
                rows = con.execute(
                    "SELECT receipt_json FROM tx_receipts WHERE tx_id=? ORDER BY seq ASC LIMIT ?;",
                    (str(tx_id), lim),
                ).fetchall()
            else:
                rows = con.execute(
                    "SELECT receipt_json FROM tx_receipts ORDER BY seq ASC LIMIT ?;",
                    (lim,),
                ).fetchall()
        return [json.loads(str(r["receipt_json"])) for r in rows]
