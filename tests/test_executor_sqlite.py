# tests/test_executor_sqlite.py
from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from bookledger.runtime.errors import AlreadyBorrowed
from bookledger.runtime.executor import ExecutorError, LedgerExecutor
from bookledger.runtime.single_writer import SingleWriterLockHeld

CHAIN_ID = "bookledger-sqlite"


def _raw_state_json(db_path: str) -> str:
    con = sqlite3.connect(db_path)
    try:
        row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
        assert row is not None
        return str(row[0])
    finally:
        con.close()


def test_state_survives_reopen(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")

    ex = LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner")
    ex.register_book("owner", "Book1", 3)
    ex.borrow_book("alice", 1)
    ex.close()

    ex2 = LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner")
    assert ex2.height == 2
    book = ex2.get_book(1)
    assert book is not None and book.copies == 2
    assert ex2.is_currently_borrowed(1, "alice") is True
    assert len(ex2.receipts()) == 2

    # Nonces survive too.
    ex2.return_book("alice", 1)
    assert ex2.read_state()["accounts"]["alice"]["nonce"] == 2


def test_owner_cannot_change_after_genesis(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner").close()

    with pytest.raises(ExecutorError, match="owner mismatch"):
        LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="mallory")


def test_chain_id_mismatch_refuses_to_start(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner").close()

    with pytest.raises(ExecutorError, match="chain_id mismatch"):
        LedgerExecutor(db_path=db_path, chain_id="other-chain", owner="owner")

    with pytest.raises(ExecutorError, match="require_signatures mismatch"):
        LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner", require_signatures=True)


def test_rejected_tx_leaves_persisted_state_byte_identical(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    ex = LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner")
    ex.register_book("owner", "Book1", 3)
    ex.borrow_book("alice", 1)

    before = _raw_state_json(db_path)

    with pytest.raises(AlreadyBorrowed):
        ex.borrow_book("alice", 1)
    res = ex.submit_tx({"tx_type": "BOOK_BORROW", "signer": "bob", "nonce": 9, "payload": {"book_id": 1}})
    assert res["error"] == "bad_nonce"

    assert _raw_state_json(db_path) == before


def test_single_writer_lock_blocks_second_executor(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")

    ex = LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner", single_writer=True)
    with pytest.raises(SingleWriterLockHeld):
        LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner", single_writer=True)

    ex.close()
    with LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner", single_writer=True) as ex2:
        assert ex2.height == 0


def test_concurrent_executors_serialize_writes(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")

    a = LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner")
    b = LedgerExecutor(db_path=db_path, chain_id=CHAIN_ID, owner="owner")

    a.register_book("owner", "Book1", 1)
    b.borrow_book("alice", 1)

    # a sees b's write: the last copy is gone.
    res = a.submit_tx({"tx_type": "BOOK_BORROW", "signer": "bob", "nonce": 1, "payload": {"book_id": 1}})
    assert res["error"] == "book_not_available"
    assert a.height == 2
