from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Union

from bookledger.crypto.sig import is_canonical_pubkey_hex, public_key_hex, sign_tx_envelope_dict
from bookledger.ledger.state import BookDetails, LedgerView
from bookledger.runtime import metrics
from bookledger.runtime.apply.library import ensure_library
from bookledger.runtime.domain_apply import ApplyError, apply_tx_atomic
from bookledger.runtime.errors import AdmissionRejected
from bookledger.runtime.ledger_logging import log_event
from bookledger.runtime.memory_store import MemoryLedgerStore
from bookledger.runtime.single_writer import SingleWriterLock
from bookledger.runtime.sqlite_db import SqliteDB, SqliteLedgerStore
from bookledger.runtime.supported_txs import BOOK_BORROW, BOOK_REGISTER, BOOK_RETURN
from bookledger.runtime.tx_admission import admit_tx
from bookledger.runtime.tx_admission_types import TxEnvelope
from bookledger.runtime.tx_id import compute_tx_id

Json = Dict[str, Any]
LedgerStore = Union[SqliteLedgerStore, MemoryLedgerStore]

MEMORY_DB_PATH = ":memory:"

_LOG = logging.getLogger("bookledger.executor")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _safe_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


class ExecutorError(RuntimeError):
    pass


class LedgerExecutor:
    """Lending ledger executor.

    Every mutation is a tx envelope that goes through admission and the
    atomic apply inside one store update, so the nonce check and the state
    write see the same snapshot. Queries read the latest committed state.
    """

    def __init__(
        self,
        *,
        chain_id: str,
        owner: str,
        db_path: str = MEMORY_DB_PATH,
        require_signatures: bool = False,
        single_writer: bool = False,
    ) -> None:
        self.chain_id = str(chain_id or "").strip()
        self.owner = str(owner or "").strip()
        self.db_path = str(db_path or MEMORY_DB_PATH)
        self.require_signatures = bool(require_signatures)

        if not self.chain_id:
            raise ExecutorError("chain_id must be a non-empty string")
        if not self.owner:
            raise ExecutorError("owner must be a non-empty string")
        if self.require_signatures and not is_canonical_pubkey_hex(self.owner):
            raise ExecutorError("owner must be a lower-case hex ed25519 public key when signatures are required")

        # One process may host several ledgers; their series stay apart.
        self._metric_labels = {"chain_id": self.chain_id}

        self._lock: Optional[SingleWriterLock] = None
        if single_writer and self.db_path != MEMORY_DB_PATH:
            self._lock = SingleWriterLock(self.db_path + ".lock")
            self._lock.acquire()

        try:
            self._store: LedgerStore = self._open_store()
            self._load_or_genesis()
        except BaseException:
            self.close()
            raise

    def _open_store(self) -> LedgerStore:
        if self.db_path == MEMORY_DB_PATH:
            return MemoryLedgerStore()
        return SqliteLedgerStore(db=SqliteDB(path=self.db_path))

    def _initial_state(self) -> Json:
        st: Json = {
            "chain_id": self.chain_id,
            "height": 0,
            "tip": "",
            "created_ms": _now_ms(),
            "params": {
                "owner": self.owner,
                "chain_id": self.chain_id,
                "require_signatures": self.require_signatures,
            },
            "accounts": {},
        }
        ensure_library(st)
        return st

    def _load_or_genesis(self) -> None:
        if not self._store.exists():
            self._store.write(self._initial_state())
            log_event(
                _LOG,
                "ledger_genesis",
                chain_id=self.chain_id,
                owner=self.owner,
                require_signatures=self.require_signatures,
                db_path=self.db_path,
            )
            return

        st = self._store.read()
        params = st.get("params") if isinstance(st.get("params"), dict) else {}

        # Genesis params are fixed; refuse to reinterpret an existing ledger.
        st_chain_id = str(st.get("chain_id") or "").strip()
        if st_chain_id != self.chain_id:
            raise ExecutorError(f"chain_id mismatch: db={st_chain_id!r} executor={self.chain_id!r}. Refuse to start.")

        st_owner = str(params.get("owner") or "").strip()
        if st_owner != self.owner:
            raise ExecutorError(f"owner mismatch: db={st_owner!r} executor={self.owner!r}. Refuse to start.")

        st_sigs = bool(params.get("require_signatures", False))
        if st_sigs != self.require_signatures:
            raise ExecutorError(
                f"require_signatures mismatch: db={st_sigs!r} executor={self.require_signatures!r}. Refuse to start."
            )

        log_event(
            _LOG,
            "ledger_opened",
            chain_id=self.chain_id,
            height=_safe_int(st.get("height"), 0),
            db_path=self.db_path,
        )

    # ----------------------------
    # Lifecycle
    # ----------------------------

    def close(self) -> None:
        if self._lock is not None:
            self._lock.release()
            self._lock = None

    def __enter__(self) -> "LedgerExecutor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ----------------------------
    # Tx submission
    # ----------------------------

    def _execute(self, env: Any) -> Json:
        """Admit and apply one tx. Raises AdmissionRejected or ApplyError."""
        if isinstance(env, TxEnvelope):
            env = env.to_json()
        tx_id = compute_tx_id(self.chain_id, env) if isinstance(env, dict) else ""
        seen: Json = {"height": 0}

        def _mut(st: Json) -> Json:
            seen["height"] = _safe_int(st.get("height"), 0)

            admit_tx(env, LedgerView.from_ledger(st), chain_id=self.chain_id).raise_if_rejected()

            meta = apply_tx_atomic(st, env)
            st["height"] = seen["height"] + 1
            st["tip"] = tx_id
            return {"meta": meta, "books": LedgerView.from_ledger(st).book_count()}

        try:
            out = self._store.update(_mut)
        except (AdmissionRejected, ApplyError) as e:
            self._record_rejection(env, tx_id, height=seen["height"], err=e)
            raise

        result = out["meta"]
        height = seen["height"] + 1
        tx_type = str(env.get("tx_type") or "").strip().upper()
        signer = str(env.get("signer") or "")
        self._store.append_receipt(
            {
                "tx_id": tx_id,
                "tx_type": tx_type,
                "signer": signer,
                "ok": True,
                "height": height,
                "result": result,
            }
        )
        metrics.inc_counter("tx_applied_total", labels=self._metric_labels)
        metrics.set_gauge("ledger_height", height, labels=self._metric_labels)
        metrics.set_gauge("books_registered", int(out["books"]), labels=self._metric_labels)
        log_event(_LOG, "tx_applied", tx_id=tx_id, tx_type=tx_type, signer=signer, height=height)
        return {"ok": True, "tx_id": tx_id, "height": height, "result": result}

    def _record_rejection(
        self,
        env: Any,
        tx_id: str,
        *,
        height: int,
        err: Union[AdmissionRejected, ApplyError],
    ) -> None:
        stage = "admission" if isinstance(err, AdmissionRejected) else "apply"
        tx_type = str(env.get("tx_type") or "").strip().upper() if isinstance(env, dict) else ""
        signer = str(env.get("signer") or "") if isinstance(env, dict) else ""

        self._store.append_receipt(
            {
                "tx_id": tx_id,
                "tx_type": tx_type,
                "signer": signer,
                "ok": False,
                "height": int(height),
                "stage": stage,
                "error": err.code,
                "reason": err.reason,
                "details": err.details,
            }
        )
        metrics.inc_counter("tx_rejected_total", labels=self._metric_labels)
        log_event(
            _LOG,
            "tx_rejected",
            level=logging.WARNING,
            tx_id=tx_id,
            tx_type=tx_type,
            signer=signer,
            stage=stage,
            error=err.code,
            reason=err.reason,
        )

    def submit_tx(self, env: Union[Json, TxEnvelope]) -> Json:
        """Apply a tx envelope (dict or TxEnvelope); never raises for rejected txs."""
        try:
            return self._execute(env)
        except (AdmissionRejected, ApplyError) as e:
            return {"ok": False, "error": e.code, "reason": e.reason, "details": e.details}

    def _call(self, tx_type: str, caller: str, payload: Json, *, privkey: Optional[str] = None) -> Json:
        signer = str(caller or "")
        if not signer and privkey:
            signer = public_key_hex(privkey)

        tx: Json = {
            "tx_type": tx_type,
            "signer": signer,
            "nonce": self.view().get_nonce(signer) + 1,
            "payload": payload,
        }
        if privkey:
            tx = sign_tx_envelope_dict(tx=tx, chain_id=self.chain_id, privkey=privkey)
        return self._execute(tx)["result"]

    def register_book(self, caller: str, title: str, copies: int, *, privkey: Optional[str] = None) -> int:
        """Register a title with `copies` copies; returns the new book id."""
        out = self._call(BOOK_REGISTER, caller, {"title": title, "copies": copies}, privkey=privkey)
        return int(out["book_id"])

    def borrow_book(self, caller: str, book_id: int, *, privkey: Optional[str] = None) -> Json:
        return self._call(BOOK_BORROW, caller, {"book_id": book_id}, privkey=privkey)

    def return_book(self, caller: str, book_id: int, *, privkey: Optional[str] = None) -> Json:
        return self._call(BOOK_RETURN, caller, {"book_id": book_id}, privkey=privkey)

    # ----------------------------
    # Queries
    # ----------------------------

    def read_state(self) -> Json:
        return self._store.read()

    def view(self) -> LedgerView:
        return LedgerView.from_ledger(self._store.read())

    @property
    def height(self) -> int:
        return self.view().height

    def get_book(self, book_id: int) -> Optional[BookDetails]:
        return self.view().get_book(book_id)

    def title_exists(self, title: str) -> bool:
        return self.view().title_exists(title)

    def is_currently_borrowed(self, book_id: int, user: str) -> bool:
        return self.view().is_currently_borrowed(book_id, user)

    def has_ever_borrowed(self, book_id: int, user: str) -> bool:
        return self.view().has_ever_borrowed(book_id, user)

    def borrowers_of(self, book_id: int) -> List[str]:
        return self.view().borrowers_of(book_id)

    def outstanding_books_of(self, user: str) -> List[int]:
        return self.view().outstanding_books_of(user)

    def receipts(self, *, tx_id: Optional[str] = None, limit: int = 100) -> List[Json]:
        return self._store.list_receipts(tx_id=tx_id, limit=limit)

    def metrics_text(self) -> str:
        return metrics.format_prometheus()
