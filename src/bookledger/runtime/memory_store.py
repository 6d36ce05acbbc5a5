from __future__ import annotations

import copy
import threading
from typing import Any, Callable, Dict, List, Optional

Json = Dict[str, Any]


class MemoryLedgerStore:
    """
    In-process ledger store used for unit tests and ephemeral ledgers.

    - Does not touch the filesystem
    - Provides the same surface LedgerExecutor expects from SqliteLedgerStore:
        exists(), read(), write(), update(), append_receipt(), list_receipts()
    - update() is all-or-nothing: mut runs on a copy that is only installed
      if it returns without raising
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._state: Optional[Json] = None
        self._receipts: List[Json] = []

    def exists(self) -> bool:
        with self._lock:
            return self._state is not None

    def read(self) -> Json:
        with self._lock:
            if self._state is None:
                raise FileNotFoundError("memory ledger_state is missing")
            return copy.deepcopy(self._state)

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        with self._lock:
            self._state = copy.deepcopy(st)

    def update(self, mut: Callable[[Json], Any]) -> Any:
        with self._lock:
            if self._state is None:
                raise FileNotFoundError("memory ledger_state is missing")
            working = copy.deepcopy(self._state)
            out = mut(working)
            self._state = working
            return out

    def append_receipt(self, receipt: Json) -> None:
        with self._lock:
            self._receipts.append(copy.deepcopy(receipt))

    def list_receipts(self, *, tx_id: Optional[str] = None, limit: int = 100) -> List[Json]:
        lim = max(1, int(limit))
        with self._lock:
            items = [r for r in self._receipts if not tx_id or r.get("tx_id") == tx_id]
            return copy.deepcopy(items[:lim])
