# src/bookledger/runtime/supported_txs.py
"""Build-time supported tx types.

Admission rejects anything outside this set before it reaches apply, and the
apply router fails closed on anything no domain applier claims.
"""

from __future__ import annotations

from typing import AbstractSet

BOOK_REGISTER = "BOOK_REGISTER"
BOOK_BORROW = "BOOK_BORROW"
BOOK_RETURN = "BOOK_RETURN"

# Owner-only tx types. Everyone else is refused at apply time.
OWNER_ONLY_TX_TYPES: AbstractSet[str] = frozenset({BOOK_REGISTER})

SUPPORTED_TX_TYPES: AbstractSet[str] = frozenset(
    {
        BOOK_REGISTER,
        BOOK_BORROW,
        BOOK_RETURN,
    }
)


__all__ = [
    "BOOK_REGISTER",
    "BOOK_BORROW",
    "BOOK_RETURN",
    "OWNER_ONLY_TX_TYPES",
    "SUPPORTED_TX_TYPES",
]
