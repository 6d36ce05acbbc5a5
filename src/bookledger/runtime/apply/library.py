# src/bookledger/runtime/apply/library.py
from __future__ import annotations

"""
Library lending apply semantics.

Covers:
- BOOK_REGISTER (owner only)
- BOOK_BORROW
- BOOK_RETURN

State shape (under state["library"]):
  next_book_id        next id to allocate; ids start at 1
  books_by_id         {"<id>": {"book_id", "title", "copies", "total_copies"}}
  book_id_by_title    {title: id}
  borrows             {"<id>": {user: {"borrowed": bool, "ever_borrowed": bool}}}
  borrowers_by_book   {"<id>": [user, ...]}  append-only, first-borrow order
  unreturned_by_user  {user: [id, ...]}

Dict keys are strings because the state round-trips through JSON.

Every guard runs before the first book or borrow record is touched; the
atomic wrapper in domain_apply discards anything else a rejected tx wrote.
"""

from typing import Any, Dict, List, Optional, Set

from bookledger.runtime.errors import (
    AdministratorCannotBorrow,
    AlreadyBorrowed,
    ApplyError,
    BookNotAvailable,
    DuplicateTitle,
    NotAuthorized,
    NotBorrowed,
)
from bookledger.runtime.supported_txs import (
    BOOK_BORROW,
    BOOK_REGISTER,
    BOOK_RETURN,
    OWNER_ONLY_TX_TYPES,
)
from bookledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _as_dict(x: Any) -> Json:
    return x if isinstance(x, dict) else {}


def _as_list(x: Any) -> List[Any]:
    return x if isinstance(x, list) else []


def _as_str(x: Any) -> str:
    return x if isinstance(x, str) else ""


def _as_book_id(x: Any, tx_type: str) -> int:
    if isinstance(x, bool) or not isinstance(x, (int, str)):
        raise ApplyError("invalid_payload", "bad_book_id", {"tx_type": tx_type, "book_id": x})
    try:
        v = int(x)
    except ValueError:
        raise ApplyError("invalid_payload", "bad_book_id", {"tx_type": tx_type, "book_id": x}) from None
    if v < 0:
        raise ApplyError("invalid_payload", "bad_book_id", {"tx_type": tx_type, "book_id": v})
    return v


def _as_copies(x: Any, tx_type: str) -> int:
    if isinstance(x, bool) or not isinstance(x, int) or x < 0:
        raise ApplyError("invalid_payload", "bad_copies", {"tx_type": tx_type, "copies": x})
    return int(x)


def _owner(state: Json) -> str:
    params = _as_dict(state.get("params"))
    return str(params.get("owner") or "").strip()


def _ensure_sub(d: Json, key: str) -> Json:
    cur = d.get(key)
    if not isinstance(cur, dict):
        cur = {}
        d[key] = cur
    return cur


def ensure_library(state: Json) -> Json:
    lib = _ensure_sub(state, "library")
    if not isinstance(lib.get("next_book_id"), int) or int(lib["next_book_id"]) < 1:
        lib["next_book_id"] = 1
    for k in ("books_by_id", "book_id_by_title", "borrows", "borrowers_by_book", "unreturned_by_user"):
        _ensure_sub(lib, k)
    return lib


def _borrow_record(lib: Json, book_key: str, user: str) -> Optional[Json]:
    rec = _as_dict(_as_dict(lib.get("borrows")).get(book_key)).get(user)
    return rec if isinstance(rec, dict) else None


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


def _apply_book_register(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)

    title = _as_str(payload.get("title"))
    if not title:
        raise ApplyError("invalid_payload", "missing_title", {"tx_type": env.tx_type})
    copies = _as_copies(payload.get("copies"), env.tx_type)

    lib = ensure_library(state)
    if title in lib["book_id_by_title"]:
        raise DuplicateTitle(title)

    book_id = int(lib["next_book_id"])
    lib["books_by_id"][str(book_id)] = {
        "book_id": book_id,
        "title": title,
        "copies": copies,
        "total_copies": copies,
    }
    lib["book_id_by_title"][title] = book_id
    lib["next_book_id"] = book_id + 1
    return {"applied": BOOK_REGISTER, "book_id": book_id, "title": title, "copies": copies}


# ---------------------------------------------------------------------------
# Borrow / Return
# ---------------------------------------------------------------------------


def _apply_book_borrow(state: Json, env: TxEnvelope) -> Json:
    if env.signer == _owner(state):
        raise AdministratorCannotBorrow(env.signer)

    payload = _as_dict(env.payload)
    book_id = _as_book_id(payload.get("book_id"), env.tx_type)
    key = str(book_id)

    lib = ensure_library(state)
    book = _as_dict(lib["books_by_id"].get(key))

    # Unknown ids read as zero copies.
    if int(book.get("copies", 0) or 0) <= 0:
        raise BookNotAvailable(book_id)

    rec = _borrow_record(lib, key, env.signer)
    if rec is not None and bool(rec.get("borrowed", False)):
        raise AlreadyBorrowed(book_id, _as_str(book.get("title")))

    book["copies"] = int(book["copies"]) - 1

    by_user = _ensure_sub(lib["borrows"], key)
    by_user[env.signer] = {"borrowed": True, "ever_borrowed": True}

    borrowers = _as_list(lib["borrowers_by_book"].get(key))
    if env.signer not in borrowers:
        borrowers.append(env.signer)
    lib["borrowers_by_book"][key] = borrowers

    unreturned = _as_list(lib["unreturned_by_user"].get(env.signer))
    if book_id not in unreturned:
        unreturned.append(book_id)
    lib["unreturned_by_user"][env.signer] = unreturned

    return {"applied": BOOK_BORROW, "book_id": book_id, "borrower": env.signer, "copies": book["copies"]}


def _apply_book_return(state: Json, env: TxEnvelope) -> Json:
    payload = _as_dict(env.payload)
    book_id = _as_book_id(payload.get("book_id"), env.tx_type)
    key = str(book_id)

    lib = ensure_library(state)
    rec = _borrow_record(lib, key, env.signer)
    if rec is None or not bool(rec.get("borrowed", False)):
        raise NotBorrowed(book_id)

    book = _as_dict(lib["books_by_id"].get(key))
    copies = int(book.get("copies", 0) or 0)
    total = int(book.get("total_copies", copies) or 0)
    if copies >= total:
        raise ApplyError(
            "invariant_violation",
            "copies_exceed_registered",
            {"book_id": book_id, "copies": copies, "total_copies": total},
        )

    book["copies"] = copies + 1
    rec["borrowed"] = False

    unreturned = _as_list(lib["unreturned_by_user"].get(env.signer))
    lib["unreturned_by_user"][env.signer] = [b for b in unreturned if int(b) != book_id]

    return {"applied": BOOK_RETURN, "book_id": book_id, "borrower": env.signer, "copies": book["copies"]}


LIBRARY_TX_TYPES: Set[str] = {
    BOOK_REGISTER,
    BOOK_BORROW,
    BOOK_RETURN,
}


def apply_library(state: Json, env: TxEnvelope) -> Optional[Json]:
    t = str(env.tx_type or "").strip().upper()
    if t not in LIBRARY_TX_TYPES:
        return None

    # Owner gate runs before any payload checks.
    if t in OWNER_ONLY_TX_TYPES and env.signer != _owner(state):
        raise NotAuthorized(env.signer)

    if t == BOOK_REGISTER:
        return _apply_book_register(state, env)
    if t == BOOK_BORROW:
        return _apply_book_borrow(state, env)
    if t == BOOK_RETURN:
        return _apply_book_return(state, env)

    return None
