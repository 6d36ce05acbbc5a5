from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict, List, Optional


Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class BookDetails:
    book_id: int
    title: str
    copies: int


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only ledger view used by admission and the query surface.

    Built from a deep copy of the state, so later writes to the live state
    never show through an existing view.
    """

    accounts: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    library: Dict[str, Any] = field(default_factory=dict)
    height: int = 0

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "LedgerView":
        return cls(
            accounts=copy.deepcopy(state.get("accounts", {})) if isinstance(state.get("accounts"), dict) else {},
            params=copy.deepcopy(state.get("params", {})) if isinstance(state.get("params"), dict) else {},
            library=copy.deepcopy(state.get("library", {})) if isinstance(state.get("library"), dict) else {},
            height=int(state.get("height", 0) or 0),
        )

    def to_ledger(self) -> Dict[str, Any]:
        return {
            "accounts": copy.deepcopy(self.accounts),
            "params": copy.deepcopy(self.params),
            "library": copy.deepcopy(self.library),
            "height": int(self.height),
        }

    # ------------------------------------------------------------------
    # accounts / params
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> Dict[str, Any]:
        acct = self.accounts.get(account_id)
        return acct if isinstance(acct, dict) else {}

    def get_nonce(self, account_id: str) -> int:
        acct = self.get_account(account_id)
        try:
            return int(acct.get("nonce", 0))
        except (TypeError, ValueError):
            return 0

    def get_owner(self) -> str:
        v = self.params.get("owner")
        return str(v).strip() if v is not None else ""

    def requires_signatures(self) -> bool:
        return bool(self.params.get("require_signatures", False))

    # ------------------------------------------------------------------
    # library queries
    # ------------------------------------------------------------------

    def _section(self, key: str) -> Dict[str, Any]:
        v = self.library.get(key)
        return v if isinstance(v, dict) else {}

    def get_book(self, book_id: int) -> Optional[BookDetails]:
        rec = self._section("books_by_id").get(str(int(book_id)))
        if not isinstance(rec, dict):
            return None
        return BookDetails(
            book_id=int(rec.get("book_id", book_id)),
            title=str(rec.get("title", "")),
            copies=int(rec.get("copies", 0) or 0),
        )

    def title_exists(self, title: str) -> bool:
        return title in self._section("book_id_by_title")

    def _borrow_record(self, book_id: int, user: str) -> Dict[str, Any]:
        by_user = self._section("borrows").get(str(int(book_id)))
        if not isinstance(by_user, dict):
            return {}
        rec = by_user.get(user)
        return rec if isinstance(rec, dict) else {}

    def is_currently_borrowed(self, book_id: int, user: str) -> bool:
        return bool(self._borrow_record(book_id, user).get("borrowed", False))

    def has_ever_borrowed(self, book_id: int, user: str) -> bool:
        return bool(self._borrow_record(book_id, user).get("ever_borrowed", False))

    def borrowers_of(self, book_id: int) -> List[str]:
        borrowers = self._section("borrowers_by_book").get(str(int(book_id)))
        if not isinstance(borrowers, list):
            return []
        return [str(u) for u in borrowers]

    def outstanding_books_of(self, user: str) -> List[int]:
        ids = self._section("unreturned_by_user").get(user)
        if not isinstance(ids, list):
            return []
        return [int(b) for b in ids]

    def book_count(self) -> int:
        return len(self._section("books_by_id"))
