from __future__ import annotations

from bookledger.ledger.state import BookDetails, LedgerView
from bookledger.runtime.apply.library import ensure_library
from bookledger.runtime.domain_apply import apply_tx


def _env(tx_type, signer, payload):
    return {"tx_type": tx_type, "signer": signer, "nonce": 1, "payload": payload}


def _populated_state():
    st = {"params": {"owner": "owner", "require_signatures": False}, "accounts": {"owner": {"nonce": 2}}, "height": 7}
    ensure_library(st)
    apply_tx(st, _env("BOOK_REGISTER", "owner", {"title": "Book1", "copies": 3}))
    apply_tx(st, _env("BOOK_REGISTER", "owner", {"title": "Book2", "copies": 1}))
    apply_tx(st, _env("BOOK_BORROW", "alice", {"book_id": 1}))
    apply_tx(st, _env("BOOK_BORROW", "bob", {"book_id": 1}))
    apply_tx(st, _env("BOOK_BORROW", "alice", {"book_id": 2}))
    apply_tx(st, _env("BOOK_RETURN", "bob", {"book_id": 1}))
    return st


def test_get_book_and_title_exists():
    view = LedgerView.from_ledger(_populated_state())

    assert view.get_book(1) == BookDetails(book_id=1, title="Book1", copies=2)
    assert view.get_book(2) == BookDetails(book_id=2, title="Book2", copies=0)
    assert view.get_book(3) is None

    assert view.title_exists("Book1") is True
    assert view.title_exists("book1") is False


def test_borrow_queries():
    view = LedgerView.from_ledger(_populated_state())

    assert view.is_currently_borrowed(1, "alice") is True
    assert view.is_currently_borrowed(1, "bob") is False
    assert view.has_ever_borrowed(1, "bob") is True
    assert view.has_ever_borrowed(2, "bob") is False
    assert view.is_currently_borrowed(99, "alice") is False

    assert view.borrowers_of(1) == ["alice", "bob"]
    assert view.borrowers_of(99) == []
    assert view.outstanding_books_of("alice") == [1, 2]
    assert view.outstanding_books_of("bob") == []
    assert view.outstanding_books_of("carol") == []


def test_borrowers_of_returns_fresh_list():
    view = LedgerView.from_ledger(_populated_state())

    first = view.borrowers_of(1)
    first.append("mallory")

    assert view.borrowers_of(1) == ["alice", "bob"]


def test_view_is_detached_from_live_state():
    st = _populated_state()
    view = LedgerView.from_ledger(st)

    apply_tx(st, _env("BOOK_RETURN", "alice", {"book_id": 1}))

    assert view.is_currently_borrowed(1, "alice") is True
    assert LedgerView.from_ledger(st).is_currently_borrowed(1, "alice") is False


def test_params_accounts_and_round_trip():
    view = LedgerView.from_ledger(_populated_state())

    assert view.get_owner() == "owner"
    assert view.requires_signatures() is False
    assert view.get_nonce("owner") == 2
    assert view.get_nonce("nobody") == 0
    assert view.height == 7
    assert view.book_count() == 2

    again = LedgerView.from_ledger(view.to_ledger())
    assert again == view
