from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ApplyError(Exception):
    """Canonical error type for domain apply and dispatch failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


# ---------------------------------------------------------------------------
# Lending taxonomy
#
# Each precondition failure of the lending ledger has its own subclass so
# callers can catch exactly one kind. The code/reason pair stays stable for
# receipts and logs.
# ---------------------------------------------------------------------------


class NotAuthorized(ApplyError):
    def __init__(self, caller: str) -> None:
        super().__init__("not_authorized", "only_owner_can_perform_action", {"caller": caller})


class DuplicateTitle(ApplyError):
    def __init__(self, title: str) -> None:
        super().__init__("book_already_exists", "title_already_registered", {"title": title})


class AdministratorCannotBorrow(ApplyError):
    def __init__(self, caller: str) -> None:
        super().__init__("owner_cannot_borrow", "owner_cannot_perform_action", {"caller": caller})


class BookNotAvailable(ApplyError):
    def __init__(self, book_id: int) -> None:
        super().__init__("book_not_available", "no_copies_left", {"book_id": int(book_id)})


class AlreadyBorrowed(ApplyError):
    def __init__(self, book_id: int, title: str = "") -> None:
        super().__init__(
            "book_already_borrowed",
            "outstanding_borrow_exists",
            {"book_id": int(book_id), "title": title},
        )


class NotBorrowed(ApplyError):
    def __init__(self, book_id: int) -> None:
        super().__init__("book_not_borrowed", "no_outstanding_borrow", {"book_id": int(book_id)})


@dataclass
class AdmissionRejected(Exception):
    """Raised by executor convenience calls when admission refuses a tx."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}:{self.reason}:{self.details}"


__all__ = [
    "ApplyError",
    "AdmissionRejected",
    "NotAuthorized",
    "DuplicateTitle",
    "AdministratorCannotBorrow",
    "BookNotAvailable",
    "AlreadyBorrowed",
    "NotBorrowed",
]
