from __future__ import annotations

from dataclasses import dataclass
from datetime import date


def _parse_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class Loan:
    """A single loan of one book copy to one patron.

    A loan with no ``return_date`` is active. Closing it sets ``return_date``
    exactly once; a closed loan never becomes active again.
    """

    def __init__(self, user_id: int, book_id: int, loan_date: date, return_date: date | None = None,
                 id: int | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.loan_date = loan_date
        self.return_date = return_date

    @property
    def is_active(self) -> bool:
        return self.return_date is None

    def closed_on(self, day: date) -> "Loan":
        """Return a closed copy of this loan; the original is left untouched."""
        if not self.is_active:
            raise ValueError(f"Loan {self.id} was already returned on {self.return_date.isoformat()}.")
        return Loan(user_id=self.user_id, book_id=self.book_id, loan_date=self.loan_date,
                    return_date=day, id=self.id)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        state = "active" if self.is_active else f"returned {self.return_date.isoformat()}"
        return f"Loan #{self.id}: user {self.user_id} / book {self.book_id} ({state})"

    def __repr__(self) -> str:
        return (f"Loan(id={self.id!r}, user_id={self.user_id!r}, book_id={self.book_id!r}, "
                f"loan_date={self.loan_date!r}, return_date={self.return_date!r})")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Loan):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "loan_date": self.loan_date.isoformat() if self.loan_date else None,
            "return_date": self.return_date.isoformat() if self.return_date else None,
        }

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        # SQLite rows carry dates as ISO strings
        return Loan(
            id=data.get("id"),
            user_id=int(data["user_id"]),
            book_id=int(data["book_id"]),
            loan_date=_parse_date(data["loan_date"]),
            return_date=_parse_date(data.get("return_date")),
        )


def _payload_object(data, what: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"{what} payload is not a JSON object")
    return data


@dataclass
class StockInfo:
    """Read-only view of a book's stock as reported by the stock service."""
    book_id: int
    available_copies: int
    title: str | None = None
    available: bool | None = None

    def __post_init__(self) -> None:
        if self.available is None:
            self.available = self.available_copies > 0

    @property
    def can_lend(self) -> bool:
        return bool(self.available) and self.available_copies > 0

    @staticmethod
    def from_payload(book_id: int, data: dict) -> "StockInfo":
        data = _payload_object(data, "stock")
        copies = data.get("availableCopies", data.get("available_copies"))
        if copies is None:
            raise ValueError("stock payload has no availableCopies")
        # bool is an int subclass
        if isinstance(copies, bool) or not isinstance(copies, int) or copies < 0:
            raise ValueError(f"stock payload has an invalid availableCopies: {copies!r}")
        available = data.get("available")
        if available is not None and not isinstance(available, bool):
            raise ValueError(f"stock payload has a non-boolean available flag: {available!r}")
        return StockInfo(
            book_id=int(data.get("id") or book_id),
            available_copies=copies,
            title=data.get("title"),
            available=available,
        )


@dataclass
class PatronStatus:
    """Read-only view of a patron's activity as reported by the patron service."""
    user_id: int
    active: bool
    full_name: str | None = None

    @staticmethod
    def from_payload(user_id: int, data: dict) -> "PatronStatus":
        data = _payload_object(data, "patron")
        if "active" not in data:
            raise ValueError("patron payload has no active flag")
        if not isinstance(data["active"], bool):
            raise ValueError(f"patron payload has a non-boolean active flag: {data['active']!r}")
        return PatronStatus(
            user_id=int(data.get("id") or user_id),
            active=data["active"],
            full_name=data.get("fullName", data.get("full_name")),
        )
