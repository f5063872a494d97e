"""Interfaces of the services and the store the loan service depends on."""

from abc import ABC, abstractmethod
from typing import List, Optional

from loan import Loan, PatronStatus, StockInfo
from results import CallResult


class PatronStatusCollaborator(ABC):
    """Owner of patron activity state."""

    @abstractmethod
    def check_active(self, user_id: int) -> CallResult[PatronStatus]:
        """OK with the patron's status when active, NOT_FOUND for an unknown
        patron, REJECTED for an inactive one, UNAVAILABLE otherwise."""

    def close(self) -> None:
        return None


class StockCollaborator(ABC):
    """Owner of the authoritative per-book copy counts."""

    @abstractmethod
    def read_stock(self, book_id: int) -> CallResult[StockInfo]:
        """OK with the current stock, NOT_FOUND or UNAVAILABLE."""

    @abstractmethod
    def reserve(self, book_id: int) -> CallResult:
        """Take one copy. Must be atomic: REJECTED when the count is zero."""

    @abstractmethod
    def release(self, book_id: int) -> CallResult:
        """Give one copy back."""

    def close(self) -> None:
        return None


class LoanAlreadyClosedError(ValueError):
    """Raised by ``LoanStore.update`` when the stored loan already has a return date."""


class LoanStore(ABC):
    """Persistence for loan records."""

    @abstractmethod
    def create(self, loan: Loan) -> Loan: ...

    @abstractmethod
    def find_by_id(self, loan_id: int) -> Optional[Loan]: ...

    @abstractmethod
    def find_by(self, *, user_id: Optional[int] = None, book_id: Optional[int] = None,
                active: Optional[bool] = None) -> List[Loan]:
        """Loans matching every given criterion, ordered by id."""

    @abstractmethod
    def update(self, loan: Loan) -> Loan:
        """Store the return date; raises ``LoanAlreadyClosedError`` for a closed loan."""

    def count(self) -> int:
        return len(self.find_by())

    def ping(self) -> bool:
        return True
