"""In-process collaborators for tests and local runs.

Each keeps its state in a dict guarded by a re-entrant lock, so concurrent
callers see the same atomic check-and-decrement a real stock service must
provide.
"""

import itertools
import threading
from typing import Dict, List, Optional

from collaborators import LoanAlreadyClosedError, LoanStore, PatronStatusCollaborator, StockCollaborator
from loan import Loan, PatronStatus, StockInfo
from results import CallResult, Outcome


class InMemoryPatronDirectory(PatronStatusCollaborator):
    def __init__(self, patrons: Optional[Dict[int, bool]] = None) -> None:
        self._patrons: Dict[int, bool] = dict(patrons or {})
        self._lock = threading.RLock()
        self.unavailable = False
        self.calls: List[int] = []

    def set_active(self, user_id: int, active: bool) -> None:
        with self._lock:
            self._patrons[user_id] = active

    def check_active(self, user_id: int) -> CallResult[PatronStatus]:
        with self._lock:
            self.calls.append(user_id)
            if self.unavailable:
                return CallResult.unavailable("patron service is down")
            if user_id not in self._patrons:
                return CallResult.not_found(f"patron {user_id} does not exist")
            status = PatronStatus(user_id=user_id, active=self._patrons[user_id])
        if not status.active:
            return CallResult(Outcome.REJECTED, status, detail=f"patron {user_id} is not active")
        return CallResult.success(status)


class InMemoryStockService(StockCollaborator):
    """Copy counts per book; ``reserve`` never takes a count below zero."""

    def __init__(self, copies: Optional[Dict[int, int]] = None) -> None:
        self._copies: Dict[int, int] = dict(copies or {})
        if any(count < 0 for count in self._copies.values()):
            raise ValueError("Copy count cannot be negative.")
        self._lock = threading.RLock()
        self.unavailable = False
        self.fail_reserve = False
        self.fail_release = False
        self.calls: List[tuple] = []

    def set_copies(self, book_id: int, copies: int) -> None:
        if copies < 0:
            raise ValueError("Copy count cannot be negative.")
        with self._lock:
            self._copies[book_id] = copies

    def copies(self, book_id: int) -> Optional[int]:
        with self._lock:
            return self._copies.get(book_id)

    def read_stock(self, book_id: int) -> CallResult[StockInfo]:
        with self._lock:
            self.calls.append(("read", book_id))
            if self.unavailable:
                return CallResult.unavailable("stock service is down")
            if book_id not in self._copies:
                return CallResult.not_found(f"book {book_id} does not exist")
            return CallResult.success(StockInfo(book_id=book_id, available_copies=self._copies[book_id]))

    def reserve(self, book_id: int) -> CallResult:
        with self._lock:
            self.calls.append(("reserve", book_id))
            if self.unavailable or self.fail_reserve:
                return CallResult.unavailable("stock service is down")
            if book_id not in self._copies:
                return CallResult.not_found(f"book {book_id} does not exist")
            if self._copies[book_id] <= 0:
                return CallResult.rejected(f"book {book_id} has no copies left")
            self._copies[book_id] -= 1
            return CallResult.success()

    def release(self, book_id: int) -> CallResult:
        with self._lock:
            self.calls.append(("release", book_id))
            if self.unavailable or self.fail_release:
                return CallResult.unavailable("stock service is down")
            if book_id not in self._copies:
                return CallResult.unavailable(f"book {book_id} does not exist")
            self._copies[book_id] += 1
            return CallResult.success()


class InMemoryLoanStore(LoanStore):
    def __init__(self) -> None:
        self._loans: Dict[int, Loan] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self.fail_writes = False
        self.updates: List[Loan] = []

    @staticmethod
    def _copy(loan: Loan) -> Loan:
        return Loan.from_dict(loan.to_dict())

    def create(self, loan: Loan) -> Loan:
        with self._lock:
            if self.fail_writes:
                raise RuntimeError("loan store is not writable")
            stored = self._copy(loan)
            stored.id = next(self._ids)
            self._loans[stored.id] = stored
            return self._copy(stored)

    def find_by_id(self, loan_id: int) -> Optional[Loan]:
        with self._lock:
            loan = self._loans.get(loan_id)
            return self._copy(loan) if loan else None

    def find_by(self, *, user_id: Optional[int] = None, book_id: Optional[int] = None,
                active: Optional[bool] = None) -> List[Loan]:
        with self._lock:
            loans = [self._copy(loan) for _, loan in sorted(self._loans.items())]
        if user_id is not None:
            loans = [loan for loan in loans if loan.user_id == user_id]
        if book_id is not None:
            loans = [loan for loan in loans if loan.book_id == book_id]
        if active is not None:
            loans = [loan for loan in loans if loan.is_active == active]
        return loans

    def update(self, loan: Loan) -> Loan:
        with self._lock:
            if self.fail_writes:
                raise RuntimeError("loan store is not writable")
            stored = self._loans.get(loan.id)
            if stored is None:
                raise LookupError(f"Loan {loan.id} does not exist.")
            if not stored.is_active:
                raise LoanAlreadyClosedError(f"Loan {loan.id} is already closed.")
            self._loans[loan.id] = self._copy(loan)
            self.updates.append(self._copy(loan))
            return self._copy(loan)

    def add(self, loan: Loan) -> Loan:
        """Seed a loan as-is, keeping its id and dates."""
        with self._lock:
            if loan.id is None:
                loan.id = next(self._ids)
            self._loans[loan.id] = self._copy(loan)
            self._ids = itertools.count(max(self._loans) + 1)
            return self._copy(loan)
