import logging
from datetime import date
from typing import Callable, List, Optional

from collaborators import LoanAlreadyClosedError, LoanStore, PatronStatusCollaborator, StockCollaborator
from config import settings
from database import SQLiteLoanStore
from loan import Loan
from remote_services import HttpPatronStatusClient, HttpStockClient
from results import CallResult, FailureCause, LoanResult, Outcome

logger = logging.getLogger(__name__)


class LoanService:
    """Creates and closes loans across the patron service, the stock service and the loan store.

    No transaction spans the three. Consistency comes from the call order:
    patron check, stock read, reservation, then the loan record on create;
    release, then the loan record on return. When the store fails after a
    stock change, a best-effort compensating call undoes that change unless
    ``compensate`` is off. A return that loses a race against another return
    of the same loan always takes back its duplicate release.
    """

    def __init__(self, patrons: PatronStatusCollaborator, stock: StockCollaborator, store: LoanStore,
                 today: Callable[[], date] = date.today, compensate: bool = True) -> None:
        self.patrons = patrons
        self.stock = stock
        self.store = store
        self.today = today
        self.compensate = compensate

    # ------------------------- Core operations ------------------------- #
    def create_loan(self, user_id: Optional[int], book_id: Optional[int]) -> LoanResult:
        """Lend one copy of ``book_id`` to ``user_id``."""
        if user_id is None or book_id is None:
            missing = "userId" if user_id is None else "bookId"
            return self._fail(FailureCause.INVALID_REQUEST, f"{missing} is required.")

        patron = self.patrons.check_active(user_id)
        if not patron.ok:
            return self._patron_failure(user_id, patron)

        stock = self.stock.read_stock(book_id)
        if stock.outcome is Outcome.NOT_FOUND:
            return self._fail(FailureCause.BOOK_NOT_FOUND, f"Book {book_id} was not found.")
        if not stock.ok:
            return self._fail(FailureCause.STOCK_SERVICE_UNAVAILABLE,
                              f"Could not check availability of book {book_id}.", stock)
        if not stock.value.can_lend:
            return self._fail(FailureCause.BOOK_UNAVAILABLE, f"Book {book_id} has no copies available.")

        reservation = self.stock.reserve(book_id)
        if reservation.outcome is Outcome.REJECTED:
            # Another loan took the last copy between the read and the reservation
            return self._fail(FailureCause.BOOK_UNAVAILABLE, f"Book {book_id} has no copies available.",
                              reservation)
        if not reservation.ok:
            return self._fail(FailureCause.STOCK_UPDATE_FAILED,
                              f"Could not reserve a copy of book {book_id}; no loan was created.", reservation)

        try:
            loan = self.store.create(Loan(user_id=user_id, book_id=book_id, loan_date=self.today()))
        except Exception:
            logger.exception(f"Loan record for user {user_id} / book {book_id} could not be saved")
            if self.compensate:
                self._compensate(self.stock.release, book_id, "release of the reserved copy")
            return LoanResult.fail(FailureCause.LOAN_PERSISTENCE_FAILED,
                                   "The loan could not be saved. Please try again.")

        logger.info(f"Loan {loan.id} created: user {user_id} - book {book_id}")
        return LoanResult.success(loan)

    def return_loan(self, loan_id: int) -> LoanResult:
        """Close an active loan and give its copy back to the stock service."""
        loan = self.store.find_by_id(loan_id)
        if loan is None:
            return self._fail(FailureCause.LOAN_NOT_FOUND, f"Loan {loan_id} was not found.")
        if not loan.is_active:
            return self._fail(FailureCause.ALREADY_RETURNED,
                              f"Loan {loan_id} was already returned on {loan.return_date.isoformat()}.")

        closed = loan.closed_on(self.today())

        release = self.stock.release(loan.book_id)
        if not release.ok:
            return self._fail(FailureCause.STOCK_UPDATE_FAILED,
                              f"Could not return the copy of book {loan.book_id}; loan {loan_id} is still active.",
                              release)

        try:
            updated = self.store.update(closed)
        except LoanAlreadyClosedError:
            # A concurrent return closed the loan and released its copy first
            self._compensate(self.stock.reserve, loan.book_id, "re-reservation of the duplicate release")
            stored = self.store.find_by_id(loan_id)
            returned_on = stored.return_date.isoformat() if stored and stored.return_date else "another request"
            return self._fail(FailureCause.ALREADY_RETURNED,
                              f"Loan {loan_id} was already returned on {returned_on}.")
        except Exception:
            logger.exception(f"Return of loan {loan_id} could not be saved")
            if self.compensate:
                self._compensate(self.stock.reserve, loan.book_id, "re-reservation of the released copy")
            return LoanResult.fail(FailureCause.LOAN_PERSISTENCE_FAILED,
                                   "The return could not be saved. Please try again.")

        logger.info(f"Loan {loan_id} returned: book {loan.book_id}")
        return LoanResult.success(updated)

    # ------------------------- Queries ------------------------- #
    def get_loan_by_id(self, loan_id: int) -> LoanResult:
        loan = self.store.find_by_id(loan_id)
        if loan is None:
            return LoanResult.fail(FailureCause.LOAN_NOT_FOUND, f"Loan {loan_id} was not found.")
        return LoanResult.success(loan)

    def get_all_loans(self) -> List[Loan]:
        return self.store.find_by()

    def get_active_loans(self) -> List[Loan]:
        return self.store.find_by(active=True)

    def get_loans_by_user_id(self, user_id: int) -> List[Loan]:
        return self.store.find_by(user_id=user_id)

    def get_loans_by_book_id(self, book_id: int) -> List[Loan]:
        return self.store.find_by(book_id=book_id)

    # ------------------------- Helpers ------------------------- #
    def _patron_failure(self, user_id: int, result: CallResult) -> LoanResult:
        if result.outcome is Outcome.NOT_FOUND:
            return self._fail(FailureCause.PATRON_NOT_FOUND, f"Patron {user_id} was not found.")
        if result.outcome is Outcome.REJECTED:
            return self._fail(FailureCause.PATRON_INACTIVE, f"Patron {user_id} is not active.")
        return self._fail(FailureCause.PATRON_SERVICE_UNAVAILABLE,
                          f"Could not verify patron {user_id}.", result)

    @staticmethod
    def _fail(cause: FailureCause, message: str, result: Optional[CallResult] = None) -> LoanResult:
        detail = f" ({result.detail})" if result is not None and result.detail else ""
        logger.warning(f"{cause.value}: {message}{detail}")
        return LoanResult.fail(cause, message)

    @staticmethod
    def _compensate(action: Callable[[int], CallResult], book_id: int, description: str) -> None:
        result = action(book_id)
        if result.ok:
            logger.info(f"Compensating {description} for book {book_id} succeeded")
        else:
            logger.error(f"Compensating {description} for book {book_id} failed ({result.outcome.value}); "
                         f"stock needs manual reconciliation")

    def close(self) -> None:
        self.patrons.close()
        self.stock.close()


def build_service(db_file: Optional[str] = None) -> LoanService:
    """Wire a ``LoanService`` to the remote services and SQLite store named in the settings."""
    return LoanService(
        patrons=HttpPatronStatusClient(),
        stock=HttpStockClient(),
        store=SQLiteLoanStore(db_file or settings.database_file),
        compensate=settings.compensate_on_persist_failure,
    )
