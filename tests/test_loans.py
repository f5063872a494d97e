import logging
import threading
from datetime import date

import pytest

from in_memory import InMemoryLoanStore, InMemoryPatronDirectory, InMemoryStockService
from loan import Loan, StockInfo
from loans import LoanService
from results import CallResult, FailureCause

TODAY = date(2024, 5, 17)


def _record(events, name, fn):
    def wrapper(*args):
        events.append(name)
        return fn(*args)
    return wrapper


def _active_loan(store, loan_id=10, book_id=2, user_id=1):
    return store.add(Loan(user_id=user_id, book_id=book_id, loan_date=date(2024, 5, 1), id=loan_id))


# ------------------------- create_loan ------------------------- #
def test_create_loan_success(service, stock, store):
    result = service.create_loan(1, 2)

    assert result.ok
    assert result.loan.id is not None
    assert result.loan.user_id == 1
    assert result.loan.book_id == 2
    assert result.loan.loan_date == TODAY
    assert result.loan.return_date is None
    assert stock.copies(2) == 4
    assert store.find_by_id(result.loan.id) == result.loan


def test_create_loan_calls_collaborators_in_order(service, patrons, stock, store, monkeypatch):
    events = []
    monkeypatch.setattr(patrons, "check_active", _record(events, "check_active", patrons.check_active))
    monkeypatch.setattr(stock, "read_stock", _record(events, "read_stock", stock.read_stock))
    monkeypatch.setattr(stock, "reserve", _record(events, "reserve", stock.reserve))
    monkeypatch.setattr(store, "create", _record(events, "create", store.create))

    assert service.create_loan(1, 2).ok
    assert events == ["check_active", "read_stock", "reserve", "create"]


def test_inactive_patron_is_refused_without_touching_stock(service, stock, store):
    result = service.create_loan(3, 2)

    assert result.cause is FailureCause.PATRON_INACTIVE
    assert stock.calls == []
    assert stock.copies(2) == 5
    assert store.find_by() == []


def test_unknown_patron(service, stock):
    result = service.create_loan(99, 2)

    assert result.cause is FailureCause.PATRON_NOT_FOUND
    assert "99" in result.failure.message
    assert stock.calls == []


def test_patron_service_down(service, patrons, stock):
    patrons.unavailable = True

    result = service.create_loan(1, 2)

    assert result.cause is FailureCause.PATRON_SERVICE_UNAVAILABLE
    assert stock.calls == []


def test_book_without_copies_is_not_reserved(service, stock, store):
    result = service.create_loan(1, 4)

    assert result.cause is FailureCause.BOOK_UNAVAILABLE
    assert ("reserve", 4) not in stock.calls
    assert stock.copies(4) == 0
    assert store.find_by() == []


def test_book_flagged_unavailable_is_not_reserved(service, stock, monkeypatch):
    monkeypatch.setattr(stock, "read_stock",
                        lambda book_id: CallResult.success(StockInfo(book_id=book_id, available_copies=3,
                                                                     available=False)))

    result = service.create_loan(1, 2)

    assert result.cause is FailureCause.BOOK_UNAVAILABLE
    assert stock.copies(2) == 5


def test_unknown_book(service, stock):
    result = service.create_loan(1, 77)

    assert result.cause is FailureCause.BOOK_NOT_FOUND
    assert ("reserve", 77) not in stock.calls


def test_stock_service_down_on_read(service, stock):
    stock.unavailable = True

    result = service.create_loan(1, 2)

    assert result.cause is FailureCause.STOCK_SERVICE_UNAVAILABLE
    assert ("reserve", 2) not in stock.calls


def test_failed_reservation_creates_no_loan(service, stock, store):
    stock.fail_reserve = True

    result = service.create_loan(1, 2)

    assert result.cause is FailureCause.STOCK_UPDATE_FAILED
    assert store.find_by() == []
    assert stock.copies(2) == 5


def test_late_reservation_rejection_reads_as_unavailable(service, stock, store, monkeypatch):
    # The read still shows a copy but the stock service has none left
    stock.set_copies(2, 0)
    monkeypatch.setattr(stock, "read_stock",
                        lambda book_id: CallResult.success(StockInfo(book_id=book_id, available_copies=1)))

    result = service.create_loan(1, 2)

    assert result.cause is FailureCause.BOOK_UNAVAILABLE
    assert stock.copies(2) == 0
    assert store.find_by() == []


@pytest.mark.parametrize("user_id, book_id", [(None, 2), (1, None)])
def test_missing_ids_are_rejected_before_any_call(service, patrons, stock, user_id, book_id):
    result = service.create_loan(user_id, book_id)

    assert result.cause is FailureCause.INVALID_REQUEST
    assert patrons.calls == []
    assert stock.calls == []


def test_store_failure_releases_the_reservation(service, stock, store):
    store.fail_writes = True

    result = service.create_loan(1, 2)

    assert result.cause is FailureCause.LOAN_PERSISTENCE_FAILED
    assert stock.calls[-1] == ("release", 2)
    assert stock.copies(2) == 5


def test_store_failure_without_compensation_keeps_the_reservation(patrons, stock, store):
    service = LoanService(patrons, stock, store, today=lambda: TODAY, compensate=False)
    store.fail_writes = True

    result = service.create_loan(1, 2)

    assert result.cause is FailureCause.LOAN_PERSISTENCE_FAILED
    assert stock.copies(2) == 4


def test_failed_compensation_is_logged(service, stock, store, caplog):
    store.fail_writes = True
    stock.fail_release = True

    with caplog.at_level(logging.ERROR, logger="loans"):
        result = service.create_loan(1, 2)

    assert result.cause is FailureCause.LOAN_PERSISTENCE_FAILED
    assert stock.copies(2) == 4
    assert "manual reconciliation" in caplog.text


def test_concurrent_loans_for_last_copy():
    barrier = threading.Barrier(2)

    class SlowReadStock(InMemoryStockService):
        def read_stock(self, book_id):
            result = super().read_stock(book_id)
            # Both callers see the copy before either reserves it
            barrier.wait(timeout=5)
            return result

    stock = SlowReadStock({2: 1})
    store = InMemoryLoanStore()
    service = LoanService(InMemoryPatronDirectory({1: True, 5: True}), stock, store, today=lambda: TODAY)

    results = []
    threads = [threading.Thread(target=lambda uid=uid: results.append(service.create_loan(uid, 2)))
               for uid in (1, 5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(results) == 2
    assert sum(1 for r in results if r.ok) == 1
    assert [r.cause for r in results if not r.ok] == [FailureCause.BOOK_UNAVAILABLE]
    assert stock.copies(2) == 0
    assert len(store.find_by()) == 1


@pytest.mark.parametrize("compensate", [True, False])
def test_concurrent_returns_of_one_loan(compensate):
    barrier = threading.Barrier(2)

    class SlowReleaseStock(InMemoryStockService):
        def release(self, book_id):
            result = super().release(book_id)
            # Both callers release before either closes the loan
            barrier.wait(timeout=5)
            return result

    stock = SlowReleaseStock({2: 5})
    store = InMemoryLoanStore()
    _active_loan(store)
    service = LoanService(InMemoryPatronDirectory({1: True}), stock, store, today=lambda: TODAY,
                          compensate=compensate)

    results = []
    threads = [threading.Thread(target=lambda: results.append(service.return_loan(10))) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(results) == 2
    assert sum(1 for r in results if r.ok) == 1
    assert [r.cause for r in results if not r.ok] == [FailureCause.ALREADY_RETURNED]
    assert stock.copies(2) == 6
    assert store.find_by_id(10).return_date == TODAY
    assert len(store.updates) == 1


# ------------------------- return_loan ------------------------- #
def test_return_loan_success(service, stock, store):
    _active_loan(store)

    result = service.return_loan(10)

    assert result.ok
    assert result.loan.return_date == TODAY
    assert result.loan.loan_date == date(2024, 5, 1)
    assert store.find_by_id(10).return_date == TODAY
    assert stock.copies(2) == 6


def test_return_releases_before_saving(service, stock, store, monkeypatch):
    _active_loan(store)
    events = []
    monkeypatch.setattr(stock, "release", _record(events, "release", stock.release))
    monkeypatch.setattr(store, "update", _record(events, "update", store.update))

    assert service.return_loan(10).ok
    assert events == ["release", "update"]


def test_already_returned_loan(service, stock, store):
    store.add(Loan(user_id=1, book_id=2, loan_date=date(2024, 5, 1), return_date=date(2024, 5, 10), id=10))

    result = service.return_loan(10)

    assert result.cause is FailureCause.ALREADY_RETURNED
    assert stock.calls == []
    assert store.updates == []
    assert stock.copies(2) == 5


def test_return_date_never_changes_after_close(patrons, stock, store):
    days = iter([date(2024, 6, 1), date(2024, 6, 2)])
    service = LoanService(patrons, stock, store, today=lambda: next(days))
    _active_loan(store)

    assert service.return_loan(10).ok
    second = service.return_loan(10)

    assert second.cause is FailureCause.ALREADY_RETURNED
    assert store.find_by_id(10).return_date == date(2024, 6, 1)
    assert stock.copies(2) == 6


def test_return_unknown_loan(service, stock):
    result = service.return_loan(404)

    assert result.cause is FailureCause.LOAN_NOT_FOUND
    assert stock.calls == []


def test_failed_release_keeps_loan_active(service, stock, store):
    _active_loan(store)
    stock.fail_release = True

    result = service.return_loan(10)

    assert result.cause is FailureCause.STOCK_UPDATE_FAILED
    assert store.find_by_id(10).is_active
    assert store.updates == []
    assert stock.copies(2) == 5


def test_store_failure_on_return_retakes_the_copy(service, stock, store):
    _active_loan(store)
    store.fail_writes = True

    result = service.return_loan(10)

    assert result.cause is FailureCause.LOAN_PERSISTENCE_FAILED
    assert stock.calls[-2:] == [("release", 2), ("reserve", 2)]
    assert stock.copies(2) == 5
    assert store.find_by_id(10).is_active


# ------------------------- Queries ------------------------- #
def test_queries(service, store):
    store.add(Loan(user_id=1, book_id=2, loan_date=date(2024, 5, 1), id=1))
    store.add(Loan(user_id=1, book_id=4, loan_date=date(2024, 5, 2), return_date=date(2024, 5, 9), id=2))
    store.add(Loan(user_id=7, book_id=2, loan_date=date(2024, 5, 3), id=3))

    assert [loan.id for loan in service.get_all_loans()] == [1, 2, 3]
    assert [loan.id for loan in service.get_active_loans()] == [1, 3]
    assert [loan.id for loan in service.get_loans_by_user_id(1)] == [1, 2]
    assert [loan.id for loan in service.get_loans_by_book_id(2)] == [1, 3]
    assert service.get_loans_by_user_id(42) == []


def test_get_loan_by_id(service, store):
    _active_loan(store)

    assert service.get_loan_by_id(10).loan.id == 10
    assert service.get_loan_by_id(11).cause is FailureCause.LOAN_NOT_FOUND


def test_create_and_return_with_sqlite_store(patrons, stock, sqlite_store):
    service = LoanService(patrons, stock, sqlite_store, today=lambda: TODAY)

    created = service.create_loan(1, 2)
    assert created.ok
    assert stock.copies(2) == 4

    returned = service.return_loan(created.loan.id)
    assert returned.ok
    assert sqlite_store.find_by_id(created.loan.id).return_date == TODAY
    assert stock.copies(2) == 5
    assert service.return_loan(created.loan.id).cause is FailureCause.ALREADY_RETURNED
