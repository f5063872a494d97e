import os
from datetime import date

import pytest

from database import SQLiteLoanStore
from in_memory import InMemoryLoanStore, InMemoryPatronDirectory, InMemoryStockService
from loans import LoanService

TODAY = date(2024, 5, 17)


@pytest.fixture
def patrons():
    # Patron 1 active, patron 3 inactive
    return InMemoryPatronDirectory({1: True, 3: False})


@pytest.fixture
def stock():
    # Book 2 has five copies, book 4 none
    return InMemoryStockService({2: 5, 4: 0})


@pytest.fixture
def store():
    return InMemoryLoanStore()


@pytest.fixture
def sqlite_store(tmp_path, request):
    # A unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    store = SQLiteLoanStore(db_file)
    yield store
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def service(patrons, stock, store):
    return LoanService(patrons, stock, store, today=lambda: TODAY)
