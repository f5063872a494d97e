import sqlite3
from typing import List, Optional

from collaborators import LoanAlreadyClosedError, LoanStore
from config import settings
from loan import Loan

# Default database file, overridable per store
DATABASE_FILE = settings.database_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the loan database with dict-like rows."""
    conn = sqlite3.connect(db_file or DATABASE_FILE, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the loan table and its indexes if they do not exist."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                loan_date TEXT NOT NULL,
                return_date TEXT
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_user_id ON loans(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_book_id ON loans(book_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_return_date ON loans(return_date)")
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Make sure the database file and its tables exist."""
    create_tables(db_file)


class SQLiteLoanStore(LoanStore):
    """Loan records kept in a SQLite file, one connection per operation."""

    _COLUMNS = "id, user_id, book_id, loan_date, return_date"

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or DATABASE_FILE
        initialize_database(self.db_file)

    def create(self, loan: Loan) -> Loan:
        data = loan.to_dict()
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "INSERT INTO loans (user_id, book_id, loan_date, return_date) VALUES (?, ?, ?, ?)",
                (data["user_id"], data["book_id"], data["loan_date"], data["return_date"])
            )
            conn.commit()
            loan_id = cursor.lastrowid
        finally:
            conn.close()
        return Loan.from_dict({**data, "id": loan_id})

    def find_by_id(self, loan_id: int) -> Optional[Loan]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(f"SELECT {self._COLUMNS} FROM loans WHERE id = ?", (loan_id,)).fetchone()
            return Loan.from_dict(dict(row)) if row else None
        finally:
            conn.close()

    def find_by(self, *, user_id: Optional[int] = None, book_id: Optional[int] = None,
                active: Optional[bool] = None) -> List[Loan]:
        clauses = []
        params: list = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if book_id is not None:
            clauses.append("book_id = ?")
            params.append(book_id)
        if active is True:
            clauses.append("return_date IS NULL")
        elif active is False:
            clauses.append("return_date IS NOT NULL")

        query = f"SELECT {self._COLUMNS} FROM loans"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"

        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(query, params).fetchall()
            return [Loan.from_dict(dict(row)) for row in rows]
        finally:
            conn.close()

    def update(self, loan: Loan) -> Loan:
        """Persist the loan's return date.

        The write only applies to a loan that is still active in the file, so
        a stored return date can never be overwritten.
        """
        if loan.id is None:
            raise ValueError("Cannot update a loan that has no id.")
        data = loan.to_dict()
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "UPDATE loans SET return_date = ? WHERE id = ? AND return_date IS NULL",
                (data["return_date"], loan.id)
            )
            conn.commit()
            changed = cursor.rowcount
        finally:
            conn.close()

        if changed == 0:
            stored = self.find_by_id(loan.id)
            if stored is None:
                raise LookupError(f"Loan {loan.id} does not exist.")
            raise LoanAlreadyClosedError(f"Loan {loan.id} is already closed.")
        return loan

    def count(self) -> int:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute("SELECT COUNT(*) FROM loans").fetchone()[0]
        finally:
            conn.close()

    def ping(self) -> bool:
        conn = get_db_connection(self.db_file)
        try:
            conn.execute("SELECT 1")
            return True
        finally:
            conn.close()
