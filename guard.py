import logging
import sqlite3

from auth import Principal, require_admin
from database import Database
from errors import BookNotFound, HasOpenLoans, UserNotFound
from loan import LoanStatus

logger = logging.getLogger(__name__)


class ReferentialGuard:
    """The only component allowed to delete books, users and loan history.

    A book or user with an open loan is never deleted. Otherwise its closed
    loan history is removed first and then the row itself, in one transaction.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def delete_book(self, principal: Principal, isbn: str) -> int:
        """Delete a book and its returned loans; return how many loans went with it."""
        require_admin(principal)
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM books WHERE isbn = ?", (isbn,)).fetchone() is None:
                raise BookNotFound()
            self._ensure_no_open_loans(conn, "book_isbn", isbn)
            removed = conn.execute("DELETE FROM loans WHERE book_isbn = ?", (isbn,)).rowcount
            conn.execute("DELETE FROM books WHERE isbn = ?", (isbn,))
        logger.info(f"Book {isbn} deleted along with {removed} closed loan(s)")
        return removed

    def delete_user(self, principal: Principal, registration: str) -> int:
        """Delete a user and their returned loans; return how many loans went with them."""
        require_admin(principal)
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM users WHERE registration = ?", (registration,)).fetchone() is None:
                raise UserNotFound()
            self._ensure_no_open_loans(conn, "user_registration", registration)
            removed = conn.execute("DELETE FROM loans WHERE user_registration = ?", (registration,)).rowcount
            conn.execute("DELETE FROM users WHERE registration = ?", (registration,))
        logger.info(f"User {registration} deleted along with {removed} closed loan(s)")
        return removed

    @staticmethod
    def _ensure_no_open_loans(conn: sqlite3.Connection, column: str, key: str) -> None:
        # column is one of two fixed names, never caller input
        open_count = conn.execute(
            f"SELECT COUNT(*) FROM loans WHERE {column} = ? AND status = ?",
            (key, LoanStatus.OPEN.value),
        ).fetchone()[0]
        if open_count:
            raise HasOpenLoans()
