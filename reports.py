"""Read-only statistics over books, users and loans.

Reports run on plain autocommit connections and take no write lock, so they
see a read-committed snapshot and may trail a concurrent loan by a moment.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List

from database import Database
from loan import LoanStatus
from validators import DateValidator

logger = logging.getLogger(__name__)

TOP_N = 10


class ReportAggregator:

    def __init__(self, db: Database, today: Callable[[], date] = date.today) -> None:
        self.db = db
        self.today = today

    def _query(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [dict(row) for row in rows]

    def most_loaned_books(self) -> List[Dict[str, Any]]:
        """Top books by number of loans of any status, ties by ISBN."""
        return self._query(
            """
            SELECT b.isbn, b.title, b.authors, COUNT(l.id) AS loan_count
            FROM books b
            LEFT JOIN loans l ON b.isbn = l.book_isbn
            GROUP BY b.isbn, b.title, b.authors
            ORDER BY loan_count DESC, b.isbn ASC
            LIMIT ?
            """,
            (TOP_N,),
        )

    def most_loaned_users(self) -> List[Dict[str, Any]]:
        """Top borrowers by number of loans of any status, ties by registration."""
        return self._query(
            """
            SELECT u.registration, u.name, COUNT(l.id) AS loan_count
            FROM users u
            LEFT JOIN loans l ON u.registration = l.user_registration
            GROUP BY u.registration, u.name
            ORDER BY loan_count DESC, u.registration ASC
            LIMIT ?
            """,
            (TOP_N,),
        )

    def overdue_books(self, today: date | None = None) -> List[Dict[str, Any]]:
        """Open loans whose due date is strictly before today."""
        today = today or self.today()
        return self._query(
            """
            SELECT l.id, b.isbn, b.title, u.name, l.due_date
            FROM loans l
            JOIN books b ON l.book_isbn = b.isbn
            JOIN users u ON l.user_registration = u.registration
            WHERE l.status = ? AND l.due_date < ?
            ORDER BY l.due_date, l.id
            """,
            (LoanStatus.OPEN.value, today.isoformat()),
        )

    def loans_history(self, start, end) -> List[Dict[str, Any]]:
        """Loans of any status whose loan date lies in ``[start, end]``."""
        start_day, end_day = DateValidator.parse_range(start, end)
        rows = self._query(
            """
            SELECT l.id, b.isbn, b.title, u.registration, u.name,
                   l.loan_date, l.due_date, l.return_date, l.status, l.fine
            FROM loans l
            JOIN books b ON l.book_isbn = b.isbn
            JOIN users u ON l.user_registration = u.registration
            WHERE l.loan_date BETWEEN ? AND ?
            ORDER BY l.loan_date, l.id
            """,
            (start_day.isoformat(), end_day.isoformat()),
        )
        for row in rows:
            row["fine"] = Decimal(str(row["fine"]))
        logger.debug(f"Loan history {start_day}..{end_day}: {len(rows)} row(s)")
        return rows
