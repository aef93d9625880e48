import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from auth import Principal, require_admin
from config import Settings
from database import Database
from errors import (
    AlreadyReturned,
    BookNotFound,
    BookUnavailable,
    InvalidInput,
    LoanNotFound,
    UserNotFound,
)
from inventory import InventoryLedger
from loan import Loan, LoanStatus, calculate_fine
from validators import DateValidator

logger = logging.getLogger(__name__)

_LOAN_COLUMNS = "id, book_isbn, user_registration, loan_date, due_date, return_date, status, fine"


class LoanService:
    """Owns the open -> returned lifecycle of loans.

    Opening and returning are each one write transaction: every check, the
    loan row change and the inventory change commit together or not at all.
    """

    def __init__(self, db: Database, inventory: InventoryLedger, settings: Settings,
                 today: Callable[[], date] = date.today) -> None:
        self.db = db
        self.inventory = inventory
        self.settings = settings
        self.today = today

    def open_loan(self, principal: Principal, isbn: str, registration: str,
                  loan_date=None, due_date=None) -> int:
        """Lend one copy of ``isbn`` to ``registration`` and return the loan id."""
        require_admin(principal)
        loan_day = DateValidator.parse(loan_date, "loan_date") if loan_date else self.today()
        if due_date:
            due_day = DateValidator.parse(due_date, "due_date")
        else:
            due_day = loan_day + timedelta(days=self.settings.loan_period_days)
        if due_day < loan_day:
            raise InvalidInput("due_date cannot be earlier than loan_date.")

        with self.db.transaction() as conn:
            book = conn.execute("SELECT isbn, available FROM books WHERE isbn = ?", (isbn,)).fetchone()
            if book is None:
                raise BookNotFound()
            if book["available"] <= 0:
                raise BookUnavailable()
            user = conn.execute(
                "SELECT registration FROM users WHERE registration = ?", (registration,)
            ).fetchone()
            if user is None:
                raise UserNotFound()

            cursor = conn.execute(
                "INSERT INTO loans (book_isbn, user_registration, loan_date, due_date, status, fine) "
                "VALUES (?, ?, ?, ?, ?, 0)",
                (isbn, registration, loan_day.isoformat(), due_day.isoformat(), LoanStatus.OPEN.value),
            )
            loan_id = cursor.lastrowid
            self.inventory.decrement_availability(conn, isbn)

        logger.info(f"Loan {loan_id} opened: book={isbn} user={registration} due={due_day.isoformat()}")
        return loan_id

    def return_loan(self, principal: Principal, loan_id: int, returned_on: Optional[date] = None) -> Decimal:
        """Record the return of an open loan and return the fine charged."""
        require_admin(principal)
        return_day = DateValidator.parse(returned_on, "return_date") if returned_on else self.today()

        with self.db.transaction() as conn:
            row = conn.execute(f"SELECT {_LOAN_COLUMNS} FROM loans WHERE id = ?", (loan_id,)).fetchone()
            if row is None:
                raise LoanNotFound()
            loan = Loan.from_dict(dict(row))
            if not loan.is_open:
                raise AlreadyReturned()
            if return_day < loan.loan_date:
                raise InvalidInput("return_date cannot be earlier than loan_date.")

            fine = calculate_fine(loan.due_date, return_day)
            conn.execute(
                "UPDATE loans SET return_date = ?, status = ?, fine = ? WHERE id = ? AND status = ?",
                (return_day.isoformat(), LoanStatus.RETURNED.value, str(fine), loan_id, LoanStatus.OPEN.value),
            )
            self.inventory.increment_availability(conn, loan.book_isbn)

        logger.info(f"Loan {loan_id} returned on {return_day.isoformat()} with fine {fine}")
        return fine

    # ------------------------- Queries ------------------------- #
    def get_loan(self, loan_id: int) -> Optional[Loan]:
        with self.db.connection() as conn:
            row = conn.execute(f"SELECT {_LOAN_COLUMNS} FROM loans WHERE id = ?", (loan_id,)).fetchone()
        return Loan.from_dict(dict(row)) if row else None

    def list_loans(self) -> List[Loan]:
        with self.db.connection() as conn:
            rows = conn.execute(f"SELECT {_LOAN_COLUMNS} FROM loans ORDER BY id").fetchall()
        return [Loan.from_dict(dict(row)) for row in rows]

    def list_user_loans(self, registration: str) -> List[Loan]:
        with self.db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_LOAN_COLUMNS} FROM loans WHERE user_registration = ? ORDER BY id",
                (registration,),
            ).fetchall()
        return [Loan.from_dict(dict(row)) for row in rows]
