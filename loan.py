from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum

FINE_PER_DAY = Decimal("2")


class LoanStatus(str, Enum):
    OPEN = "open"
    RETURNED = "returned"


def calculate_fine(due_date: date, return_date: date) -> Decimal:
    """Fine owed for a return: 2 units per calendar day past the due date.

    Dates are whole calendar days, so a return on the due date costs nothing
    and any return on a later day counts that full day.
    """
    days_late = (return_date - due_date).days
    return max(0, days_late) * FINE_PER_DAY


def _as_date(value) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


class Loan:
    """One borrowing of one copy. Opened once, returned at most once."""

    def __init__(self, id: int | None, book_isbn: str, user_registration: str,
                 loan_date: date, due_date: date, return_date: date | None = None,
                 status: str = LoanStatus.OPEN.value, fine: Decimal | int | str = 0) -> None:
        self.id = id
        self.book_isbn = book_isbn
        self.user_registration = user_registration
        self.loan_date = _as_date(loan_date)
        self.due_date = _as_date(due_date)
        self.return_date = _as_date(return_date)
        self.status = status.value if isinstance(status, LoanStatus) else status
        self.fine = Decimal(str(fine))

    @property
    def is_open(self) -> bool:
        return self.status == LoanStatus.OPEN.value

    def is_overdue(self, today: date | None = None) -> bool:
        today = today or date.today()
        return self.is_open and self.due_date < today

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_isbn": self.book_isbn,
            "user_registration": self.user_registration,
            "loan_date": self.loan_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "status": self.status,
            "fine": self.fine,
        }

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            id=data.get("id"),
            book_isbn=data["book_isbn"],
            user_registration=data["user_registration"],
            loan_date=data["loan_date"],
            due_date=data["due_date"],
            return_date=data.get("return_date"),
            status=data.get("status") or LoanStatus.OPEN.value,
            fine=data.get("fine") or 0,
        )
