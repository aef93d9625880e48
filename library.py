import logging
import sqlite3
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from auth import Principal, create_access_token, hash_password, require_admin, verify_password
from book import Book
from circulation import LoanService
from config import Settings, settings as default_settings
from database import initialize_database
from errors import DuplicateRecord, InvalidInput, Unauthorized, UserNotFound
from guard import ReferentialGuard
from inventory import InventoryLedger
from loan import Loan, LoanStatus
from reports import ReportAggregator
from user import User
from validators import ISBNValidator, UserValidator

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "isbn, title, authors, year, category, publisher, total_copies, available"
_USER_COLUMNS = "registration, name, cpf, email, address, phone, role, password_hash"


class Library:
    """Manages the catalog, user accounts and circulation on one database."""

    def __init__(self, db_file: Optional[str] = None, settings: Optional[Settings] = None,
                 today: Callable[[], date] = date.today) -> None:
        settings = settings or default_settings
        if db_file:
            settings = replace(settings, database_file=db_file)
        self.settings = settings

        # Make sure the schema exists on every start
        self.db = initialize_database(settings)

        self.inventory = InventoryLedger(self.db)
        self.loans = LoanService(self.db, self.inventory, settings, today=today)
        self.guard = ReferentialGuard(self.db)
        self.reports = ReportAggregator(self.db, today=today)

    # ------------------------- Catalog ------------------------- #
    def add_book(self, principal: Principal, book: Book) -> Book:
        """Insert a catalog entry with every copy available. Duplicates by ISBN are rejected."""
        require_admin(principal)
        book.isbn = ISBNValidator.normalize_isbn(book.isbn)
        if not book.isbn:
            raise InvalidInput("ISBN cannot be empty.")
        if not book.title:
            raise InvalidInput("Title cannot be empty.")
        if book.total_copies is None or int(book.total_copies) < 0:
            raise InvalidInput("total_copies must be zero or more.")
        book.total_copies = int(book.total_copies)
        book.available = book.total_copies

        with self.db.transaction() as conn:
            try:
                conn.execute(
                    f"INSERT INTO books ({_BOOK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (book.isbn, book.title, book.authors, book.year, book.category,
                     book.publisher, book.total_copies, book.available),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateRecord(f"Book with ISBN {book.isbn} already exists.") from e
        logger.info(f"Book {book.isbn} added with {book.total_copies} copies")
        return book

    def find_book(self, isbn: str) -> Optional[Book]:
        norm = ISBNValidator.normalize_isbn(isbn)
        with self.db.connection() as conn:
            row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE isbn = ?", (norm,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def list_books(self, *, title: Optional[str] = None, author: Optional[str] = None,
                   category: Optional[str] = None, available: Optional[bool] = None,
                   isbn: Optional[str] = None, q: Optional[str] = None) -> List[Book]:
        """List books, optionally filtered. Text filters are substring matches."""
        query = f"SELECT {_BOOK_COLUMNS} FROM books WHERE 1=1"
        params: List[Any] = []
        if title:
            query += " AND title LIKE ?"
            params.append(f"%{title}%")
        if author:
            query += " AND authors LIKE ?"
            params.append(f"%{author}%")
        if category:
            query += " AND category LIKE ?"
            params.append(f"%{category}%")
        if available is True:
            query += " AND available > 0"
        elif available is False:
            query += " AND available = 0"
        if isbn:
            query += " AND isbn = ?"
            params.append(ISBNValidator.normalize_isbn(isbn))
        if q:
            query += " AND (title LIKE ? OR authors LIKE ? OR category LIKE ? OR isbn LIKE ?)"
            like = f"%{q}%"
            params.extend([like, like, like, like])
        query += " ORDER BY title, isbn"

        with self.db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def delete_book(self, principal: Principal, isbn: str) -> int:
        return self.guard.delete_book(principal, ISBNValidator.normalize_isbn(isbn))

    # ------------------------- Users ------------------------- #
    def register_user(self, user: User, password: str) -> User:
        """Create an account. Registration, CPF and email must all be unique."""
        UserValidator.validate_role(user.role)
        UserValidator.require(user.registration, "registration")
        UserValidator.require(user.name, "name")
        UserValidator.require(user.cpf, "cpf")
        user.email = UserValidator.validate_email(user.email)
        UserValidator.require(password, "password")
        user.password_hash = hash_password(password, self.settings)

        with self.db.transaction() as conn:
            try:
                conn.execute(
                    f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (user.registration, user.name, user.cpf, user.email, user.address,
                     user.phone, user.role, user.password_hash),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateRecord("A user with this registration, CPF or email already exists.") from e
        logger.info(f"User {user.registration} registered with role {user.role}")
        return user

    def find_user(self, registration: str) -> Optional[User]:
        with self.db.connection() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE registration = ?", (registration,)
            ).fetchone()
        return User.from_dict(dict(row)) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self.db.connection() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?", ((email or "").strip().lower(),)
            ).fetchone()
        return User.from_dict(dict(row)) if row else None

    def authenticate(self, email: str, password: str) -> str:
        """Check credentials and return a signed access token."""
        user = self.find_user_by_email(email)
        if user is None:
            raise UserNotFound()
        if not verify_password(password or "", user.password_hash or ""):
            raise Unauthorized("Incorrect password.")
        return create_access_token(user, self.settings)

    def delete_user(self, principal: Principal, registration: str) -> int:
        return self.guard.delete_user(principal, registration)

    # ------------------------- Circulation ------------------------- #
    def open_loan(self, principal: Principal, isbn: str, registration: str,
                  loan_date=None, due_date=None) -> int:
        return self.loans.open_loan(principal, ISBNValidator.normalize_isbn(isbn), registration,
                                    loan_date=loan_date, due_date=due_date)

    def return_loan(self, principal: Principal, loan_id: int, returned_on: Optional[date] = None) -> Decimal:
        return self.loans.return_loan(principal, loan_id, returned_on=returned_on)

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        return self.loans.get_loan(loan_id)

    def list_loans(self) -> List[Loan]:
        return self.loans.list_loans()

    def list_user_loans(self, registration: str) -> List[Loan]:
        return self.loans.list_user_loans(registration)

    # ------------------------- Reports ------------------------- #
    def most_loaned_books(self) -> List[Dict[str, Any]]:
        return self.reports.most_loaned_books()

    def most_loaned_users(self) -> List[Dict[str, Any]]:
        return self.reports.most_loaned_users()

    def overdue_books(self, today: Optional[date] = None) -> List[Dict[str, Any]]:
        return self.reports.overdue_books(today)

    def loans_history(self, start, end) -> List[Dict[str, Any]]:
        return self.reports.loans_history(start, end)

    def get_statistics(self) -> Dict[str, Any]:
        """Library-wide counters."""
        today = self.reports.today().isoformat()
        with self.db.connection() as conn:
            books = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(total_copies), 0), COALESCE(SUM(available), 0) FROM books"
            ).fetchone()
            total_users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            open_loans = conn.execute(
                "SELECT COUNT(*) FROM loans WHERE status = ?", (LoanStatus.OPEN.value,)
            ).fetchone()[0]
            overdue = conn.execute(
                "SELECT COUNT(*) FROM loans WHERE status = ? AND due_date < ?",
                (LoanStatus.OPEN.value, today),
            ).fetchone()[0]
        return {
            "total_books": books[0],
            "total_copies": books[1],
            "available_copies": books[2],
            "total_users": total_users,
            "open_loans": open_loans,
            "overdue_loans": overdue,
        }

    def close(self) -> None:
        """Release the pooled database connections."""
        self.db.close()
