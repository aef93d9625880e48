import os
import subprocess
import sys
import webbrowser
from functools import wraps
from typing import Optional

import typer
from rich.console import Console

from auth import Principal
from book import Book
from config import settings
from errors import LibraryError
from library import Library
from loan import Loan
from ui_helpers import print_rows, print_stats_result, set_output_mode
from user import Role, User
from validators import DateValidator

APP_NAME = "Library CLI"

console = Console()

# The CLI acts as the librarian operating the terminal
OPERATOR = Principal(registration="cli", role=Role.ADMIN.value)

BOOK_COLUMNS = ["isbn", "title", "authors", "category", "total_copies", "available"]
LOAN_COLUMNS = ["id", "book_isbn", "user_registration", "loan_date", "due_date", "return_date", "status", "fine"]


class LibraryManager:
    """Singleton Library bound to one database file."""

    _instance: Optional[Library] = None
    _db_file: Optional[str] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def use_database(cls, db_file: Optional[str]) -> None:
        cls._db_file = db_file

    @classmethod
    def get_instance(cls) -> Library:
        current_db = cls._db_file or settings.database_file
        if cls._instance is not None and current_db != cls._db_file_snapshot:
            # A different database was selected (e.g. one per test); start over
            cls._instance.close()
            cls._instance = None
        if cls._instance is None:
            cls._instance = Library(db_file=current_db)
            cls._db_file_snapshot = current_db
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None
        cls._db_file_snapshot = None


def handle_errors(func):
    """Print library errors as one line and exit with status 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LibraryError as e:
            print(f"Error: {e.message}")
            raise typer.Exit(code=1)
    return wrapper


def _loan_rows(loans: list[Loan]) -> list[dict]:
    return [loan.to_dict() for loan in loans]


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)
report_app = typer.Typer(help="Circulation reports")
app.add_typer(report_app, name="report")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database file (default: LIBRARY_DB_FILE or library.db)",
    ),
):
    """Global CLI options (output mode, database file)."""
    if output:
        set_output_mode(output)
    LibraryManager.use_database(db)


@app.command("init-db")
@handle_errors
def cli_init_db():
    """Create the database schema if it does not exist."""
    lib = LibraryManager.get_instance()
    print(f"Database ready at {lib.db.path}")


# --- Catalog ---
@app.command("add-book")
@handle_errors
def cli_add_book(
    isbn: str,
    title: str,
    authors: Optional[str] = typer.Option(None, "--authors", "-a", help="Author names"),
    year: Optional[int] = typer.Option(None, "--year", "-y"),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    publisher: Optional[str] = typer.Option(None, "--publisher", "-p"),
    copies: int = typer.Option(1, "--copies", "-n", help="Number of copies owned"),
):
    """Add a book to the catalog."""
    lib = LibraryManager.get_instance()
    book = lib.add_book(OPERATOR, Book(isbn=isbn, title=title, authors=authors, year=year,
                                       category=category, publisher=publisher, total_copies=copies))
    print(f"Book added: {book.title} (ISBN: {book.isbn}, copies: {book.total_copies})")


@app.command("books")
@handle_errors
def cli_books(
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Search title, authors, category or ISBN"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Filter by title"),
    author: Optional[str] = typer.Option(None, "--author", "-a", help="Filter by author"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Filter by category"),
    available: Optional[bool] = typer.Option(None, "--available/--unavailable", help="Only books with (or without) copies on the shelf"),
):
    """List catalog entries."""
    lib = LibraryManager.get_instance()
    books = lib.list_books(title=title, author=author, category=category, available=available, q=query)
    print_rows([b.to_dict() for b in books], BOOK_COLUMNS, "Books", empty_message="Library is empty.")


@app.command("delete-book")
@handle_errors
def cli_delete_book(isbn: str):
    """Delete a book and its returned loans."""
    removed = LibraryManager.get_instance().delete_book(OPERATOR, isbn)
    print(f"Book with ISBN {isbn} has been removed ({removed} past loan(s) deleted).")


# --- Users ---
@app.command("register")
@handle_errors
def cli_register(
    registration: str,
    name: str,
    cpf: str,
    email: str,
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    role: str = typer.Option(Role.USER.value, "--role", "-r", help="admin | user"),
    address: Optional[str] = typer.Option(None, "--address"),
    phone: Optional[str] = typer.Option(None, "--phone"),
):
    """Register a library user."""
    lib = LibraryManager.get_instance()
    user = lib.register_user(
        User(registration=registration, name=name, cpf=cpf, email=email,
             address=address, phone=phone, role=role),
        password,
    )
    print(f"User registered: {user.name} ({user.registration}, {user.role})")


@app.command("delete-user")
@handle_errors
def cli_delete_user(registration: str):
    """Delete a user and their returned loans."""
    removed = LibraryManager.get_instance().delete_user(OPERATOR, registration)
    print(f"User {registration} has been removed ({removed} past loan(s) deleted).")


# --- Circulation ---
@app.command("lend")
@handle_errors
def cli_lend(
    isbn: str,
    registration: str,
    loan_date: Optional[str] = typer.Option(None, "--loan-date", help="YYYY-MM-DD (default: today)"),
    due_date: Optional[str] = typer.Option(None, "--due-date", help="YYYY-MM-DD (default: loan date + loan period)"),
):
    """Lend one copy of a book to a user."""
    loan_id = LibraryManager.get_instance().open_loan(OPERATOR, isbn, registration,
                                                      loan_date=loan_date, due_date=due_date)
    print(f"Loan {loan_id} registered.")


@app.command("return")
@handle_errors
def cli_return(
    loan_id: int,
    on: Optional[str] = typer.Option(None, "--on", help="Return date YYYY-MM-DD (default: today)"),
):
    """Record the return of a loan and show the fine."""
    returned_on = DateValidator.parse(on, "return date") if on else None
    fine = LibraryManager.get_instance().return_loan(OPERATOR, loan_id, returned_on=returned_on)
    print(f"Loan {loan_id} returned. Fine: {fine:.2f}")


@app.command("loans")
@handle_errors
def cli_loans(user: Optional[str] = typer.Option(None, "--user", "-u", help="Only loans of this registration")):
    """List loans, newest last."""
    lib = LibraryManager.get_instance()
    loans = lib.list_user_loans(user) if user else lib.list_loans()
    print_rows(_loan_rows(loans), LOAN_COLUMNS, "Loans", empty_message="No loans found.")


# --- Reports ---
@report_app.command("most-loaned-books")
@handle_errors
def cli_report_books():
    """Top 10 books by number of loans."""
    rows = LibraryManager.get_instance().most_loaned_books()
    print_rows(rows, ["isbn", "title", "authors", "loan_count"], "Most loaned books")


@report_app.command("most-loaned-users")
@handle_errors
def cli_report_users():
    """Top 10 users by number of loans."""
    rows = LibraryManager.get_instance().most_loaned_users()
    print_rows(rows, ["registration", "name", "loan_count"], "Most active users")


@report_app.command("overdue")
@handle_errors
def cli_report_overdue(today: Optional[str] = typer.Option(None, "--today", help="Reference date YYYY-MM-DD")):
    """Open loans past their due date."""
    reference = DateValidator.parse(today, "today") if today else None
    rows = LibraryManager.get_instance().overdue_books(reference)
    print_rows(rows, ["id", "isbn", "title", "name", "due_date"], "Overdue loans",
               empty_message="No overdue loans.")


@report_app.command("history")
@handle_errors
def cli_report_history(start: str, end: str):
    """Loans whose loan date falls between START and END (inclusive)."""
    rows = LibraryManager.get_instance().loans_history(start, end)
    print_rows(rows, ["id", "isbn", "title", "registration", "name", "loan_date", "due_date",
                      "return_date", "status", "fine"], "Loan history")


@app.command("stats")
@handle_errors
def cli_stats():
    """Show library statistics."""
    print_stats_result(LibraryManager.get_instance().get_statistics())


@app.command("serve")
def cli_serve(timeout: int = typer.Option(0, "--timeout", help="Seconds to run before exiting (0 = no timeout)")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    try:
        webbrowser.open(url)
    except webbrowser.Error:
        console.print("[yellow]Could not open a web browser automatically.[/]")

    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        if timeout and timeout > 0:
            # No reloader in timeout mode so terminate() reaches the server itself
            start_new_session = os.name != "nt"
            proc = subprocess.Popen(args, start_new_session=start_new_session)
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait(timeout=3)
        else:
            args.append("--reload")
            subprocess.run(args)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` was not found. Make sure it is installed.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
