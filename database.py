import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from config import Settings, settings as default_settings
from errors import LibraryError, StorageFailure

logger = logging.getLogger(__name__)


class Database:
    """A fixed-size pool of SQLite connections to one database file.

    Connections run in autocommit mode; writes that span several statements go
    through :meth:`transaction`, which takes SQLite's write lock up front with
    ``BEGIN IMMEDIATE`` so concurrent writers serialize instead of racing.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings
        self.path = self.settings.database_file
        self.pool_size = max(1, self.settings.database_pool_size)
        self._pool: "queue.Queue[sqlite3.Connection]" = queue.Queue(maxsize=self.pool_size)
        self._lock = threading.Lock()
        self._created = 0
        self._closed = False

    # ------------------------- Connection pool ------------------------- #
    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.settings.database_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        except sqlite3.Error as e:
            raise StorageFailure(f"Could not open database {self.path}: {e}") from e
        return conn

    def _acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageFailure("Database pool is closed.")
        try:
            return self._pool.get_nowait()
        except queue.Empty:
            pass
        with self._lock:
            if self._created < self.pool_size:
                self._created += 1
                try:
                    return self._connect()
                except StorageFailure:
                    self._created -= 1
                    raise
        try:
            return self._pool.get(timeout=self.settings.database_timeout)
        except queue.Empty as e:
            raise StorageFailure("Timed out waiting for a database connection.") from e

    def _release(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            # Never hand a connection with an open transaction back to the pool.
            conn.rollback()
        if self._closed:
            conn.close()
            return
        self._pool.put_nowait(conn)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a pooled connection; it is returned even if the body raises."""
        conn = self._acquire()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageFailure(str(e)) from e
        finally:
            self._release(conn)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the body inside one write transaction.

        Commits when the body finishes, rolls back on any exception (domain
        errors included) and re-raises it.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def ping(self) -> bool:
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1")
            return True
        except LibraryError:
            return False

    def close(self) -> None:
        """Close every idle pooled connection; borrowed ones close on release."""
        self._closed = True
        while True:
            try:
                conn = self._pool.get_nowait()
            except queue.Empty:
                break
            conn.close()

    # ------------------------- Schema ------------------------- #
    def create_tables(self) -> None:
        """Create the books, users and loans tables if they do not exist."""
        with self.connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    registration TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    cpf TEXT UNIQUE NOT NULL,
                    email TEXT UNIQUE NOT NULL,
                    address TEXT,
                    phone TEXT,
                    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('admin', 'user')),
                    password_hash TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS books (
                    isbn TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    authors TEXT,
                    year INTEGER,
                    category TEXT,
                    publisher TEXT,
                    total_copies INTEGER NOT NULL DEFAULT 1,
                    available INTEGER NOT NULL DEFAULT 1,
                    CHECK (available >= 0 AND available <= total_copies)
                );

                CREATE TABLE IF NOT EXISTS loans (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    book_isbn TEXT NOT NULL REFERENCES books(isbn),
                    user_registration TEXT NOT NULL REFERENCES users(registration),
                    loan_date TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    return_date TEXT,
                    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'returned')),
                    fine NUMERIC NOT NULL DEFAULT 0 CHECK (fine >= 0),
                    CHECK ((status = 'open') = (return_date IS NULL))
                );

                CREATE INDEX IF NOT EXISTS idx_loans_book_status ON loans(book_isbn, status);
                CREATE INDEX IF NOT EXISTS idx_loans_user_status ON loans(user_registration, status);
                CREATE INDEX IF NOT EXISTS idx_loans_loan_date ON loans(loan_date);
                CREATE INDEX IF NOT EXISTS idx_loans_due_date ON loans(due_date);
            """)
        logger.info(f"Database schema ready at {self.path}")


def initialize_database(settings: Optional[Settings] = None) -> Database:
    """Open the configured database and make sure the schema exists."""
    db = Database(settings)
    db.create_tables()
    return db
