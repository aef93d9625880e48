import logging
import sqlite3
from typing import Tuple

from database import Database
from errors import BookNotFound, BookUnavailable, OverCapacity

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Sole writer of ``books.available``.

    Both mutators run on the caller's transaction handle and issue exactly one
    guarded UPDATE, so the bound ``0 <= available <= total_copies`` is checked
    by the same statement that changes the count.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def decrement_availability(self, conn: sqlite3.Connection, isbn: str) -> None:
        cursor = conn.execute(
            "UPDATE books SET available = available - 1 WHERE isbn = ? AND available > 0",
            (isbn,),
        )
        if cursor.rowcount == 1:
            return
        if not self._exists(conn, isbn):
            raise BookNotFound()
        raise BookUnavailable()

    def increment_availability(self, conn: sqlite3.Connection, isbn: str) -> None:
        cursor = conn.execute(
            "UPDATE books SET available = available + 1 WHERE isbn = ? AND available < total_copies",
            (isbn,),
        )
        if cursor.rowcount == 1:
            return
        if not self._exists(conn, isbn):
            raise BookNotFound()
        logger.warning(f"Refusing to raise availability of {isbn} above its total copies")
        raise OverCapacity()

    def availability(self, isbn: str) -> Tuple[int, int]:
        """Return ``(available, total_copies)`` for a book."""
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT available, total_copies FROM books WHERE isbn = ?", (isbn,)
            ).fetchone()
        if row is None:
            raise BookNotFound()
        return row["available"], row["total_copies"]

    @staticmethod
    def _exists(conn: sqlite3.Connection, isbn: str) -> bool:
        return conn.execute("SELECT 1 FROM books WHERE isbn = ?", (isbn,)).fetchone() is not None
