"""Error taxonomy shared by the circulation core and its callers.

Every error carries a ``kind`` (the taxonomy bucket) and the HTTP status the
web layer renders it with, so callers can branch on the class or the kind
without parsing messages.
"""

from __future__ import annotations


class LibraryError(Exception):
    kind = "LibraryError"
    status_code = 500
    default_message = "Library operation failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message}


# --- NotFound (404) ---
class NotFound(LibraryError):
    kind = "NotFound"
    status_code = 404
    default_message = "Resource not found."


class BookNotFound(NotFound):
    default_message = "Book not found."


class UserNotFound(NotFound):
    default_message = "User not found."


class LoanNotFound(NotFound):
    default_message = "Loan not found."


# --- Conflict (400) ---
class Conflict(LibraryError):
    kind = "Conflict"
    status_code = 400
    default_message = "Operation conflicts with the current state."


class HasOpenLoans(Conflict):
    default_message = "Cannot delete while there are loans that have not been returned."


class BookUnavailable(Conflict):
    default_message = "Book is not available for loan."


class AlreadyReturned(Conflict):
    default_message = "Loan has already been returned."


class OverCapacity(Conflict):
    default_message = "Return would exceed the book's total copies."


class DuplicateRecord(Conflict):
    default_message = "Record already exists."


# --- Authentication / authorization ---
class Unauthorized(LibraryError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "Authentication required."


class Forbidden(LibraryError):
    kind = "Forbidden"
    status_code = 403
    default_message = "Access restricted to librarians."


# --- InvalidInput (400) ---
class InvalidInput(LibraryError):
    kind = "InvalidInput"
    status_code = 400
    default_message = "Invalid input."


class InvalidRange(InvalidInput):
    default_message = "Query parameters start and end are required and must be dates (YYYY-MM-DD)."


class InvalidRole(InvalidInput):
    default_message = 'Invalid role. Use "admin" or "user".'


# --- StorageFailure (500) ---
class StorageFailure(LibraryError):
    kind = "StorageFailure"
    status_code = 500
    default_message = "Storage failure."
