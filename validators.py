import re
from datetime import date, datetime
from typing import Optional

from errors import InvalidInput, InvalidRange, InvalidRole
from user import Role


class ISBNValidator:
    """Normalizes catalog keys so '978-85-333-0227-3' and '9788533302273' match."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return re.sub(r"[^0-9A-Za-z]", "", raw).upper()


class DateValidator:

    @staticmethod
    def parse(value, field: str = "date") -> date:
        """Accept a ``date``, a ``datetime`` (its day) or an ISO ``YYYY-MM-DD`` string."""
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if not value or not isinstance(value, str):
            raise InvalidInput(f"{field} is required (YYYY-MM-DD).")
        try:
            return date.fromisoformat(value.strip())
        except ValueError as e:
            raise InvalidInput(f"{field} must be a date in YYYY-MM-DD format.") from e

    @staticmethod
    def parse_range(start, end) -> tuple[date, date]:
        """Parse a report window; both ends are required."""
        try:
            return DateValidator.parse(start, "start"), DateValidator.parse(end, "end")
        except InvalidInput as e:
            raise InvalidRange() from e


class UserValidator:

    @staticmethod
    def validate_role(role: Optional[str]) -> str:
        if role not in {r.value for r in Role}:
            raise InvalidRole()
        return role

    @staticmethod
    def validate_email(email: Optional[str]) -> str:
        # one @ with text on both sides
        if not email or not re.fullmatch(r"[^@\s]+@[^@\s]+", email.strip()):
            raise InvalidInput("A valid email address is required.")
        return email.strip().lower()

    @staticmethod
    def require(value: Optional[str], field: str) -> str:
        if value is None or not str(value).strip():
            raise InvalidInput(f"{field} is required.")
        return str(value).strip()
