"""Authentication and authorization helpers.

Passwords are hashed with bcrypt. Access tokens are HS256 JWTs carrying the
user's email, registration and role; the web layer turns a verified token
into a :class:`Principal`, which is all the circulation core ever sees.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt

from config import Settings, settings as default_settings
from errors import Forbidden, Unauthorized
from user import Role, User


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a core operation."""

    registration: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @staticmethod
    def from_user(user: User) -> "Principal":
        return Principal(registration=user.registration, role=user.role)


def require_admin(principal: Optional[Principal]) -> Principal:
    if principal is None:
        raise Unauthorized()
    if not principal.is_admin:
        raise Forbidden()
    return principal


def hash_password(password: str, settings: Optional[Settings] = None) -> str:
    settings = settings or default_settings
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def create_access_token(user: User, settings: Optional[Settings] = None) -> str:
    settings = settings or default_settings
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {
        "email": user.email,
        "registration": user.registration,
        "role": user.role,
        "exp": expires_at,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Return the token claims; raise Unauthorized if it is expired or forged."""
    settings = settings or default_settings
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as e:
        raise Unauthorized("Token expired.") from e
    except jwt.InvalidTokenError as e:
        raise Unauthorized("Invalid token.") from e
    if not claims.get("registration"):
        raise Unauthorized("Invalid token.")
    return claims
