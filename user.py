from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class User:
    """A registered library account. ``role`` is ``admin`` for librarians."""

    def __init__(self, registration: str, name: str, cpf: str, email: str,
                 address: str | None = None, phone: str | None = None,
                 role: str = Role.USER.value, password_hash: str | None = None) -> None:
        self.registration = registration.strip()
        self.name = name.strip()
        self.cpf = cpf.strip()
        self.email = email.strip().lower()
        self.address = address
        self.phone = phone
        self.role = role.value if isinstance(role, Role) else role
        self.password_hash = password_hash

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} ({self.registration})"

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def to_dict(self) -> dict:
        """Public representation; the credential hash is never included."""
        return {
            "registration": self.registration,
            "name": self.name,
            "cpf": self.cpf,
            "email": self.email,
            "address": self.address,
            "phone": self.phone,
            "role": self.role,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            registration=data["registration"],
            name=data["name"],
            cpf=data["cpf"],
            email=data["email"],
            address=data.get("address"),
            phone=data.get("phone"),
            role=data.get("role") or Role.USER.value,
            password_hash=data.get("password_hash"),
        )
