import os
from dataclasses import replace
from datetime import date

import pytest

from auth import Principal
from book import Book
from config import settings
from library import Library
from user import Role, User

TODAY = date(2025, 10, 1)

ADMIN = Principal(registration="A001", role=Role.ADMIN.value)
MEMBER = Principal(registration="U001", role=Role.USER.value)


@pytest.fixture
def test_settings(tmp_path, request):
    # Unique database per test; cheap bcrypt rounds keep hashing fast
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    return replace(settings, database_file=db_file, bcrypt_rounds=4, environment="test")


@pytest.fixture
def lib(test_settings):
    lib = Library(settings=test_settings, today=lambda: TODAY)
    yield lib
    lib.close()
    if os.path.exists(test_settings.database_file):
        os.remove(test_settings.database_file)


@pytest.fixture
def admin():
    return ADMIN


@pytest.fixture
def member():
    return MEMBER


def make_user(registration="U001", name="Ana Souza", role=Role.USER.value, **overrides) -> User:
    data = {
        "registration": registration,
        "name": name,
        "cpf": f"cpf-{registration}",
        "email": f"{registration.lower()}@library.test",
        "role": role,
    }
    data.update(overrides)
    return User(**data)


@pytest.fixture
def seeded(lib):
    """One book with two copies, one single-copy book, a librarian and a member."""
    lib.add_book(ADMIN, Book(isbn="9788533302273", title="Dom Casmurro", authors="Machado de Assis",
                             category="Novel", total_copies=2))
    lib.add_book(ADMIN, Book(isbn="9788535914849", title="Vidas Secas", authors="Graciliano Ramos",
                             category="Novel", total_copies=1))
    lib.register_user(make_user("A001", "Librarian", role=Role.ADMIN.value), "admin-pass")
    lib.register_user(make_user("U001", "Ana Souza"), "secret")
    lib.register_user(make_user("U002", "Bruno Lima"), "secret")
    return lib
