import pytest

from conftest import ADMIN, MEMBER, make_user
from book import Book
from errors import DuplicateRecord, Forbidden, InvalidInput, InvalidRole, Unauthorized, UserNotFound
from user import Role


def test_add_book_sets_all_copies_available(lib):
    book = lib.add_book(ADMIN, Book(isbn="978-0-13-110362-7", title="The C Programming Language",
                                    authors="Kernighan, Ritchie", year=1988, total_copies=3,
                                    available=1))
    assert book.isbn == "9780131103627"
    found = lib.find_book("9780131103627")
    assert found.title == "The C Programming Language"
    assert (found.available, found.total_copies) == (3, 3)
    assert found.year == 1988


def test_add_duplicate_book(lib):
    lib.add_book(ADMIN, Book(isbn="123", title="First"))
    with pytest.raises(DuplicateRecord):
        lib.add_book(ADMIN, Book(isbn="123", title="Second"))
    assert lib.find_book("123").title == "First"


def test_add_book_validation(lib):
    with pytest.raises(InvalidInput):
        lib.add_book(ADMIN, Book(isbn="---", title="No isbn"))
    with pytest.raises(InvalidInput):
        lib.add_book(ADMIN, Book(isbn="1", title="Negative", total_copies=-1))


def test_add_book_requires_admin(lib):
    with pytest.raises(Forbidden):
        lib.add_book(MEMBER, Book(isbn="1", title="Nope"))
    assert lib.list_books() == []


def test_find_missing_book(lib):
    assert lib.find_book("nonexistent") is None


def test_list_books_filters(seeded):
    seeded.add_book(ADMIN, Book(isbn="555", title="Memorias Postumas", authors="Machado de Assis",
                                category="Classic", total_copies=0))

    assert [b.isbn for b in seeded.list_books(author="machado")] == ["9788533302273", "555"]
    assert [b.title for b in seeded.list_books(title="vidas")] == ["Vidas Secas"]
    assert [b.isbn for b in seeded.list_books(category="Classic")] == ["555"]
    assert [b.isbn for b in seeded.list_books(available=False)] == ["555"]
    assert len(seeded.list_books(available=True)) == 2
    assert [b.isbn for b in seeded.list_books(isbn="978-85-359-1484-9")] == ["9788535914849"]
    assert [b.isbn for b in seeded.list_books(q="Graciliano")] == ["9788535914849"]


def test_register_user_hashes_password(lib):
    user = lib.register_user(make_user("U010", email="Reader@Library.Test"), "s3cret")
    stored = lib.find_user("U010")
    assert stored.email == "reader@library.test"
    assert stored.password_hash != "s3cret"
    assert "password_hash" not in stored.to_dict()
    assert user.role == Role.USER.value


@pytest.mark.parametrize("field", ["registration", "cpf", "email"])
def test_register_duplicate_user(lib, field):
    lib.register_user(make_user("U010"), "pw")
    other = make_user("U011")
    setattr(other, field, getattr(lib.find_user("U010"), field))
    with pytest.raises(DuplicateRecord):
        lib.register_user(other, "pw")


def test_register_rejects_bad_role_and_email(lib):
    with pytest.raises(InvalidRole):
        lib.register_user(make_user("U010", role="superuser"), "pw")
    with pytest.raises(InvalidInput):
        lib.register_user(make_user("U011", email="not-an-email"), "pw")
    with pytest.raises(InvalidInput):
        lib.register_user(make_user("U012"), "")


def test_authenticate(seeded):
    token = seeded.authenticate("u001@library.test", "secret")
    assert isinstance(token, str) and token

    with pytest.raises(Unauthorized):
        seeded.authenticate("u001@library.test", "wrong")
    with pytest.raises(UserNotFound):
        seeded.authenticate("ghost@library.test", "secret")
