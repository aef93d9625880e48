import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from conftest import ADMIN, MEMBER, TODAY
from errors import (
    AlreadyReturned,
    BookNotFound,
    BookUnavailable,
    Forbidden,
    InvalidInput,
    LoanNotFound,
    Unauthorized,
    UserNotFound,
)
from loan import calculate_fine

DOM = "9788533302273"
VIDAS = "9788535914849"


@pytest.mark.parametrize(
    "returned_on, expected",
    [
        (date(2025, 9, 28), Decimal("0")),
        (date(2025, 9, 29), Decimal("2")),
        (date(2025, 9, 30), Decimal("4")),
        (date(2025, 9, 20), Decimal("0")),
    ],
)
def test_calculate_fine(returned_on, expected):
    assert calculate_fine(date(2025, 9, 28), returned_on) == expected


def test_open_loan_takes_a_copy(seeded):
    loan_id = seeded.open_loan(ADMIN, DOM, "U001", loan_date="2025-09-14", due_date="2025-09-28")
    assert seeded.inventory.availability(DOM) == (1, 2)

    loan = seeded.get_loan(loan_id)
    assert loan.is_open
    assert loan.loan_date == date(2025, 9, 14)
    assert loan.due_date == date(2025, 9, 28)
    assert loan.return_date is None
    assert loan.fine == Decimal("0")


def test_default_dates_use_loan_period(seeded):
    loan_id = seeded.open_loan(ADMIN, DOM, "U001")
    loan = seeded.get_loan(loan_id)
    assert loan.loan_date == TODAY
    assert (loan.due_date - loan.loan_date).days == seeded.settings.loan_period_days


def test_open_then_return_restores_availability(seeded):
    before = seeded.inventory.availability(DOM)
    loan_id = seeded.open_loan(ADMIN, DOM, "U001", loan_date="2025-09-14", due_date="2025-09-28")
    fine = seeded.return_loan(ADMIN, loan_id, returned_on=date(2025, 9, 28))

    assert fine == Decimal("0")
    assert seeded.inventory.availability(DOM) == before
    loan = seeded.get_loan(loan_id)
    assert loan.status == "returned"
    assert loan.return_date == date(2025, 9, 28)


def test_late_return_charges_fine(seeded):
    loan_id = seeded.open_loan(ADMIN, DOM, "U001", loan_date="2025-09-14", due_date="2025-09-28")
    fine = seeded.return_loan(ADMIN, loan_id, returned_on=date(2025, 9, 30))
    assert fine == Decimal("4")
    assert seeded.get_loan(loan_id).fine == Decimal("4")


def test_unavailable_book_is_rejected_without_side_effects(seeded):
    seeded.open_loan(ADMIN, VIDAS, "U001")
    with pytest.raises(BookUnavailable):
        seeded.open_loan(ADMIN, VIDAS, "U002")
    assert seeded.inventory.availability(VIDAS) == (0, 1)
    assert len(seeded.list_loans()) == 1


def test_double_return_is_rejected(seeded):
    loan_id = seeded.open_loan(ADMIN, VIDAS, "U001", loan_date="2025-09-14", due_date="2025-09-28")
    seeded.return_loan(ADMIN, loan_id, returned_on=date(2025, 9, 29))
    with pytest.raises(AlreadyReturned):
        seeded.return_loan(ADMIN, loan_id, returned_on=date(2025, 10, 5))

    loan = seeded.get_loan(loan_id)
    assert loan.return_date == date(2025, 9, 29)
    assert loan.fine == Decimal("2")
    assert seeded.inventory.availability(VIDAS) == (1, 1)


def test_missing_book_checked_before_user(seeded):
    with pytest.raises(BookNotFound):
        seeded.open_loan(ADMIN, "0000000000", "nobody")


def test_unknown_user_rolls_back(seeded):
    with pytest.raises(UserNotFound):
        seeded.open_loan(ADMIN, DOM, "nobody")
    assert seeded.inventory.availability(DOM) == (2, 2)
    assert seeded.list_loans() == []


def test_return_unknown_loan(seeded):
    with pytest.raises(LoanNotFound):
        seeded.return_loan(ADMIN, 999)


def test_due_date_before_loan_date(seeded):
    with pytest.raises(InvalidInput):
        seeded.open_loan(ADMIN, DOM, "U001", loan_date="2025-09-14", due_date="2025-09-01")


def test_mutations_require_admin(seeded):
    with pytest.raises(Forbidden):
        seeded.open_loan(MEMBER, DOM, "U001")
    with pytest.raises(Unauthorized):
        seeded.open_loan(None, DOM, "U001")
    assert seeded.inventory.availability(DOM) == (2, 2)


def test_list_user_loans(seeded):
    seeded.open_loan(ADMIN, DOM, "U001")
    seeded.open_loan(ADMIN, VIDAS, "U002")
    loans = seeded.list_user_loans("U001")
    assert [loan.book_isbn for loan in loans] == [DOM]
    assert seeded.list_user_loans("U999") == []


def test_concurrent_loans_never_oversell(seeded):
    results = []
    lock = threading.Lock()

    def borrow(registration):
        try:
            seeded.open_loan(ADMIN, DOM, registration)
            outcome = "ok"
        except BookUnavailable:
            outcome = "unavailable"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=borrow, args=(reg,)) for reg in ["U001", "U002", "A001", "U001"]]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 2
    assert results.count("unavailable") == 2
    assert seeded.inventory.availability(DOM) == (0, 2)


def test_datetime_arguments_are_stored_as_days(seeded):
    loan_id = seeded.open_loan(ADMIN, DOM, "U001", loan_date=datetime(2025, 9, 14, 10, 30),
                               due_date=datetime(2025, 9, 28, 18, 0))
    loan = seeded.get_loan(loan_id)
    assert loan.loan_date == date(2025, 9, 14)
    assert loan.due_date == date(2025, 9, 28)

    fine = seeded.return_loan(ADMIN, loan_id, returned_on=datetime(2025, 9, 29, 9, 0))
    assert fine == Decimal("2")
    assert seeded.get_loan(loan_id).return_date == date(2025, 9, 29)
    assert seeded.delete_book(ADMIN, DOM) == 1


def test_return_before_loan_date_is_rejected(seeded):
    loan_id = seeded.open_loan(ADMIN, DOM, "U001", loan_date="2025-09-14", due_date="2025-09-28")
    with pytest.raises(InvalidInput):
        seeded.return_loan(ADMIN, loan_id, returned_on=date(2025, 9, 1))

    loan = seeded.get_loan(loan_id)
    assert loan.is_open
    assert loan.return_date is None
    assert seeded.inventory.availability(DOM) == (1, 2)
