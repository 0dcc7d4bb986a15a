import logging
from datetime import date, datetime, timedelta

import pytest

from library_circulation.errors import (
    AlreadyReturnedError,
    ConflictError,
    InsufficientInventoryError,
    InvalidStateError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from library_circulation.models.book import Book
from library_circulation.models.transaction import Transaction, coerce_extension_days
from library_circulation.models.transaction_status import TransactionStatus

TODAY = date(2023, 12, 25)


def available(book) -> int:
    return Book.get_by_id(book.id).available_copies


def lend(user, book, quantity=1, due_date='2024-01-01'):
    """Create and approve a request as of ``TODAY``."""
    transaction = Transaction.create(user.id, book.id, quantity, due_date, today=TODAY)
    return transaction.approve(today=TODAY)


# ==================== CREATE ====================

def test_create_starts_pending_without_touching_inventory(ctx, alice, dune) -> None:
    transaction = Transaction.create(alice.id, dune.id, today=TODAY)

    assert transaction.status is TransactionStatus.PENDING
    assert transaction.borrow_date is None
    assert transaction.due_date == '2024-01-08'
    assert transaction.fine_amount == 0
    assert transaction.details['book_title'] == 'Dune'
    assert available(dune) == 2


def test_create_rejects_past_due_date(ctx, alice, dune) -> None:
    with pytest.raises(ValidationError):
        Transaction.create(alice.id, dune.id, due_date='2023-12-01', today=TODAY)


@pytest.mark.parametrize('quantity', [0, -1, 'two', 1.5, True, 10 ** 20, float('inf')])
def test_create_rejects_bad_quantity(ctx, alice, dune, quantity) -> None:
    with pytest.raises(ValidationError):
        Transaction.create(alice.id, dune.id, quantity, today=TODAY)


def test_create_unknown_book_or_user(ctx, alice, dune) -> None:
    with pytest.raises(NotFoundError, match='Book not found'):
        Transaction.create(alice.id, 999, today=TODAY)
    with pytest.raises(NotFoundError, match='User not found'):
        Transaction.create(999, dune.id, today=TODAY)


def test_oversized_ids(ctx, alice, dune) -> None:
    with pytest.raises(ValidationError):
        Transaction.create(10 ** 20, dune.id, today=TODAY)
    with pytest.raises(ValidationError):
        Transaction.create(alice.id, 2 ** 63, today=TODAY)
    assert Transaction.get_by_id(10 ** 20) is None


def test_create_blocked_while_title_is_borrowed(ctx, alice, dune) -> None:
    lend(alice, dune)
    with pytest.raises(ConflictError):
        Transaction.create(alice.id, dune.id, today=TODAY)


# ==================== APPROVE / REJECT ====================

def test_approve_lends_copies(ctx, alice, dune) -> None:
    transaction = lend(alice, dune, quantity=2)

    assert transaction.status is TransactionStatus.BORROWED
    assert transaction.borrow_date == '2023-12-25'
    assert available(dune) == 0


def test_approve_requires_enough_copies(ctx, alice, bob, single_copy) -> None:
    lend(alice, single_copy)
    pending = Transaction.create(bob.id, single_copy.id, today=TODAY)

    with pytest.raises(InsufficientInventoryError):
        pending.approve(today=TODAY)
    assert Transaction.get_by_id(pending.id).status is TransactionStatus.PENDING
    assert available(single_copy) == 0


def test_approve_quantity_larger_than_shelf(ctx, alice, dune) -> None:
    pending = Transaction.create(alice.id, dune.id, 3, today=TODAY)
    with pytest.raises(InsufficientInventoryError):
        pending.approve(today=TODAY)
    assert available(dune) == 2


def test_approve_enforces_quota(ctx, bob, dune, single_copy) -> None:
    lend(bob, dune)
    pending = Transaction.create(bob.id, single_copy.id, today=TODAY)

    with pytest.raises(QuotaExceededError, match=r'\(1 books\)'):
        pending.approve(today=TODAY)
    assert available(single_copy) == 1


def test_default_quota_applies_when_limit_unset(ctx, alice) -> None:
    assert alice.max_borrow_limit is None
    books = [Book.create(f'Volume {n}', total_copies=1) for n in range(6)]
    for book in books[:5]:
        lend(alice, book)

    pending = Transaction.create(alice.id, books[5].id, today=TODAY)
    with pytest.raises(QuotaExceededError, match=r'\(5 books\)'):
        pending.approve(today=TODAY)
    assert available(books[5]) == 1
    assert Transaction.get_by_id(pending.id).status is TransactionStatus.PENDING


def test_overdue_loans_do_not_count_against_quota(ctx, bob, dune, single_copy) -> None:
    first = lend(bob, dune)
    Transaction.refresh_overdue(first.id, today=date(2024, 1, 2))

    second = Transaction.create(bob.id, single_copy.id, today=TODAY).approve(today=TODAY)
    assert second.status is TransactionStatus.BORROWED


def test_approve_twice_fails(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    with pytest.raises(InvalidStateError):
        transaction.approve(today=TODAY)
    assert available(dune) == 1


def test_reject_keeps_record_and_inventory(ctx, alice, dune) -> None:
    transaction = Transaction.create(alice.id, dune.id, today=TODAY).reject()

    assert transaction.status is TransactionStatus.REJECTED
    assert available(dune) == 2
    with pytest.raises(InvalidStateError):
        transaction.reject()
    with pytest.raises(InvalidStateError):
        transaction.approve(today=TODAY)


# ==================== RETURN ====================

def test_on_time_return_restocks(ctx, alice, dune) -> None:
    transaction = lend(alice, dune, quantity=2)
    returned = transaction.return_book('2023-12-30T10:15:00')

    assert returned.status is TransactionStatus.RETURNED
    assert returned.return_date == '2023-12-30 10:15:00'
    assert returned.fine_amount == 0
    assert available(dune) == 2


def test_late_return_is_fined_per_day(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    returned = transaction.return_book(datetime(2024, 1, 4, 18, 0))

    assert returned.fine_amount == 3000
    assert available(dune) == 2


def test_return_of_overdue_loan(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    Transaction.refresh_overdue(transaction.id, today=date(2024, 1, 2))

    returned = transaction.return_book('2024-01-03')
    assert returned.status is TransactionStatus.RETURNED
    assert returned.fine_amount == 2000


def test_return_twice_fails_without_restocking(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    transaction.return_book('2023-12-30')

    with pytest.raises(AlreadyReturnedError):
        transaction.return_book('2023-12-31')
    assert available(dune) == 2


def test_return_pending_request_fails(ctx, alice, dune) -> None:
    transaction = Transaction.create(alice.id, dune.id, today=TODAY)
    with pytest.raises(InvalidStateError, match='Only borrowed or overdue'):
        transaction.return_book()


def test_return_rejects_malformed_timestamp(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    with pytest.raises(ValidationError):
        transaction.return_book('yesterday')
    assert Transaction.get_by_id(transaction.id).status is TransactionStatus.BORROWED


# ==================== DUE DATES ====================

@pytest.mark.parametrize('days, expected', [(None, 7), ('', 7), (1, 1), ('3', 3), (7, 7)])
def test_extension_days(ctx, days, expected) -> None:
    assert coerce_extension_days(days) == expected


@pytest.mark.parametrize('days', [2, 14, 'week', 0, True, 3.5])
def test_extension_days_invalid(ctx, days) -> None:
    with pytest.raises(ValidationError, match='Use 1, 3, 7 days'):
        coerce_extension_days(days)


def test_extend_moves_due_date(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    extended = transaction.extend(3, today=TODAY)

    assert extended.due_date == '2024-01-04'
    assert extended.status is TransactionStatus.BORROWED
    assert extended.fine_amount == 0


def test_extend_clears_overdue_when_back_in_time(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    Transaction.refresh_overdue(transaction.id, today=date(2024, 1, 3))
    assert Transaction.get_by_id(transaction.id).fine_amount == 2000

    extended = transaction.extend(7, today=date(2024, 1, 3))
    assert extended.due_date == '2024-01-08'
    assert extended.status is TransactionStatus.BORROWED
    assert extended.fine_amount == 0


def test_extend_that_stays_late_keeps_overdue(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    extended = transaction.extend(1, today=date(2024, 1, 5))

    assert extended.due_date == '2024-01-02'
    assert extended.status is TransactionStatus.OVERDUE
    assert extended.fine_amount == 3000


def test_extend_pending_fails(ctx, alice, dune) -> None:
    transaction = Transaction.create(alice.id, dune.id, today=TODAY)
    with pytest.raises(InvalidStateError):
        transaction.extend(7, today=TODAY)


def test_update_due_date_recomputes_fine(ctx, alice, dune) -> None:
    transaction = lend(alice, dune, due_date='2024-01-10')

    late = transaction.update_due_date('2024-01-01', today=date(2024, 1, 4))
    assert late.status is TransactionStatus.OVERDUE
    assert late.fine_amount == 3000

    on_time = transaction.update_due_date('2024-01-20', today=date(2024, 1, 4))
    assert on_time.status is TransactionStatus.BORROWED
    assert on_time.fine_amount == 0


def test_update_due_date_requires_value(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    with pytest.raises(ValidationError):
        transaction.update_due_date(None)
    with pytest.raises(ValidationError):
        transaction.update_due_date('31/01/2024')


def test_update_due_date_on_returned_fails(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    transaction.return_book('2023-12-28')
    with pytest.raises(InvalidStateError):
        transaction.update_due_date('2024-02-01')


# ==================== DELETE / CLEAR ====================

def test_delete_only_finished_records(ctx, alice, dune) -> None:
    pending = Transaction.create(alice.id, dune.id, today=TODAY)
    with pytest.raises(ConflictError):
        pending.delete()

    pending.reject()
    pending.delete()
    assert Transaction.get_by_id(pending.id) is None


def test_delete_overdue_leaves_inventory_alone(ctx, alice, dune, caplog) -> None:
    transaction = lend(alice, dune)
    Transaction.refresh_overdue(transaction.id, today=date(2024, 1, 2))

    with caplog.at_level(logging.WARNING, logger='library_circulation'):
        transaction.delete()

    assert Transaction.get_by_id(transaction.id) is None
    assert available(dune) == 1
    assert 'out of circulation' in caplog.text


def test_delete_borrowed_fails(ctx, alice, dune) -> None:
    transaction = lend(alice, dune)
    with pytest.raises(ConflictError):
        transaction.delete()


def test_clear_activities(ctx, admin, alice, bob, dune, single_copy) -> None:
    returned = lend(alice, dune)
    returned.return_book('2023-12-30')
    rejected = Transaction.create(bob.id, dune.id, today=TODAY).reject()
    borrowed = lend(alice, single_copy)
    overdue = lend(bob, dune)
    Transaction.refresh_overdue(overdue.id, today=date(2024, 1, 2))

    assert Transaction.clear_activities(alice) == 1
    assert Transaction.get_by_id(returned.id) is None
    assert Transaction.get_by_id(rejected.id) is not None

    assert Transaction.clear_activities(admin) == 1
    assert Transaction.get_by_id(rejected.id) is None
    assert Transaction.get_by_id(overdue.id) is not None

    later = datetime.now() + timedelta(days=31)
    assert Transaction.clear_activities(admin, now=later) == 1
    assert Transaction.get_by_id(overdue.id) is None
    assert Transaction.get_by_id(borrowed.id).status is TransactionStatus.BORROWED


# ==================== SEARCH ====================

def test_search_scopes_students_to_own_rows(ctx, admin, alice, bob, dune, single_copy) -> None:
    Transaction.create(alice.id, dune.id, today=TODAY)
    Transaction.create(bob.id, single_copy.id, today=TODAY)

    rows, total = Transaction.search(alice, user_id=bob.id)
    assert total == 1
    assert {t.user_id for t in rows} == {alice.id}

    rows, total = Transaction.search(admin)
    assert total == 2


def test_search_filters_and_paginates(ctx, admin, alice, bob, dune, single_copy) -> None:
    lend(alice, dune)
    Transaction.create(bob.id, single_copy.id, today=TODAY)
    Transaction.create(bob.id, dune.id, today=TODAY)

    rows, total = Transaction.search(admin, status='pending', sort_by='id', sort_order='ASC',
                                     page=2, limit=1)
    assert total == 2
    assert len(rows) == 1
    assert rows[0].book_id == dune.id

    rows, total = Transaction.search(admin, search='Herbert')
    assert total == 2

    with pytest.raises(ValidationError):
        Transaction.search(admin, status='lost')


def test_unknown_sort_key_falls_back(ctx, admin, alice, dune) -> None:
    Transaction.create(alice.id, dune.id, today=TODAY)
    rows, total = Transaction.search(admin, sort_by='password; DROP TABLE users')
    assert total == 1
