"""Borrow transaction model and its lifecycle.

A transaction moves through the states declared in
``transaction_status``.  Every state-changing method re-reads the row
inside ``atomic()``, validates against the live data, writes with a
condition on the status it just read and only then commits, so two
admins acting on the same book or the same record cannot both succeed
on stale data.

Inventory is touched in exactly two places: ``approve`` takes
``quantity`` copies off the shelf and ``return_book`` puts the same
``quantity`` back.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app, has_app_context

from library_circulation.errors import (
    AlreadyReturnedError,
    ConflictError,
    InsufficientInventoryError,
    InvalidStateError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from library_circulation.events import publish_transaction_event
from library_circulation.models.book import Book
from library_circulation.models.database import MAX_INTEGER, atomic, get_db, query, query_one
from library_circulation.models.fine import calculate_fine
from library_circulation.models.quota import QuotaPolicy
from library_circulation.models.transaction_status import (
    DELETABLE_STATUSES,
    TransactionStatus,
    ensure_transition,
)
from library_circulation.models.user import User
from library_circulation.utils.dates import (
    DateLike,
    format_date,
    format_timestamp,
    now_timestamp,
    parse_date,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

_SELECT_JOINED = '''
    SELECT t.*, u.name AS user_name, u.email AS user_email, u.role AS user_role,
           u.max_borrow_limit AS max_borrow_limit,
           b.title AS book_title, b.author AS book_author
    FROM transactions t
    LEFT JOIN users u ON t.user_id = u.id
    LEFT JOIN books b ON t.book_id = b.id
'''

SORTABLE_COLUMNS: Dict[str, str] = {
    'id': 't.id',
    'user_name': 'u.name',
    'book_title': 'b.title',
    'borrow_date': 't.borrow_date',
    'due_date': 't.due_date',
    'return_date': 't.return_date',
    'status': 't.status',
    'fine_amount': 't.fine_amount',
    'created_at': 't.created_at',
}

_JOINED_FIELDS = ('user_name', 'user_email', 'user_role', 'max_borrow_limit',
                  'book_title', 'book_author')


def _setting(key: str, default: Any) -> Any:
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _is_fractional(value: Any) -> bool:
    return isinstance(value, float) and not value.is_integer()


def _positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a positive integer')
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f'{field} must be a positive integer') from None
    if number <= 0 or number > MAX_INTEGER or _is_fractional(value):
        raise ValidationError(f'{field} must be a positive integer')
    return number


def coerce_extension_days(days: Any) -> int:
    """Validate an extension duration against ``EXTENSION_DAY_OPTIONS``.

    ``None`` or an empty string selects ``DEFAULT_EXTENSION_DAYS``; numeric
    strings are accepted.
    """
    options = tuple(_setting('EXTENSION_DAY_OPTIONS', (1, 3, 7)))
    if days is None or days == '':
        return int(_setting('DEFAULT_EXTENSION_DAYS', 7))
    try:
        value = int(days)
    except (TypeError, ValueError, OverflowError):
        value = None
    if isinstance(days, bool) or _is_fractional(days) or value not in options:
        allowed = ', '.join(str(o) for o in options)
        raise ValidationError(f'Invalid extension duration. Use {allowed} days.')
    return value


class Transaction:
    """Represents one borrow request and its outcome.

    Attributes:
        id (int): Unique transaction identifier.
        user_id (int): Borrowing user.
        book_id (int): Borrowed book.
        quantity (int): Copies covered by this transaction.
        status (TransactionStatus): Current lifecycle state.
        borrow_date (Optional[str]): Day the books went out (set at approval).
        due_date (str): Day the books are due back.
        return_date (Optional[str]): Timestamp of the return.
        fine_amount (int): Late fine as last computed.
        created_at (str): Creation timestamp.
        details (dict): Joined user/book fields when loaded for display.
    """

    def __init__(self, id: int, user_id: int, book_id: int, quantity: int,
                 status: str, borrow_date: Optional[str], due_date: str,
                 return_date: Optional[str], fine_amount: int, created_at: str,
                 **details) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.quantity = int(quantity)
        self.status = TransactionStatus(status)
        self.borrow_date = borrow_date
        self.due_date = due_date
        self.return_date = return_date
        self.fine_amount = int(fine_amount or 0)
        self.created_at = created_at
        self.details = {k: details[k] for k in _JOINED_FIELDS if k in details}

    @property
    def due(self) -> date:
        return parse_date(self.due_date, 'due_date')

    @property
    def is_pending(self) -> bool:
        return self.status is TransactionStatus.PENDING

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def is_past_due(self, today: Optional[date] = None) -> bool:
        return self.due < (today or date.today())

    # ==================== LOOKUPS ====================

    @staticmethod
    def get_by_id(transaction_id: int) -> Optional['Transaction']:
        if not 0 < transaction_id <= MAX_INTEGER:
            return None
        row = query_one(_SELECT_JOINED + ' WHERE t.id = ?', (transaction_id,))
        if row:
            return Transaction(**dict(row))
        return None

    @staticmethod
    def get_or_404(transaction_id: int) -> 'Transaction':
        transaction = Transaction.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError('Transaction not found')
        return transaction

    @staticmethod
    def _load_locked(transaction_id: int) -> 'Transaction':
        """Read the live row inside the current unit of work."""
        row = get_db().execute(
            'SELECT * FROM transactions WHERE id = ?', (transaction_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError('Transaction not found')
        return Transaction(**dict(row))

    @staticmethod
    def has_active_borrow(user_id: int, book_id: int) -> bool:
        """True if the user already holds this title in ``borrowed`` state."""
        row = query_one(
            'SELECT id FROM transactions WHERE user_id = ? AND book_id = ? AND status = ?',
            (user_id, book_id, TransactionStatus.BORROWED.value)
        )
        return row is not None

    @staticmethod
    def search(viewer: User, search: str = '', status: str = '',
               user_id: Optional[int] = None, book_id: Optional[int] = None,
               sort_by: str = 'created_at', sort_order: str = 'DESC',
               page: int = 1, limit: int = 10) -> Tuple[List['Transaction'], int]:
        """List transactions visible to ``viewer``.

        Students only ever see their own rows regardless of the
        ``user_id`` filter.  Unknown sort keys fall back to the defaults.

        Returns:
            Tuple of (page of transactions, total matching count).
        """
        where = ' WHERE 1=1'
        params: List[Any] = []
        if not viewer.is_admin:
            user_id = viewer.id

        if search:
            where += (' AND (u.name LIKE ? OR u.email LIKE ?'
                      ' OR b.title LIKE ? OR b.author LIKE ?)')
            params.extend([f'%{search}%'] * 4)
        if status:
            where += ' AND t.status = ?'
            params.append(TransactionStatus.parse(status).value)
        if user_id is not None:
            where += ' AND t.user_id = ?'
            params.append(user_id)
        if book_id is not None:
            where += ' AND t.book_id = ?'
            params.append(book_id)

        column = SORTABLE_COLUMNS.get(sort_by, SORTABLE_COLUMNS['created_at'])
        direction = 'ASC' if (sort_order or '').upper() == 'ASC' else 'DESC'
        page = max(page, 1)
        limit = max(limit, 1)

        rows = query(
            _SELECT_JOINED + where + f' ORDER BY {column} {direction}, t.id {direction}'
            ' LIMIT ? OFFSET ?',
            tuple(params) + (limit, (page - 1) * limit)
        )
        count_row = query_one(
            'SELECT COUNT(*) AS total FROM transactions t'
            ' LEFT JOIN users u ON t.user_id = u.id'
            ' LEFT JOIN books b ON t.book_id = b.id' + where,
            tuple(params)
        )
        return [Transaction(**dict(row)) for row in rows], int(count_row['total'])

    @staticmethod
    def ids_with_status(status: TransactionStatus,
                        due_before: Optional[date] = None) -> List[int]:
        sql = 'SELECT id FROM transactions WHERE status = ?'
        params: List[Any] = [status.value]
        if due_before is not None:
            sql += ' AND due_date < ?'
            params.append(format_date(due_before))
        return [row['id'] for row in query(sql + ' ORDER BY id', tuple(params))]

    # ==================== LIFECYCLE ====================

    @staticmethod
    def create(user_id: Any, book_id: Any, quantity: Any = 1,
               due_date: Optional[DateLike] = None,
               today: Optional[date] = None) -> 'Transaction':
        """Create a borrow request in ``pending`` state.

        Inventory and quota are checked against live counts at approval,
        not here.

        Raises:
            ValidationError: Bad ids or quantity, or a due date in the past.
            NotFoundError: Unknown user or book.
            ConflictError: The user already has this book borrowed.
        """
        today = today or date.today()
        user_id = _positive_int(user_id, 'user_id')
        book_id = _positive_int(book_id, 'book_id')
        quantity = _positive_int(1 if quantity in (None, '') else quantity, 'quantity')

        if due_date in (None, ''):
            due = today + timedelta(days=int(_setting('BORROW_DURATION_DAYS', 14)))
        else:
            due = parse_date(due_date, 'due_date')
            if due < today:
                raise ValidationError('Due date cannot be in the past')

        with atomic() as db:
            if db.execute('SELECT 1 FROM books WHERE id = ?', (book_id,)).fetchone() is None:
                raise NotFoundError('Book not found')
            if db.execute('SELECT 1 FROM users WHERE id = ?', (user_id,)).fetchone() is None:
                raise NotFoundError('User not found')
            if Transaction.has_active_borrow(user_id, book_id):
                raise ConflictError('User has already borrowed this book')

            cursor = db.execute('''
                INSERT INTO transactions (user_id, book_id, quantity, status, borrow_date,
                                          due_date, return_date, fine_amount, created_at)
                VALUES (?, ?, ?, ?, NULL, ?, NULL, 0, ?)
            ''', (user_id, book_id, quantity, TransactionStatus.PENDING.value,
                  format_date(due), now_timestamp()))
            transaction_id = cursor.lastrowid

        logger.info('Transaction %s created: user %s requested book %s x%s (due %s)',
                    transaction_id, user_id, book_id, quantity, format_date(due))
        return Transaction._committed(transaction_id, 'created')

    def approve(self, today: Optional[date] = None) -> 'Transaction':
        """Approve a pending request and lend the books.

        Checks run in this order, each with its own error: the record is
        pending, the user does not already hold the title, enough copies
        are on the shelf, the user is under quota.
        """
        today = today or date.today()
        with atomic() as db:
            current = Transaction._load_locked(self.id)
            if not current.is_pending:
                raise InvalidStateError('Only pending borrow requests can be approved')
            if Transaction.has_active_borrow(current.user_id, current.book_id):
                raise ConflictError('User has already borrowed this book')
            if Book.available_copies_of(current.book_id) < current.quantity:
                raise InsufficientInventoryError()

            user = User.get_by_id(current.user_id)
            if user is None:
                raise NotFoundError('User not found')
            if not QuotaPolicy.has_capacity(user):
                limit = QuotaPolicy.limit(user)
                raise QuotaExceededError(
                    f'User has reached the maximum borrow limit ({limit} books)'
                )

            ensure_transition(current.status, TransactionStatus.BORROWED)
            current._write_status(TransactionStatus.BORROWED, borrow_date=format_date(today))
            Book.decrement_available(current.book_id, current.quantity)

        logger.info('Transaction %s approved: book %s x%s lent to user %s',
                    self.id, current.book_id, current.quantity, current.user_id)
        return Transaction._committed(self.id, 'approved')

    def reject(self) -> 'Transaction':
        """Reject a pending request. The record is kept for audit."""
        with atomic():
            current = Transaction._load_locked(self.id)
            if not current.is_pending:
                raise InvalidStateError('Only pending borrow requests can be rejected')
            ensure_transition(current.status, TransactionStatus.REJECTED)
            current._write_status(TransactionStatus.REJECTED)

        logger.info('Transaction %s rejected', self.id)
        return Transaction._committed(self.id, 'rejected')

    def return_book(self, return_timestamp: Optional[DateLike] = None) -> 'Transaction':
        """Close a borrowed or overdue transaction and restock the copies.

        The fine is computed from the due date and the calendar day of
        ``return_timestamp`` (now when omitted).
        """
        returned_at = (parse_timestamp(return_timestamp, 'return_timestamp')
                       if return_timestamp not in (None, '') else datetime.now())

        with atomic():
            current = Transaction._load_locked(self.id)
            if current.status is TransactionStatus.RETURNED:
                raise AlreadyReturnedError()
            ensure_transition(current.status, TransactionStatus.RETURNED,
                              'Only borrowed or overdue books can be returned')

            fine = calculate_fine(current.due, returned_at)
            current._write_status(TransactionStatus.RETURNED,
                                  return_date=format_timestamp(returned_at),
                                  fine_amount=fine)
            Book.increment_available(current.book_id, current.quantity)

        logger.info('Transaction %s returned: book %s x%s back on shelf, fine %s',
                    self.id, current.book_id, current.quantity, fine)
        return Transaction._committed(self.id, 'returned')

    def extend(self, days: Any = None, today: Optional[date] = None) -> 'Transaction':
        """Push the due date back by 1, 3 or 7 days and re-evaluate the fine."""
        days = coerce_extension_days(days)
        with atomic():
            current = Transaction._load_locked(self.id)
            if not current.is_active:
                raise InvalidStateError('Only borrowed or overdue transactions can be extended')
            new_due = current.due + timedelta(days=days)
            current._apply_due_date(new_due, today or date.today())

        logger.info('Transaction %s extended by %s days to %s', self.id, days, format_date(new_due))
        return Transaction._committed(self.id, 'extended')

    def update_due_date(self, new_due_date: DateLike,
                        today: Optional[date] = None) -> 'Transaction':
        """Set an arbitrary due date and re-evaluate the fine."""
        if new_due_date in (None, ''):
            raise ValidationError('due_date is required')
        new_due = parse_date(new_due_date, 'due_date')

        with atomic():
            current = Transaction._load_locked(self.id)
            if not current.is_active:
                raise InvalidStateError(
                    'Only borrowed or overdue transactions can have their due date changed'
                )
            current._apply_due_date(new_due, today or date.today())

        logger.info('Transaction %s due date set to %s', self.id, format_date(new_due))
        return Transaction._committed(self.id, 'due_date_updated')

    def delete(self) -> None:
        """Remove a returned, rejected or overdue record. Inventory is not touched."""
        with atomic() as db:
            current = Transaction._load_locked(self.id)
            if current.status not in DELETABLE_STATUSES:
                raise ConflictError(
                    'Only returned, rejected or overdue transactions can be deleted'
                )
            db.execute('DELETE FROM transactions WHERE id = ?', (self.id,))

        if current.status is TransactionStatus.OVERDUE:
            logger.warning('Deleted unreturned overdue transaction %s: %s copies of book %s '
                           'remain out of circulation', self.id, current.quantity,
                           current.book_id)
        else:
            logger.info('Transaction %s deleted', self.id)
        publish_transaction_event('deleted', current)

    @staticmethod
    def clear_activities(actor: User, now: Optional[datetime] = None) -> int:
        """Delete finished activity for ``actor``.

        Removes every returned or rejected transaction, plus overdue ones
        created more than ``ACTIVITY_RETENTION_DAYS`` ago.  Admins clear
        everyone's records, students only their own.

        Returns:
            Number of deleted transactions.
        """
        retention = int(_setting('ACTIVITY_RETENTION_DAYS', 30))
        cutoff = format_timestamp((now or datetime.now()) - timedelta(days=retention))

        sql = ('DELETE FROM transactions WHERE (status IN (?, ?)'
               ' OR (status = ? AND created_at < ?))')
        params: List[Any] = [TransactionStatus.RETURNED.value, TransactionStatus.REJECTED.value,
                             TransactionStatus.OVERDUE.value, cutoff]
        if not actor.is_admin:
            sql += ' AND user_id = ?'
            params.append(actor.id)

        with atomic() as db:
            deleted = db.execute(sql, tuple(params)).rowcount

        logger.info('%s %s cleared %s activities', actor.role, actor.id, deleted)
        return deleted

    @staticmethod
    def refresh_overdue(transaction_id: int, today: Optional[date] = None) -> Optional[str]:
        """One sweep step for a single record.

        Moves a past-due ``borrowed`` record to ``overdue`` or recomputes
        the fine of an ``overdue`` one, always from the due date currently
        stored, so a concurrent extension is never overwritten with a
        stale status.

        Returns:
            'overdue' when the record changed state, 'fine_updated' when
            only the fine changed, None when nothing needed doing.
        """
        today = today or date.today()
        with atomic():
            current = Transaction._load_locked(transaction_id)
            if not current.is_active or not current.is_past_due(today):
                return None
            fine = calculate_fine(current.due, today)
            if current.status is TransactionStatus.BORROWED:
                ensure_transition(current.status, TransactionStatus.OVERDUE)
                current._write_status(TransactionStatus.OVERDUE, fine_amount=fine)
                outcome = 'overdue'
            elif fine != current.fine_amount:
                current._write_status(TransactionStatus.OVERDUE, fine_amount=fine)
                outcome = 'fine_updated'
            else:
                return None

        if outcome == 'overdue':
            logger.info('Transaction %s is overdue, fine %s', transaction_id, fine)
            Transaction._committed(transaction_id, 'overdue')
        else:
            logger.debug('Transaction %s fine updated to %s', transaction_id, fine)
        return outcome

    # ==================== INTERNALS ====================

    def _write_status(self, status: TransactionStatus, **fields: Any) -> None:
        """Conditional update on the status this object was loaded with."""
        assignments = ['status = ?'] + [f'{name} = ?' for name in fields]
        params = [status.value] + list(fields.values()) + [self.id, self.status.value]
        cursor = get_db().execute(
            f'UPDATE transactions SET {", ".join(assignments)} WHERE id = ? AND status = ?',
            tuple(params)
        )
        if cursor.rowcount != 1:
            raise ConflictError('Transaction was modified concurrently, please retry')
        self.status = status
        for name, value in fields.items():
            setattr(self, name, value)

    def _apply_due_date(self, new_due: date, today: date) -> None:
        """Store a new due date and recompute fine and status against today."""
        fine = calculate_fine(new_due, today)
        new_status = TransactionStatus.OVERDUE if fine > 0 else TransactionStatus.BORROWED
        if new_status is not self.status:
            ensure_transition(self.status, new_status)
        self._write_status(new_status, due_date=format_date(new_due), fine_amount=fine)

    @staticmethod
    def _committed(transaction_id: int, event: str) -> 'Transaction':
        transaction = Transaction.get_or_404(transaction_id)
        publish_transaction_event(event, transaction)
        return transaction

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'book_id': self.book_id,
            'quantity': self.quantity,
            'status': self.status.value,
            'borrow_date': self.borrow_date,
            'due_date': self.due_date,
            'return_date': self.return_date,
            'fine_amount': self.fine_amount,
            'created_at': self.created_at
        }
        data.update(self.details)
        return data
