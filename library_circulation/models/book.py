import logging
from typing import Any, Dict, Optional

from library_circulation.errors import InsufficientInventoryError, NotFoundError, ValidationError
from library_circulation.models.database import atomic, get_db, query_one
from library_circulation.utils.dates import now_timestamp

logger = logging.getLogger(__name__)

_COLUMNS = 'id, title, author, isbn, total_copies, available_copies, created_at'


class Book:
    """Represents a catalog entry as seen by the circulation core.

    The catalog itself is managed elsewhere; circulation only reads a
    book and moves its ``available_copies`` counter through the two
    ledger operations ``decrement_available`` and ``increment_available``.

    Attributes:
        id (int): Unique identifier for the book.
        title (str): Book title.
        author (str): Book author name.
        isbn (str): ISBN number.
        total_copies (int): Total number of copies owned.
        available_copies (int): Number of copies currently on the shelf.
        created_at (str): When the book was added.
    """

    def __init__(self, id: int, title: str, author: str, isbn: Optional[str],
                 total_copies: int, available_copies: int, created_at: str) -> None:
        self.id = id
        self.title = title
        self.author = author
        self.isbn = isbn
        self.total_copies = int(total_copies)
        self.available_copies = int(available_copies)
        self.created_at = created_at

    @staticmethod
    def get_by_id(book_id: int) -> Optional['Book']:
        """Retrieve a book by its ID."""
        row = query_one(f'SELECT {_COLUMNS} FROM books WHERE id = ?', (book_id,))
        if row:
            return Book(**dict(row))
        return None

    @staticmethod
    def create(title: str, author: str = '', isbn: Optional[str] = None,
               total_copies: int = 1) -> 'Book':
        """Create a new book with all of its copies on the shelf."""
        if not title:
            raise ValidationError('Title is required')
        if int(total_copies) < 0:
            raise ValidationError('total_copies cannot be negative')

        with atomic() as db:
            cursor = db.execute('''
                INSERT INTO books (title, author, isbn, total_copies, available_copies, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (title, author, isbn, total_copies, total_copies, now_timestamp()))
            book_id = cursor.lastrowid

        logger.info('Added book "%s" (id=%s) with %s copies', title, book_id, total_copies)
        return Book.get_by_id(book_id)

    # ==================== INVENTORY LEDGER ====================
    # Both operations must run inside ``atomic()``; they never commit.

    @staticmethod
    def available_copies_of(book_id: int) -> int:
        """Read the live available-copy count inside the current unit of work."""
        row = get_db().execute(
            'SELECT available_copies FROM books WHERE id = ?', (book_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError('Book not found')
        return int(row['available_copies'])

    @staticmethod
    def decrement_available(book_id: int, quantity: int) -> None:
        """Take ``quantity`` copies off the shelf.

        The update is conditional on enough copies being available, so a
        concurrent writer that got there first makes this call fail
        instead of driving the counter negative.

        Raises:
            InsufficientInventoryError: If fewer than ``quantity`` copies remain.
        """
        cursor = get_db().execute('''
            UPDATE books SET available_copies = available_copies - ?
            WHERE id = ? AND available_copies >= ?
        ''', (quantity, book_id, quantity))
        if cursor.rowcount != 1:
            raise InsufficientInventoryError()
        logger.debug('Book %s: -%s available', book_id, quantity)

    @staticmethod
    def increment_available(book_id: int, quantity: int) -> None:
        """Put ``quantity`` copies back on the shelf."""
        cursor = get_db().execute(
            'UPDATE books SET available_copies = available_copies + ? WHERE id = ?',
            (quantity, book_id)
        )
        if cursor.rowcount != 1:
            raise NotFoundError('Book not found')
        logger.debug('Book %s: +%s available', book_id, quantity)

    def to_dict(self) -> Dict[str, Any]:
        """Convert book to dictionary representation."""
        return {
            'id': self.id,
            'title': self.title,
            'author': self.author,
            'isbn': self.isbn,
            'total_copies': self.total_copies,
            'available_copies': self.available_copies,
            'created_at': self.created_at
        }
