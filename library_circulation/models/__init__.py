"""
Models package

Circulation core:
    Transaction - borrow request lifecycle (transaction.py)
    TransactionStatus - states and allowed transitions (transaction_status.py)
    QuotaPolicy - per-user borrow limit (quota.py)
    calculate_fine - late fine calculation (fine.py)

Collaborators:
    Book - available-copy ledger (book.py)
    User - identity, role and borrow limit (user.py)
"""
from library_circulation.models.database import atomic, close_db, get_db, init_db
from library_circulation.models.user import User
from library_circulation.models.book import Book
from library_circulation.models.fine import calculate_fine
from library_circulation.models.transaction_status import TransactionStatus
from library_circulation.models.quota import QuotaPolicy
from library_circulation.models.transaction import Transaction

__all__ = [
    'User', 'Book', 'Transaction', 'TransactionStatus', 'QuotaPolicy',
    'calculate_fine', 'atomic', 'init_db', 'get_db', 'close_db'
]
