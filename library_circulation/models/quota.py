"""Per-user borrowing quota.

Only transactions whose status is literally ``borrowed`` count against
the limit.  Overdue books are still out, but by the library's rule they
no longer occupy a quota slot.
"""
from typing import Optional

from flask import current_app, has_app_context

from library_circulation.models.database import query_one
from library_circulation.models.transaction_status import TransactionStatus
from library_circulation.models.user import User

DEFAULT_MAX_BORROW_LIMIT = 5


class QuotaPolicy:
    """Answers "how many books may this user still borrow"."""

    @staticmethod
    def default_limit() -> int:
        if has_app_context():
            return int(current_app.config.get('DEFAULT_MAX_BORROW_LIMIT',
                                              DEFAULT_MAX_BORROW_LIMIT))
        return DEFAULT_MAX_BORROW_LIMIT

    @staticmethod
    def active_borrow_count(user_id: int) -> int:
        row = query_one(
            'SELECT COUNT(*) AS count FROM transactions WHERE user_id = ? AND status = ?',
            (user_id, TransactionStatus.BORROWED.value)
        )
        return int(row['count'])

    @staticmethod
    def limit(user: Optional[User]) -> int:
        """The user's ``max_borrow_limit``, or the default when unset."""
        if user is None or not user.max_borrow_limit:
            return QuotaPolicy.default_limit()
        return user.max_borrow_limit

    @staticmethod
    def has_capacity(user: User) -> bool:
        return QuotaPolicy.active_borrow_count(user.id) < QuotaPolicy.limit(user)
