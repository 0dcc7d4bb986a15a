"""Transaction lifecycle states and the transitions allowed between them.

    pending  --approve-->  borrowed  --sweep/recompute-->  overdue
       |                      |                              |
     reject                 return                  extend/update due date
       v                      v                              v
    rejected               returned  <------return------  borrowed

``returned`` and ``rejected`` are terminal.  Any move not listed in
``TRANSITIONS`` is refused with ``InvalidStateError``.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional

from library_circulation.errors import InvalidStateError, ValidationError


class TransactionStatus(str, Enum):
    PENDING = 'pending'
    BORROWED = 'borrowed'
    OVERDUE = 'overdue'
    RETURNED = 'returned'
    REJECTED = 'rejected'

    @classmethod
    def parse(cls, value: str) -> 'TransactionStatus':
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f'Unknown transaction status: {value}') from None

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]

    @property
    def is_active(self) -> bool:
        """Book is out with the borrower (copies reserved against inventory)."""
        return self in ACTIVE_STATUSES

    @property
    def is_deletable(self) -> bool:
        return self in DELETABLE_STATUSES


TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.BORROWED, TransactionStatus.REJECTED}),
    TransactionStatus.BORROWED: frozenset({TransactionStatus.OVERDUE, TransactionStatus.RETURNED}),
    TransactionStatus.OVERDUE: frozenset({TransactionStatus.RETURNED, TransactionStatus.BORROWED}),
    TransactionStatus.RETURNED: frozenset(),
    TransactionStatus.REJECTED: frozenset(),
}

ACTIVE_STATUSES = frozenset({TransactionStatus.BORROWED, TransactionStatus.OVERDUE})

# Overdue records may be deleted even though never returned (data retention).
DELETABLE_STATUSES = frozenset({
    TransactionStatus.RETURNED, TransactionStatus.REJECTED, TransactionStatus.OVERDUE
})


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: TransactionStatus, target: TransactionStatus,
                      message: Optional[str] = None) -> None:
    """Raise ``InvalidStateError`` unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidStateError(
            message or f'Cannot move transaction from {current.value} to {target.value}'
        )
