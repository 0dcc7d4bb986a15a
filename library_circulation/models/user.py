"""User model module.

Users are consumed by the circulation core as an identity with a role
and a borrow limit.  Account management beyond creating an account and
checking a password lives outside this application.
"""
import logging
import sqlite3
from typing import Any, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from library_circulation.errors import ConflictError, StorageError, ValidationError
from library_circulation.models.database import atomic, query_one
from library_circulation.utils.dates import now_timestamp

logger = logging.getLogger(__name__)

ROLES = ('admin', 'student')

_COLUMNS = 'id, name, email, role, max_borrow_limit, created_at'


class User:
    """Represents a library user.

    Attributes:
        id (int): Unique user identifier.
        name (str): Full name.
        email (str): Email address (unique).
        role (str): 'admin' or 'student'.
        max_borrow_limit (Optional[int]): Personal borrow quota, None when unset.
        created_at (str): Registration timestamp.
        password (str): Hashed password (only loaded when needed).
    """

    def __init__(self, id: int, name: str, email: str, role: str,
                 max_borrow_limit: Optional[int], created_at: str,
                 password: Optional[str] = None, **kwargs) -> None:
        self.id = id
        self.name = name
        self.email = email
        self.role = role
        self.max_borrow_limit = int(max_borrow_limit) if max_borrow_limit else None
        self.created_at = created_at
        self.password = password

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'

    def owns(self, transaction) -> bool:
        """True if the given transaction was made for this user."""
        return transaction.user_id == self.id

    def can_access(self, transaction) -> bool:
        """Admins see every transaction, students only their own."""
        return self.is_admin or self.owns(transaction)

    @staticmethod
    def get_by_id(user_id: int) -> Optional['User']:
        row = query_one(f'SELECT {_COLUMNS} FROM users WHERE id = ?', (user_id,))
        if row:
            return User(**dict(row))
        return None

    @staticmethod
    def get_by_email(email: str) -> Optional['User']:
        """Retrieve a user by email, including the password hash."""
        row = query_one(
            f'SELECT {_COLUMNS}, password FROM users WHERE lower(email) = lower(?)',
            (email,)
        )
        if row:
            return User(**dict(row))
        return None

    @staticmethod
    def create(name: str, email: str, password: str, role: str = 'student',
               max_borrow_limit: Optional[int] = None) -> 'User':
        """Create a new user account.

        Raises:
            ValidationError: If required fields are missing or the role is unknown.
            ConflictError: If the email is already registered.
        """
        if not name or not email or not password:
            raise ValidationError('Name, email and password are required')
        if role not in ROLES:
            raise ValidationError(f'Invalid role: {role}')
        if max_borrow_limit is not None and int(max_borrow_limit) <= 0:
            raise ValidationError('max_borrow_limit must be a positive integer')

        try:
            with atomic() as db:
                if db.execute('SELECT 1 FROM users WHERE lower(email) = lower(?)',
                              (email,)).fetchone():
                    raise ConflictError('Email already registered')
                cursor = db.execute('''
                    INSERT INTO users (name, email, password, role, max_borrow_limit, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (name, email, generate_password_hash(password), role,
                      max_borrow_limit, now_timestamp()))
                user_id = cursor.lastrowid
        except StorageError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise ConflictError('Email already registered') from exc
            raise

        logger.info('Created %s account %s (id=%s)', role, email, user_id)
        return User.get_by_id(user_id)

    def check_password(self, password: str) -> bool:
        if not self.password:
            return False
        return check_password_hash(self.password, password)

    @staticmethod
    def login(email: str, password: str) -> Optional['User']:
        """Authenticate user with email and password.

        Returns:
            User instance if authentication succeeded, None otherwise.
        """
        user = User.get_by_email(email or '')
        if user and user.check_password(password or ''):
            return user
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert user to dictionary (never includes the password)."""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'max_borrow_limit': self.max_borrow_limit,
            'created_at': self.created_at
        }
