"""Database connection and schema management.

One sqlite3 connection is opened per application context and stored on
``flask.g``.  The connection runs in autocommit mode; every unit of work
that must be serializable goes through ``atomic()``, which takes the
write lock up front with ``BEGIN IMMEDIATE`` so that a check-then-write
sequence cannot interleave with another writer.
"""
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from flask import current_app, g

from library_circulation.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

# Largest value an INTEGER column can hold
MAX_INTEGER = 2 ** 63 - 1

SCHEMA = '''
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'student' CHECK (role IN ('admin', 'student')),
    max_borrow_limit INTEGER CHECK (max_borrow_limit IS NULL OR max_borrow_limit > 0),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    author TEXT NOT NULL DEFAULT '',
    isbn TEXT,
    total_copies INTEGER NOT NULL DEFAULT 1 CHECK (total_copies >= 0),
    available_copies INTEGER NOT NULL DEFAULT 1 CHECK (available_copies >= 0),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users (id),
    book_id INTEGER NOT NULL REFERENCES books (id),
    quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity > 0),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'borrowed', 'overdue', 'returned', 'rejected')),
    borrow_date TEXT,
    due_date TEXT NOT NULL,
    return_date TEXT,
    fine_amount INTEGER NOT NULL DEFAULT 0 CHECK (fine_amount >= 0),
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_user_status ON transactions (user_id, status);
CREATE INDEX IF NOT EXISTS idx_transactions_status_due ON transactions (status, due_date);
'''


def _connect(path: str, timeout: float) -> sqlite3.Connection:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path, timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def get_db() -> sqlite3.Connection:
    """Return the connection bound to the current application context."""
    if 'db' not in g:
        try:
            g.db = _connect(
                current_app.config['DATABASE_PATH'],
                current_app.config.get('DATABASE_TIMEOUT', 10.0),
            )
        except sqlite3.Error as exc:
            logger.exception('Could not open database %s', current_app.config['DATABASE_PATH'])
            raise StorageError(str(exc)) from exc
    return g.db


def close_db(exception: Optional[BaseException] = None) -> None:
    """Close the connection at the end of the application context."""
    db = g.pop('db', None)
    if db is not None:
        _rollback(db)
        db.close()


def init_db() -> None:
    """Create all tables if they do not exist yet."""
    db = get_db()
    try:
        db.executescript(SCHEMA)
    except sqlite3.Error as exc:
        logger.exception('Schema creation failed')
        raise StorageError(str(exc)) from exc
    logger.debug('Database schema ready at %s', current_app.config['DATABASE_PATH'])


def _rollback(db: sqlite3.Connection) -> None:
    if db.in_transaction:
        db.execute('ROLLBACK')


@contextmanager
def atomic() -> Iterator[sqlite3.Connection]:
    """Run a block as a single serializable unit of work.

    Commits when the block finishes, rolls back on any exception.
    ``sqlite3.Error`` is re-raised as ``StorageError`` and an integer
    too large to bind as ``ValidationError``; domain errors propagate
    unchanged after the rollback.
    """
    db = get_db()
    try:
        db.execute('BEGIN IMMEDIATE')
    except sqlite3.Error as exc:
        logger.exception('Could not start a database transaction')
        raise StorageError(str(exc)) from exc

    try:
        yield db
    except sqlite3.Error as exc:
        _rollback(db)
        logger.exception('Database transaction rolled back')
        raise StorageError(str(exc)) from exc
    except OverflowError:
        _rollback(db)
        raise ValidationError('Numeric value out of range') from None
    except BaseException:
        _rollback(db)
        raise
    else:
        try:
            db.execute('COMMIT')
        except sqlite3.Error as exc:
            logger.exception('Commit failed')
            _rollback(db)
            raise StorageError(str(exc)) from exc


def query(sql: str, params: tuple = ()) -> list:
    """Run a read query.

    Driver errors become ``StorageError``; integers too large to bind
    become ``ValidationError``.
    """
    try:
        return get_db().execute(sql, params).fetchall()
    except OverflowError:
        raise ValidationError('Numeric value out of range') from None
    except sqlite3.Error as exc:
        logger.exception('Query failed: %s', sql.strip().splitlines()[0])
        raise StorageError(str(exc)) from exc


def query_one(sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
    rows = query(sql, params)
    return rows[0] if rows else None
