import os
from datetime import timedelta
from typing import Tuple


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes', 'on')


class Config:
    # Secret key for session management and security
    SECRET_KEY: str = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Session configuration
    SESSION_PERMANENT: bool = False
    PERMANENT_SESSION_LIFETIME: timedelta = timedelta(days=7)

    # Database configuration
    DATABASE_PATH: str = os.environ.get('DATABASE_PATH') or os.path.join(
        os.path.dirname(os.path.dirname(__file__)), 'data', 'library.db'
    )
    DATABASE_TIMEOUT: float = 10.0  # Seconds to wait for the write lock

    # Logging
    LOG_LEVEL: str = os.environ.get('LOG_LEVEL', 'INFO')

    # Circulation business rules
    BORROW_DURATION_DAYS: int = 14  # Default loan period when no due date is given
    DEFAULT_MAX_BORROW_LIMIT: int = 5  # Used when a user has no limit set
    FINE_PER_DAY: int = 1000  # Fine per full day late
    EXTENSION_DAY_OPTIONS: Tuple[int, ...] = (1, 3, 7)
    DEFAULT_EXTENSION_DAYS: int = 7
    ACTIVITY_RETENTION_DAYS: int = 30  # Overdue records older than this are cleared

    # Background tasks
    SCHEDULER_ENABLED: bool = _env_flag('SCHEDULER_ENABLED', True)
    OVERDUE_SWEEP_INTERVAL_MINUTES: int = 60

    # Listing
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100


class TestingConfig(Config):
    TESTING: bool = True
    SCHEDULER_ENABLED: bool = False
    SECRET_KEY: str = 'testing-secret-key'
    LOG_LEVEL: str = 'DEBUG'
