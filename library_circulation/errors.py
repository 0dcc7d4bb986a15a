"""Error taxonomy for the circulation system.

Every failure a model method can report is a subclass of
``CirculationError``.  Each class carries the HTTP status code it is
rendered with at the request boundary, so routes never have to map
errors by hand.
"""
from typing import Any, Dict, Optional


class CirculationError(Exception):
    """Base class for all circulation errors.

    Attributes:
        message (str): Human-readable explanation returned to the caller.
        status_code (int): HTTP status used when rendering the error.
    """

    status_code: int = 400
    default_message: str = 'Request could not be processed'

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as the JSON body sent to the client."""
        return {'success': False, 'message': self.message}


class ValidationError(CirculationError):
    """Malformed or semantically invalid input."""
    default_message = 'Invalid request data'


class InvalidStateError(CirculationError):
    """Operation attempted against a transaction in the wrong state."""
    default_message = 'Transaction is not in a valid state for this action'


class AlreadyReturnedError(InvalidStateError):
    default_message = 'Book already returned'


class ConflictError(CirculationError):
    """Action would violate a uniqueness or integrity rule."""
    default_message = 'Request conflicts with an existing transaction'


class InsufficientInventoryError(CirculationError):
    default_message = 'Book is not available for borrowing'


class QuotaExceededError(CirculationError):
    default_message = 'User has reached the maximum borrow limit'


class NotFoundError(CirculationError):
    status_code = 404
    default_message = 'Resource not found'


class AuthenticationError(CirculationError):
    status_code = 401
    default_message = 'Authentication required'


class AuthorizationError(CirculationError):
    status_code = 403
    default_message = 'Access denied'


class StorageError(CirculationError):
    """Underlying data-store failure.

    The detailed message is kept for logging only; clients receive the
    generic default message.
    """
    status_code = 500
    default_message = 'Database error'

    def to_dict(self) -> Dict[str, Any]:
        return {'success': False, 'message': self.default_message}
