from functools import wraps

from flask import g, session

from library_circulation.errors import AuthenticationError, AuthorizationError
from library_circulation.models.user import User


def load_current_user():
    """Load the session user into ``g.user`` (None when not logged in)."""
    if 'user' not in g:
        user_id = session.get('user_id')
        g.user = User.get_by_id(user_id) if user_id is not None else None
    return g.user


def login_required(f):
    """Decorator to require login"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if load_current_user() is None:
            session.pop('user_id', None)
            raise AuthenticationError()
        return f(*args, **kwargs)
    return decorated_function


def role_required(*roles):
    """Decorator to require specific roles"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = load_current_user()
            if user is None:
                raise AuthenticationError()
            if user.role not in roles:
                raise AuthorizationError('Insufficient permissions')
            return f(*args, **kwargs)
        return decorated_function
    return decorator
