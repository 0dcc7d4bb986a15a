"""Real-time transaction notifications over Socket.IO.

Authenticated sockets join ``user_<id>``; admins additionally join
``admins``.  Every committed transaction change is pushed to both the
owner's room and the admins room as a ``transaction_updated`` event.
"""
import logging
from typing import Any, Dict

from flask import session
from flask_socketio import join_room

from library_circulation.extensions import socketio

logger = logging.getLogger(__name__)

ADMIN_ROOM = 'admins'
EVENT_NAME = 'transaction_updated'


def user_room(user_id: Any) -> str:
    return f'user_{user_id}'


def publish_transaction_event(event: str, transaction) -> None:
    """Push a committed change to the owner and to all admins.

    Delivery is best effort: the change is already committed, so a
    failure here is logged and swallowed.
    """
    payload: Dict[str, Any] = {'event': event, 'transaction': transaction.to_dict()}
    try:
        socketio.emit(EVENT_NAME, payload, to=user_room(transaction.user_id))
        socketio.emit(EVENT_NAME, payload, to=ADMIN_ROOM)
    except Exception:
        logger.exception('Could not publish %s event for transaction %s',
                         event, transaction.id)


@socketio.on('connect')
def handle_connect(auth=None):
    """Join the caller's rooms; refuse sockets without a login session."""
    from library_circulation.models.user import User

    user_id = session.get('user_id')
    user = User.get_by_id(user_id) if user_id is not None else None
    if user is None:
        logger.debug('Refused unauthenticated socket connection')
        return False

    join_room(user_room(user.id))
    if user.is_admin:
        join_room(ADMIN_ROOM)
    logger.debug('User %s connected to transaction updates', user.id)
    return True
