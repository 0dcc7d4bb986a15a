import logging

from flask import Blueprint, g, jsonify, request, session

from library_circulation.errors import AuthenticationError, ValidationError
from library_circulation.models.user import User
from library_circulation.utils.decorators import login_required

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@auth_bp.route('/login', methods=['POST'])
def login():
    """Start a session for a user with valid credentials."""
    data = request.get_json(silent=True) or {}
    email = data.get('email')
    password = data.get('password')
    if not email or not password:
        raise ValidationError('Email and password are required')

    user = User.login(email, password)
    if user is None:
        logger.warning('Failed login attempt for %s', email)
        raise AuthenticationError('Invalid email or password')

    session.clear()
    session['user_id'] = user.id
    session['user_role'] = user.role
    logger.info('%s (%s) logged in', user.email, user.role)
    return jsonify({'success': True, 'message': f'Welcome back, {user.name}!',
                    'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    session.clear()
    return jsonify({'success': True, 'message': 'Logged out'})


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'success': True, 'user': g.user.to_dict()})
