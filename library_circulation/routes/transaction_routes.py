"""REST endpoints for borrow transactions.

All handlers delegate to ``Transaction``; errors raised by the model are
rendered by the application's error handlers.
"""
import logging

from flask import Blueprint, current_app, g, jsonify, request

from library_circulation.errors import AuthorizationError, ValidationError
from library_circulation.models.transaction import Transaction
from library_circulation.utils.decorators import login_required, role_required

logger = logging.getLogger(__name__)

transactions_bp = Blueprint('transactions', __name__, url_prefix='/api/transactions')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _transaction_response(message: str, transaction: Transaction, status: int = 200, **extra):
    payload = {'success': True, 'message': message, 'transaction': transaction.to_dict()}
    payload.update(extra)
    return jsonify(payload), status


@transactions_bp.route('', methods=['GET'])
@login_required
def list_transactions():
    """List transactions with search, filters, sorting and pagination."""
    config = current_app.config
    page = max(request.args.get('page', 1, type=int), 1)
    limit = request.args.get('limit', config['DEFAULT_PAGE_SIZE'], type=int)
    limit = min(max(limit, 1), config['MAX_PAGE_SIZE'])

    transactions, total = Transaction.search(
        g.user,
        search=request.args.get('search', '').strip(),
        status=request.args.get('status', '').strip(),
        user_id=request.args.get('user_id', type=int),
        book_id=request.args.get('book_id', type=int),
        sort_by=request.args.get('sort_by', 'created_at'),
        sort_order=request.args.get('sort_order', 'DESC'),
        page=page,
        limit=limit,
    )
    total_pages = (total + limit - 1) // limit
    return jsonify({
        'success': True,
        'transactions': [t.to_dict() for t in transactions],
        'pagination': {
            'current_page': page,
            'total_pages': total_pages,
            'total_transactions': total,
            'has_next_page': page < total_pages,
            'has_prev_page': page > 1
        }
    })


@transactions_bp.route('/<int:transaction_id>', methods=['GET'])
@login_required
def get_transaction(transaction_id):
    transaction = Transaction.get_or_404(transaction_id)
    if not g.user.can_access(transaction):
        raise AuthorizationError()
    return jsonify({'success': True, 'transaction': transaction.to_dict()})


@transactions_bp.route('', methods=['POST'])
@login_required
def create_transaction():
    """Submit a borrow request. Every request starts as pending."""
    data = _json_body()
    user_id = data.get('user_id')
    book_id = data.get('book_id')

    if g.user.is_admin:
        if not user_id or not book_id:
            raise ValidationError('User ID and Book ID are required')
    else:
        if user_id not in (None, '') and str(user_id) != str(g.user.id):
            raise AuthorizationError('Students can only borrow books for themselves')
        user_id = g.user.id

    transaction = Transaction.create(
        user_id, book_id,
        quantity=data.get('quantity'),
        due_date=data.get('due_date'),
    )
    return _transaction_response(
        'Borrow request submitted, waiting for admin approval', transaction, 201
    )


@transactions_bp.route('/<int:transaction_id>/approve', methods=['PUT'])
@role_required('admin')
def approve_transaction(transaction_id):
    transaction = Transaction.get_or_404(transaction_id).approve()
    return _transaction_response('Borrow request approved', transaction)


@transactions_bp.route('/<int:transaction_id>/reject', methods=['PUT'])
@role_required('admin')
def reject_transaction(transaction_id):
    transaction = Transaction.get_or_404(transaction_id).reject()
    return _transaction_response('Borrow request rejected', transaction)


@transactions_bp.route('/<int:transaction_id>/return', methods=['PUT'])
@login_required
def return_transaction(transaction_id):
    """Return a book (admin, or the student who borrowed it)."""
    transaction = Transaction.get_or_404(transaction_id)
    if not g.user.can_access(transaction):
        raise AuthorizationError()

    data = _json_body()
    transaction = transaction.return_book(data.get('return_timestamp'))
    message = 'Book returned successfully'
    if transaction.fine_amount > 0:
        message += f'. Fine: {transaction.fine_amount:,}'
    return _transaction_response(message, transaction, fine_amount=transaction.fine_amount)


@transactions_bp.route('/<int:transaction_id>/extend', methods=['PUT'])
@role_required('admin')
def extend_transaction(transaction_id):
    data = _json_body()
    transaction = Transaction.get_or_404(transaction_id)
    transaction = transaction.extend(data.get('days'))
    return _transaction_response(f'Due date extended to {transaction.due_date}', transaction)


@transactions_bp.route('/<int:transaction_id>/update-due-date', methods=['PUT'])
@role_required('admin')
def update_due_date(transaction_id):
    data = _json_body()
    transaction = Transaction.get_or_404(transaction_id)
    transaction = transaction.update_due_date(data.get('due_date'))
    return _transaction_response('Due date updated and fine/status recalculated', transaction)


@transactions_bp.route('/<int:transaction_id>', methods=['DELETE'])
@role_required('admin')
def delete_transaction(transaction_id):
    Transaction.get_or_404(transaction_id).delete()
    return jsonify({'success': True, 'message': 'Transaction deleted'})


@transactions_bp.route('/activities/clear', methods=['DELETE'])
@role_required('admin', 'student')
def clear_activities():
    """Clear finished activity: all for admins, own records for students."""
    deleted = Transaction.clear_activities(g.user)
    return jsonify({
        'success': True,
        'message': f'Deleted {deleted} activities',
        'deleted_count': deleted
    })
