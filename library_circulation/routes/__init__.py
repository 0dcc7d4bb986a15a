from library_circulation.routes.auth_routes import auth_bp
from library_circulation.routes.transaction_routes import transactions_bp

__all__ = ['auth_bp', 'transactions_bp']
