"""
Library Circulation - Flask Application
Application factory, error handlers and background task wiring
"""
import atexit
import logging
from typing import Any, Dict, Optional, Type

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from library_circulation.cli import register_commands
from library_circulation.config.config import Config
from library_circulation.errors import CirculationError, StorageError
from library_circulation.extensions import socketio
from library_circulation.models.database import close_db, init_db
from library_circulation.routes import auth_bp, transactions_bp
from library_circulation.scheduled_tasks import shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger('library_circulation').setLevel(level.upper())
    # APScheduler logs every job run at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CirculationError)
    def handle_circulation_error(error: CirculationError):
        if isinstance(error, StorageError):
            logger.error('Storage failure: %s', error.message)
        else:
            logger.info('Request rejected (%s): %s', type(error).__name__, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({'success': False, 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        logger.exception('Unhandled error')
        return jsonify({'success': False, 'message': 'Something went wrong!'}), 500


def create_app(config_class: Type[Config] = Config,
               overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config_class: Settings class to load.
        overrides: Extra settings applied on top (tests use this for the
            database path).
    """
    app = Flask(__name__)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    configure_logging(app.config.get('LOG_LEVEL', 'INFO'))

    socketio.init_app(app)
    # Register socket handlers
    from library_circulation import events  # noqa: F401

    app.register_blueprint(auth_bp)
    app.register_blueprint(transactions_bp)
    register_error_handlers(app)
    register_commands(app)
    app.teardown_appcontext(close_db)

    # Initialize database
    with app.app_context():
        init_db()

    @app.route('/')
    def index():
        return jsonify({'success': True, 'message': 'Library circulation API is running'})

    if app.config.get('SCHEDULER_ENABLED'):
        start_scheduler(app)
        # Ensure scheduler shuts down gracefully
        atexit.register(shutdown_scheduler)

    logger.info('Application ready (database: %s)', app.config['DATABASE_PATH'])
    return app


if __name__ == '__main__':
    application = create_app()
    socketio.run(application, debug=False, host='0.0.0.0', port=5000,
                 allow_unsafe_werkzeug=True)
