"""Extension instances shared across the package; bound in ``create_app``."""
from flask_socketio import SocketIO

# Carries transaction_updated events; rooms are joined in events.handle_connect
socketio: SocketIO = SocketIO(
    cors_allowed_origins='*',
    async_mode='threading',
    logger=False,
    engineio_logger=False,
)
