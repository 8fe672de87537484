from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from config import Config

from gobachi.chat import ChatHistory

socketio = SocketIO(async_mode=None)
chat_history = ChatHistory()


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Fresh relay log sized from config
    chat_history.configure(
        size=int(flask_app.config.get('CHAT_HISTORY_SIZE', 50)),
        max_length=int(flask_app.config.get('CHAT_MAX_LENGTH', 200)),
    )

    from gobachi.main import main
    flask_app.register_blueprint(main)

    # Register Socket.IO event handlers
    # Importing here ensures the handlers bind to the initialized socketio instance
    from gobachi.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    return flask_app
