from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from swipematch.config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or Config.CORS_ORIGINS

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from swipematch.services.sessions.pool import InlinePoolSupplier
    flask_app.extensions.setdefault('pool_supplier', InlinePoolSupplier())

    from swipematch.main import main
    flask_app.register_blueprint(main)

    from swipematch.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api')

    from swipematch.errors import SwipeMatchError

    @flask_app.errorhandler(SwipeMatchError)
    def handle_swipematch_error(exc):
        flask_app.logger.warning(f"[error] code={exc.code} status={exc.status_code} message={exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    from swipematch.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the database."""
        from swipematch import models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('sessions-expire')
    def sessions_expire_command():
        """Cancels sessions idle for longer than SESSION_IDLE_TIMEOUT_SEC."""
        from swipematch.services.sessions.lifecycle import expire_idle_sessions
        with flask_app.app_context():
            cancelled = expire_idle_sessions()
            print(f'Cancelled {cancelled} abandoned session(s).')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(sessions_expire_command)

    return flask_app
