from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Session coordination services: scheduler -> channel -> store -> clients
    from geoduel.services.geo.channel import ChannelHub
    from geoduel.services.geo.clients import EXTENSION_KEY, ClientRegistry
    from geoduel.services.geo.scheduler import ManualScheduler, SocketIOScheduler
    from geoduel.services.geo.store import RoomStore

    if flask_app.config.get('TESTING') and not flask_app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        scheduler = ManualScheduler()
    else:
        scheduler = SocketIOScheduler(socketio, flask_app)
    channel = ChannelHub(scheduler, socketio=socketio, log=flask_app.logger)
    store = RoomStore(
        channel=channel,
        enabled=bool(flask_app.config.get('GEO_MULTIPLAYER_ENABLED', True)),
        log=flask_app.logger,
    )
    flask_app.extensions[EXTENSION_KEY] = ClientRegistry(
        store, channel, scheduler, flask_app.config, socketio=socketio, log=flask_app.logger,
    )
    if not store.enabled:
        flask_app.logger.warning("Multiplayer store disabled; running in solo mode only.")

    # Import and register blueprints here
    from geoduel.main import main
    flask_app.register_blueprint(main)

    from geoduel.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    # Register Socket.IO event handlers
    from geoduel.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
