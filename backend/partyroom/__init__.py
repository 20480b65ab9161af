from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from partyroom.config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

DEFAULT_GAMES = [
    {
        'name': 'Bomb Number',
        'slug': 'bomb-number',
        'description': 'Take turns guessing a number. The range shrinks every guess; whoever hits the bomb loses.',
        'icon': '💣',
        'min_players': 2,
        'max_players': 6,
    },
]


def _engine_options(flask_app):
    """Bound every store call by STORE_TIMEOUT_SEC."""
    options = dict(flask_app.config.get('SQLALCHEMY_ENGINE_OPTIONS') or {})
    timeout = flask_app.config.get('STORE_TIMEOUT_SEC', 5)
    uri = flask_app.config.get('SQLALCHEMY_DATABASE_URI') or ''
    if uri.startswith('sqlite'):
        connect_args = dict(options.get('connect_args') or {})
        connect_args.setdefault('timeout', timeout)
        options['connect_args'] = connect_args
    else:
        options.setdefault('pool_timeout', timeout)
    return options


def seed_games():
    """Insert the catalog entries that are missing. Returns how many were added."""
    from partyroom.models import Game
    added = 0
    for entry in DEFAULT_GAMES:
        if Game.query.filter_by(slug=entry['slug']).first():
            continue
        db.session.add(Game(**entry))
        added += 1
    db.session.commit()
    return added


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.config['SQLALCHEMY_ENGINE_OPTIONS'] = _engine_options(flask_app)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from partyroom.notifications import ChangeFeed
    from partyroom.store import RoomStore
    store = RoomStore(
        feed=ChangeFeed(),
        code_length=int(flask_app.config.get('ROOM_CODE_LENGTH', 4)),
        code_attempts=int(flask_app.config.get('ROOM_CODE_ATTEMPTS', 24)),
    )
    flask_app.extensions['partyroom_store'] = store

    from partyroom.api.rooms import rooms
    # Mount room routes under /api to match frontend API client
    flask_app.register_blueprint(rooms, url_prefix='/api')

    # Register Socket.IO event handlers and the store -> socket fan-out
    from partyroom.socketio_events import register_socketio_handlers, register_change_broadcast
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))
    register_change_broadcast(flask_app, store)

    @click.command('seed-games')
    def seed_games_command():
        """Adds the built-in games to the catalog."""
        with flask_app.app_context():
            added = seed_games()
            print(f'Seeded {added} game(s).')

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            seed_games()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(seed_games_command)
    flask_app.cli.add_command(db_reset_command)

    return flask_app
