import os
import sys
import pytest

# Ensure the backend root (containing the `partyroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from partyroom import create_app, db, seed_games, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    STORE_TIMEOUT_SEC = 1
    ROOM_CODE_LENGTH = 4
    ROOM_CODE_ATTEMPTS = 24
    MIN_PLAYERS = 2
    CAS_MAX_RETRIES = 3
    DISCONNECT_GRACE_SEC = 0
    BOMB_MIN = 1
    BOMB_MAX = 100


class FixedRng:
    """Stands in for random.Random: always draws the same bomb."""

    def __init__(self, value):
        self.value = value

    def randint(self, low, high):
        return self.value


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import partyroom.models  # noqa: F401
        db.create_all()
        seed_games()
        yield application
        db.session.remove()
        db.drop_all()
    # Ids restart with every fresh database; drop socket bookkeeping keyed on them
    from partyroom import socketio_events
    socketio_events._sid_to_ctx.clear()
    socketio_events._seat_sockets.clear()
    socketio_events._departure_deadline.clear()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_client(flask_app):
    """Each player gets their own cookie jar, like separate browser tabs."""
    def _make():
        return flask_app.test_client()
    return _make


@pytest.fixture()
def store(flask_app):
    from partyroom.store import get_store
    return get_store()


@pytest.fixture()
def bomb_game(flask_app):
    from partyroom.models import Game
    return Game.query.filter_by(slug='bomb-number').first()


@pytest.fixture()
def fixed_bomb(monkeypatch):
    from partyroom.services import lifecycle

    def _fix(value):
        monkeypatch.setattr(lifecycle, 'rng', FixedRng(value))
    return _fix


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
