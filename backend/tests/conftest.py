import os
import sys
import pytest

# Ensure the backend root (containing the `geoduel` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from geoduel import create_app, db, socketio
from geoduel.services.geo.clients import get_registry


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    GEO_MULTIPLAYER_ENABLED = True
    GEO_DEFAULT_ROUNDS = 5
    GEO_DEFAULT_TIME_LIMIT = 90
    GEO_MAX_ROUNDS = 20
    GEO_START_BROADCAST_DELAY_SEC = 0.3
    GEO_ROUND_SETTLE_SEC = 0.6
    GEO_ROUND_RETRY_BASE_SEC = 0.25
    GEO_ROUND_RETRY_MAX_SEC = 2.0
    GEO_ROUND_VISIBILITY_TIMEOUT_SEC = 6.0
    GEO_RESULTS_GRACE_SEC = 4.0
    GEO_LEADERBOARD_LIMIT = 20


class SoloOnlyConfig(TestConfig):
    GEO_MULTIPLAYER_ENABLED = False


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import geoduel.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def solo_app():
    application = create_app(SoloOnlyConfig)
    with application.app_context():
        import geoduel.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def registry(flask_app):
    return get_registry(flask_app)


@pytest.fixture()
def store(registry):
    return registry.store


@pytest.fixture()
def channel(registry):
    return registry.channel


@pytest.fixture()
def scheduler(registry):
    return registry.scheduler


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
