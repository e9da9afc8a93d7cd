import os
import sys
import pytest

# Ensure the backend root (containing the `swipematch` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from swipematch import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    ROUND1_LIMIT = 25
    ROUND2_LIMIT = 15
    ROUND1_DURATION_SEC = 120
    ROUND2_DURATION_SEC = 60
    SUPERLIKES_PER_ROUND = 3
    GROUP_ROUND_LIMIT = 24
    GROUP_MIN_PARTICIPANTS = 2
    GROUP_MAX_PARTICIPANTS = 12
    MATCH_COUNT = 3
    FINALIST_COUNT = 3
    JOIN_CODE_LENGTH = 6
    POLL_INTERVAL_SEC = 2
    SESSION_IDLE_TIMEOUT_SEC = 1800
    SESSION_TTL_SEC = 86400
    SYNTHETIC_LIKE_RATIO = 0.35


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import swipematch.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


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


class Api:
    """Thin wrapper over the test client for the /api/session endpoints."""

    def __init__(self, client):
        self.client = client

    def create(self, participant_id='host', **body):
        body['participant_id'] = participant_id
        return self.client.post('/api/session', json=body)

    def join(self, join_code, participant_id, display_name=None):
        return self.client.post('/api/session/join', json={
            'join_code': join_code, 'participant_id': participant_id, 'display_name': display_name,
        })

    def snapshot(self, session_id, participant_id):
        return self.client.get(f'/api/session/{session_id}', query_string={'participant_id': participant_id})

    def post(self, action, session_id, participant_id, **body):
        body.update({'session_id': session_id, 'participant_id': participant_id})
        return self.client.post(f'/api/session/{action}', json=body)

    def swipe(self, session_id, participant_id, candidate_id, decision, round_no=1, decided_at=None):
        return self.post(
            'swipe', session_id, participant_id,
            candidate_id=candidate_id, decision=decision, round=round_no, decided_at=decided_at,
        )


@pytest.fixture()
def api(client):
    return Api(client)


@pytest.fixture()
def pair_session(api):
    """A pair session over pool [1..5] with round limits 3/2, swiping round 1."""
    def _make(pool=(1, 2, 3, 4, 5), round1_limit=3, round2_limit=2):
        created = api.create('P1', display_name='Host', mode='pair', candidates=list(pool),
                             round1_limit=round1_limit, round2_limit=round2_limit).get_json()
        session_id = created['session_id']
        assert api.join(created['join_code'], 'P2', 'Guest').status_code == 201
        assert api.post('pool', session_id, 'P1').status_code == 200
        assert api.post('start', session_id, 'P1').status_code == 200
        return session_id
    return _make
