import os
import sys
import pytest

# Ensure the backend root (containing the `arena` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from arena import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    UPLOAD_FOLDER = None
    TICK_INTERVAL_SEC = 0
    TIMER_HEARTBEAT_SEC = 0
    EXPIRY_SUBMIT_ATTEMPTS = 2
    EMPTY_EXPIRY_POLICY = 'submit'
    EMPTY_SUBMISSION_SCORE = 0
    GRADER = 'fixed'
    FIXED_SCORE = 42
    REQUIRED_ANSWER_FIELDS = ('prompt_file', 'output_file')


class FakeClock:
    """Wall clock the tests move by hand; sleep() advances it (a zero-length sleep counts as one tick)."""

    def __init__(self, start=1_700_000_000.0):
        self.t = float(start)

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds

    def sleep(self, seconds):
        self.t += seconds or 1


@pytest.fixture()
def clock():
    return FakeClock()


def _app_config(tmp_path, **overrides):
    attrs = {'UPLOAD_FOLDER': str(tmp_path / 'uploads')}
    attrs.update(overrides)
    return type('Config', (TestConfig,), attrs)


@pytest.fixture()
def flask_app(tmp_path, clock):
    config = _app_config(tmp_path)
    application = create_app(config)
    with application.app_context():
        # Ensure models are imported so tables are created
        import arena.models  # noqa: F401
        db.create_all()
        coordinator = application.extensions['submission_coordinator']
        coordinator.clock = clock
        coordinator.sleep = clock.sleep
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def coordinator(flask_app):
    return flask_app.extensions['submission_coordinator']


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
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def make_competition(flask_app):
    from arena.models import Competition, Question

    def _make(questions=1, minutes=1, status='ongoing', name='Sprint'):
        comp = Competition(name=name, time_limit_minutes=minutes, status=status)
        db.session.add(comp)
        db.session.flush()
        for i in range(questions):
            db.session.add(Question(
                competition_id=comp.id,
                title=f'Challenge {i + 1}',
                description=f'Body {i + 1}',
                attachments=[{'name': f'data{i + 1}.csv', 'url': f'/files/data{i + 1}.csv'}],
            ))
        db.session.commit()
        return comp

    return _make


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database, for tests that write from several threads."""
    config = _app_config(tmp_path, SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'arena.db'}")
    application = create_app(config)
    with application.app_context():
        import arena.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
