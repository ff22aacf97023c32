import os
import sys
import pytest
from types import SimpleNamespace

# Ensure the backend root (containing the `quizparty` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from flask import g

from quizparty import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    QUIZ_CODE_LENGTH = 6
    DEFAULT_MIN_QUESTIONS = 1
    DEFAULT_SUGGESTED_QUESTIONS = 2
    DEFAULT_MAX_QUESTIONS = 5
    SCORE_WEIGHT_QUESTION = 1
    SCORE_WEIGHT_GUESS = 1
    RESET_GRADE_ON_ANSWER_EDIT = False
    REQUIRE_COMPLETE_GRADING = False
    TRANSITION_LOCK_RETRIES = 2
    TRANSITION_LOCK_BACKOFF_MS = 0


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    @application.before_request
    def reset_login_cache():
        # Test requests reuse the fixture's app context; reload the user per client
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import quizparty.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def host_client(flask_app):
    """A test client logged in as a freshly registered host."""
    test_client = flask_app.test_client()
    res = test_client.post('/register', json={'username': 'quizmaster', 'password': 'secret'})
    assert res.status_code == 201
    return test_client


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
def host(flask_app):
    from quizparty.models import User
    user = User(username='host')
    user.set_password('password')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def make_quiz(host):
    from quizparty.services.quiz import controller

    def _make(**settings):
        return controller.create_quiz(host, settings)

    return _make


@pytest.fixture()
def game(make_quiz):
    """A quiz in CREATION with a host block and one block each for Alice and Bob."""
    from quizparty.services.quiz import content, identity

    quiz = make_quiz(name='Friday quiz')
    alice, _ = identity.resolve_or_create_participant(quiz, 'TOKEN-A', 'Alice')
    bob, _ = identity.resolve_or_create_participant(quiz, 'TOKEN-B', 'Bob')
    host_block = content.save_block(quiz, None, 'Host round', [
        {'text': 'Capital of France?', 'type': 'open', 'correct_answer': 'Paris'},
    ])
    alice_block = content.save_block(quiz, alice, 'Alice round', [
        {'text': '2 + 2?', 'type': 'mcq', 'options': ['3', '4'], 'correct_answer': '4'},
        {'text': 'Best pet?', 'type': 'open', 'correct_answer': 'Cat'},
    ])
    bob_block = content.save_block(quiz, bob, 'Bob round', [
        {'text': 'Sky colour?', 'type': 'mcq', 'options': ['Blue', 'Green'], 'correct_answer': 'Blue'},
    ])
    return SimpleNamespace(
        quiz=quiz, alice=alice, bob=bob,
        host_block=host_block, alice_block=alice_block, bob_block=bob_block,
    )
