from datetime import datetime, timedelta

import pytest

from assignhub import accounts, create_app, db, gateway
from assignhub.models import Assignment


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def make_user(ctx):
    """Sign up an account and return its identity id."""
    def _make(email, role, full_name=None):
        identity = accounts.sign_up(email, 'secret123', full_name or email.split('@')[0], role)
        return identity.id
    return _make


@pytest.fixture
def teacher(make_user):
    return make_user('teacher@school.edu', 'teacher', 'Tina Teacher')


@pytest.fixture
def student(make_user):
    return make_user('s1@school.edu', 'student', 'Sam One')


@pytest.fixture
def other_student(make_user):
    return make_user('s2@school.edu', 'student', 'Sue Two')


@pytest.fixture
def essay(teacher):
    return gateway.insert(teacher, Assignment(
        title="Essay 1",
        subject="English",
        max_score=100,
        due_date=datetime.utcnow() + timedelta(days=7),
        created_by=teacher,
    ))
