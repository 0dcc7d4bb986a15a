import pytest

from library_circulation.app import create_app
from library_circulation.config import TestingConfig
from library_circulation.models.book import Book
from library_circulation.models.user import User

PASSWORD = 'password123'


@pytest.fixture
def app(tmp_path):
    app = create_app(TestingConfig, {'DATABASE_PATH': str(tmp_path / 'library.db')})
    yield app


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin(app):
    with app.app_context():
        return User.create('Ava Admin', 'admin@example.com', PASSWORD, role='admin')


@pytest.fixture
def alice(app):
    with app.app_context():
        return User.create('Alice Reader', 'alice@example.com', PASSWORD)


@pytest.fixture
def bob(app):
    with app.app_context():
        return User.create('Bob Student', 'bob@example.com', PASSWORD, max_borrow_limit=1)


@pytest.fixture
def dune(app):
    with app.app_context():
        return Book.create('Dune', 'Frank Herbert', total_copies=2)


@pytest.fixture
def single_copy(app):
    with app.app_context():
        return Book.create('Clean Code', 'Robert C. Martin', total_copies=1)


def login(client, user):
    response = client.post('/api/auth/login',
                           json={'email': user.email, 'password': PASSWORD})
    assert response.status_code == 200
    return response
