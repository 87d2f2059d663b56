import pytest

from library_service.app import create_app
from library_service.config import TestConfig
from library_service.models import Book, User
from library_service.security import hash_password


@pytest.fixture
def app(tmp_path):
    # A file database so threads in the concurrency tests share it
    class Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'library.db'}"

    app = create_app(Config)
    yield app
    app.extensions["library_engine"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session_factory(app):
    return app.extensions["library_sessions"]


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_book(db):
    def _make(title="Dune", author="Frank Herbert", isbn=None, available=True):
        book = Book(
            title=title,
            author=author,
            isbn=isbn or f"isbn-{title.lower().replace(' ', '-')}",
            available=available,
        )
        db.add(book)
        db.commit()
        return book

    return _make


@pytest.fixture
def make_user(db):
    def _make(username="alice", password="secret"):
        user = User(username=username, password_hash=hash_password(password, rounds=4))
        db.add(user)
        db.commit()
        return user

    return _make
