import itertools
from datetime import date, timedelta

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from app.config import Config
from app.extensions import db
from app.models.book import Book
from app.models.book_item import BookItem, ItemStatus
from app.models.borrow_record import BorrowBook, BorrowRecord, BorrowStatus
from app.models.user import User, UserRole


class SqliteTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "test-only-jwt-secret-key-0123456789abcdef"
    MAIL_SUPPRESS_SEND = True
    SCHEDULER_ENABLED = False


@pytest.fixture
def app():
    app = create_app(SqliteTestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def today():
    return date.today()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role=UserRole.READER, email=True):
        n = next(counter)
        user = User(
            username=f"{role}{n}",
            email=f"{role}{n}@library.local" if email else None,
            role=role,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_book(app):
    def _make(title="Dune", copies=1, has_ebook=False, item_status=ItemStatus.AVAILABLE):
        book = Book(title=title, author="Frank Herbert", has_ebook=has_ebook)
        db.session.add(book)
        db.session.flush()
        for i in range(copies):
            db.session.add(BookItem(book_id=book.id, code=f"B{book.id}-{i + 1}", status=item_status))
        db.session.commit()
        return book

    return _make


@pytest.fixture
def make_loan(app):
    """A BORROWED physical loan; one ON_BORROW copy per given book."""
    def _make(user, books, borrow_date, return_date, renewal_count=0, status=BorrowStatus.BORROWED):
        record = BorrowRecord(
            user_id=user.id,
            borrow_date=borrow_date,
            return_date=return_date,
            status=status,
            renewal_count=renewal_count,
        )
        db.session.add(record)
        db.session.flush()
        for book in books:
            item = BookItem(book_id=book.id, code=f"L{record.id}-{book.id}", status=ItemStatus.ON_BORROW)
            db.session.add(item)
            db.session.flush()
            db.session.add(BorrowBook(borrow_record_id=record.id, book_item_id=item.id))
        db.session.commit()
        return record

    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        token = create_access_token(identity=str(user.id), additional_claims={"role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def period(today):
    """A valid (start, end) borrow window."""
    start = today + timedelta(days=1)
    return start, start + timedelta(days=14)


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database, so each thread gets its own connection."""

    class FileConfig(SqliteTestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'circulation.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()
