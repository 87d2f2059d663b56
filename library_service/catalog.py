import logging

from sqlalchemy import func, select

from .errors import InvalidInput, NotFound
from .models import Book

logger = logging.getLogger(__name__)


def _escape_like(text):
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_books(session):
    return session.execute(select(Book).order_by(Book.id)).scalars().all()


def search_books(session, query):
    """
    Case-insensitive substring search on title, author or ISBN.

    A blank query matches every book, same as ``list_books``.
    """
    if not query:
        return list_books(session)

    like = func.lower(f"%{_escape_like(query)}%")
    q = (
        select(Book)
        .where(
            (func.lower(Book.title).like(like, escape="\\"))
            | (func.lower(Book.author).like(like, escape="\\"))
            | (func.lower(Book.isbn).like(like, escape="\\"))
        )
        .order_by(Book.id)
    )
    return session.execute(q).scalars().all()


def get_book(session, book_id):
    book = session.get(Book, book_id)
    if not book:
        raise NotFound("Book not found")
    return book


def upsert_book(session, isbn, title, author=None):
    """
    Seed/librarian upsert keyed by ISBN. Returns ``(book, created)``.

    Availability is left alone on update; only lending flips it.
    """
    if not isbn or not title:
        raise InvalidInput("isbn and title are required")
    if not all(isinstance(v, str) for v in (isbn, title, author or "")):
        raise InvalidInput("isbn, title and author must be strings")

    book = session.execute(
        select(Book).where(Book.isbn == isbn)
    ).scalar_one_or_none()

    if book:
        book.title = title
        book.author = author
        created = False
        logger.info("Updated book %s", isbn)
    else:
        book = Book(isbn=isbn, title=title, author=author, available=True)
        session.add(book)
        created = True
        logger.info("Added book %s", isbn)

    session.commit()
    return book, created
