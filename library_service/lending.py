"""
Borrow/return state machine.

A book is either available (no borrow record anywhere) or borrowed (exactly
one record, owned by one user). Both transitions touch the ``books`` row and
the ``borrow_records`` table inside a single transaction; borrowing uses the
``available`` flag as a compare-and-set guard so two racing borrowers cannot
both win.
"""
import logging
from datetime import date, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from . import catalog
from .errors import Conflict, NotFound, UserNotFound
from .models import Book, BorrowRecord, User

logger = logging.getLogger(__name__)

LOAN_DAYS = 14


def due_date_for(today=None, days=LOAN_DAYS):
    """Calendar date ``days`` after ``today`` as ``YYYY-MM-DD``."""
    today = today or date.today()
    return (today + timedelta(days=days)).isoformat()


def borrow(session, user_id, book_id, today=None, days=LOAN_DAYS):
    if session.get(User, user_id) is None:
        raise UserNotFound()

    try:
        claimed = session.execute(
            update(Book)
            .where(Book.id == book_id, Book.available.is_(True))
            .values(available=False)
            .execution_options(synchronize_session=False)
        ).rowcount

        if claimed != 1:
            session.rollback()
            catalog.get_book(session, book_id)
            logger.info("Borrow rejected: book %s already out (user %s)", book_id, user_id)
            raise Conflict("Book not available")

        title = session.execute(
            select(Book.title).where(Book.id == book_id)
        ).scalar_one()
        record = BorrowRecord(
            user_id=user_id,
            book_id=book_id,
            title=title,
            due_date=due_date_for(today, days),
        )
        session.add(record)
        session.commit()
    except IntegrityError:
        # someone else's record for this book landed first
        session.rollback()
        logger.info("Borrow rejected: record for book %s already exists", book_id)
        raise Conflict("Book not available")

    logger.info("User %s borrowed book %s, due %s", user_id, book_id, record.due_date)
    return record


def return_book(session, user_id, book_id):
    """
    Remove the caller's record for ``book_id`` and free the book.

    Without a matching record nothing changes and ``NotFound`` is raised.
    """
    removed = session.execute(
        delete(BorrowRecord)
        .where(BorrowRecord.user_id == user_id, BorrowRecord.book_id == book_id)
        .execution_options(synchronize_session=False)
    ).rowcount

    if removed != 1:
        session.rollback()
        logger.info("Return rejected: user %s does not hold book %s", user_id, book_id)
        raise NotFound("You have not borrowed this book")

    session.execute(
        update(Book)
        .where(Book.id == book_id)
        .values(available=True)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    logger.info("User %s returned book %s", user_id, book_id)


def borrowed_books(session, user_id):
    return session.execute(
        select(BorrowRecord)
        .where(BorrowRecord.user_id == user_id)
        .order_by(BorrowRecord.id)
    ).scalars().all()


def availability_report(session):
    """
    Books whose ``available`` flag disagrees with the borrow records.

    Empty when every book is available iff nobody holds it.
    """
    holders = (
        select(BorrowRecord.book_id, func.count(BorrowRecord.id).label("holders"))
        .group_by(BorrowRecord.book_id)
        .subquery()
    )
    rows = session.execute(
        select(Book, func.coalesce(holders.c.holders, 0))
        .outerjoin(holders, holders.c.book_id == Book.id)
        .order_by(Book.id)
    ).all()

    problems = []
    for book, count in rows:
        if book.available != (count == 0) or count > 1:
            problems.append(
                {
                    "book_id": book.id,
                    "isbn": book.isbn,
                    "available": book.available,
                    "holders": count,
                }
            )
    return problems
