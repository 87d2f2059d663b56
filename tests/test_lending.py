import threading
from datetime import date

import pytest
from sqlalchemy import select

from library_service import lending
from library_service.errors import Conflict, NotFound, UserNotFound
from library_service.models import Book, BorrowRecord


def assert_invariant(session):
    session.expire_all()
    assert lending.availability_report(session) == []
    for book in session.execute(select(Book)).scalars():
        holders = session.execute(
            select(BorrowRecord).where(BorrowRecord.book_id == book.id)
        ).scalars().all()
        assert book.available == (len(holders) == 0)
        assert len(holders) <= 1


def test_due_date_is_calendar_arithmetic():
    assert lending.due_date_for(date(2024, 2, 20)) == "2024-03-05"
    assert lending.due_date_for(date(2023, 12, 25), days=14) == "2024-01-08"


def test_borrow_and_return_scenario(db, make_user, make_book):
    alice = make_user("alice")
    dune = make_book("Dune")

    record = lending.borrow(db, alice.id, dune.id)

    db.expire_all()
    assert dune.available is False
    assert [r.book_id for r in alice.borrowed_books] == [dune.id]
    assert record.title == "Dune"
    assert record.due_date == lending.due_date_for(date.today())
    assert_invariant(db)

    lending.return_book(db, alice.id, dune.id)

    db.expire_all()
    assert dune.available is True
    assert alice.borrowed_books == []
    assert_invariant(db)


def test_borrow_keeps_title_at_borrow_time(db, make_user, make_book):
    alice = make_user()
    book = make_book("First Edition")

    lending.borrow(db, alice.id, book.id, today=date(2024, 1, 1))
    book.title = "Second Edition"
    db.commit()

    records = lending.borrowed_books(db, alice.id)
    assert records[0].title == "First Edition"
    assert records[0].due_date == "2024-01-15"


def test_borrow_unavailable_book_is_conflict_without_changes(db, make_user, make_book):
    alice = make_user("alice")
    bob = make_user("bob")
    book = make_book()
    lending.borrow(db, alice.id, book.id)

    with pytest.raises(Conflict):
        lending.borrow(db, bob.id, book.id)

    db.expire_all()
    assert book.available is False
    assert lending.borrowed_books(db, bob.id) == []
    assert len(lending.borrowed_books(db, alice.id)) == 1
    assert_invariant(db)


def test_borrow_same_book_twice_by_same_user_is_conflict(db, make_user, make_book):
    alice = make_user()
    book = make_book()
    lending.borrow(db, alice.id, book.id)

    with pytest.raises(Conflict):
        lending.borrow(db, alice.id, book.id)
    assert len(lending.borrowed_books(db, alice.id)) == 1


def test_borrow_missing_book_or_user(db, make_user, make_book):
    alice = make_user()
    book = make_book()

    with pytest.raises(NotFound):
        lending.borrow(db, alice.id, 12345)
    with pytest.raises(UserNotFound):
        lending.borrow(db, 999, book.id)

    db.expire_all()
    assert book.available is True
    assert_invariant(db)


def test_return_without_record_is_not_found_and_keeps_flag(db, make_user, make_book):
    alice = make_user("alice")
    bob = make_user("bob")
    book = make_book()
    lending.borrow(db, alice.id, book.id)

    # bob never borrowed it
    with pytest.raises(NotFound):
        lending.return_book(db, bob.id, book.id)

    db.expire_all()
    assert book.available is False
    assert len(lending.borrowed_books(db, alice.id)) == 1
    assert_invariant(db)


def test_second_return_is_rejected(db, make_user, make_book):
    alice = make_user()
    book = make_book()
    lending.borrow(db, alice.id, book.id)
    lending.return_book(db, alice.id, book.id)

    with pytest.raises(NotFound):
        lending.return_book(db, alice.id, book.id)

    db.expire_all()
    assert book.available is True


def test_return_never_borrowed_leaves_available_book_alone(db, make_user, make_book):
    alice = make_user()
    book = make_book()

    with pytest.raises(NotFound):
        lending.return_book(db, alice.id, book.id)

    db.expire_all()
    assert book.available is True
    assert_invariant(db)


def test_borrowed_books_keeps_insertion_order(db, make_user, make_book):
    alice = make_user()
    books = [make_book(t) for t in ("A", "B", "C")]
    for book in reversed(books):
        lending.borrow(db, alice.id, book.id)

    assert [r.title for r in lending.borrowed_books(db, alice.id)] == ["C", "B", "A"]


def test_availability_report_flags_drift(db, make_user, make_book):
    make_user()
    stuck = make_book("Stuck", available=False)
    make_book("Fine")

    report = lending.availability_report(db)
    assert [p["book_id"] for p in report] == [stuck.id]
    assert report[0]["holders"] == 0


def test_concurrent_borrow_has_single_winner(session_factory, make_user, make_book):
    users = [make_user(f"reader{i}") for i in range(2)]
    book_id = make_book().id
    user_ids = [u.id for u in users]

    barrier = threading.Barrier(len(user_ids))
    outcomes = []
    lock = threading.Lock()

    def attempt(user_id):
        session = session_factory()
        try:
            barrier.wait()
            try:
                lending.borrow(session, user_id, book_id)
                result = "ok"
            except Conflict:
                result = "conflict"
        finally:
            session.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(uid,)) for uid in user_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["conflict", "ok"]

    session = session_factory()
    try:
        assert_invariant(session)
    finally:
        session.close()
