from datetime import datetime

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    ForeignKey,
)

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(150), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    borrowed_books = relationship(
        "BorrowRecord",
        order_by="BorrowRecord.id",
        back_populates="user",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "borrowedBooks": [r.to_dict() for r in self.borrowed_books],
        }


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255))
    isbn = Column(String(20), unique=True, nullable=False)
    # Flipped only by the lending service
    available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "available": self.available,
        }


class BorrowRecord(Base):
    """
    One entry of a user's borrowed list.

    ``title`` is copied from the book when it is borrowed and is not kept in
    sync afterwards. ``book_id`` is unique, so a book has at most one holder.
    """
    __tablename__ = "borrow_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), unique=True, nullable=False)
    title = Column(String(255), nullable=False)
    due_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    borrowed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User", back_populates="borrowed_books")

    def to_dict(self):
        return {
            "bookId": self.book_id,
            "title": self.title,
            "dueDate": self.due_date,
        }
