from datetime import datetime
from app.extensions import db


class BorrowStatus:
    BORROWED = "BORROWED"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"


class BorrowRecord(db.Model):
    """An actual loan. Never hard-deleted."""
    __tablename__ = "borrow_records"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    borrow_date = db.Column(db.Date, nullable=False)
    return_date = db.Column(db.Date, nullable=False)  # currently scheduled due date
    actual_return_date = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=BorrowStatus.BORROWED, index=True)
    renewal_count = db.Column(db.Integer, nullable=False, default=0)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", backref="borrow_records")
    borrow_books = db.relationship("BorrowBook", back_populates="borrow_record", order_by="BorrowBook.id")
    borrow_ebooks = db.relationship("BorrowEbook", back_populates="borrow_record", order_by="BorrowEbook.id")


class BorrowBook(db.Model):
    __tablename__ = "borrow_books"

    id = db.Column(db.Integer, primary_key=True)
    borrow_record_id = db.Column(db.Integer, db.ForeignKey("borrow_records.id"), nullable=False, index=True)
    book_item_id = db.Column(db.Integer, db.ForeignKey("book_items.id"), nullable=False, index=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    borrow_record = db.relationship("BorrowRecord", back_populates="borrow_books")
    book_item = db.relationship("BookItem")


class BorrowEbook(db.Model):
    __tablename__ = "borrow_ebooks"

    id = db.Column(db.Integer, primary_key=True)
    borrow_record_id = db.Column(db.Integer, db.ForeignKey("borrow_records.id"), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    borrow_record = db.relationship("BorrowRecord", back_populates="borrow_ebooks")
    book = db.relationship("Book")
