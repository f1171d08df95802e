from datetime import datetime
from app.extensions import db


class BorrowRequestStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    # counted by the one-active-request rule and the renewal demand check
    ACTIVE = (PENDING, APPROVED)
    TERMINAL = (REJECTED, FULFILLED, CANCELLED, EXPIRED)
    ALL = ACTIVE + TERMINAL


class BorrowRequest(db.Model):
    __tablename__ = "borrow_requests"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=BorrowRequestStatus.PENDING, index=True)
    # set on every move into APPROVED; the pickup window runs from here
    approved_at = db.Column(db.DateTime, nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", backref="borrow_requests")
    items = db.relationship(
        "BorrowRequestItem",
        back_populates="borrow_request",
        order_by="BorrowRequestItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def item(self):
        # one title per request
        return self.items[0] if self.items else None


class BorrowRequestItem(db.Model):
    __tablename__ = "borrow_request_items"

    id = db.Column(db.Integer, primary_key=True)
    borrow_request_id = db.Column(db.Integer, db.ForeignKey("borrow_requests.id"), nullable=False, index=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    borrow_request = db.relationship("BorrowRequest", back_populates="items")
    book = db.relationship("Book")
