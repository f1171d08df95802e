from datetime import datetime
from app.extensions import db


class ItemStatus:
    AVAILABLE = "AVAILABLE"
    ON_BORROW = "ON_BORROW"
    RESERVED = "RESERVED"
    MAINTENANCE = "MAINTENANCE"
    RETIRED = "RETIRED"
    LOST = "LOST"


class BookItem(db.Model):
    """One physical copy of a book."""
    __tablename__ = "book_items"

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False, index=True)
    code = db.Column(db.String(64), unique=True, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=ItemStatus.AVAILABLE, index=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    book = db.relationship("Book", back_populates="items")
