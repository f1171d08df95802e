from app.models.book import Book
from app.models.book_item import BookItem, ItemStatus
from app.extensions import db

# SQL Server ignores FOR UPDATE; the table hint takes the same row lock there
MSSQL_LOCK_HINT = "WITH (UPDLOCK, ROWLOCK)"


class BookRepo:
    @staticmethod
    def get_active(book_id: int):
        return Book.query.filter(Book.id == book_id, Book.is_deleted.is_(False)).first()

    @staticmethod
    def lock_query(book_ids):
        """
        Row lock on the given books, in id order.
        SELECT ... FOR UPDATE on PostgreSQL/MySQL, UPDLOCK on SQL Server,
        nothing on SQLite which already serializes writers.
        """
        return (
            Book.query
            .filter(Book.id.in_(sorted(set(book_ids))), Book.is_deleted.is_(False))
            .order_by(Book.id)
            .with_hint(Book, MSSQL_LOCK_HINT, "mssql")
            .with_for_update()
        )

    @staticmethod
    def lock(book_id: int):
        """Every admission for the same book serializes here."""
        return BookRepo.lock_query([book_id]).first()

    @staticmethod
    def lock_many(book_ids):
        ids = sorted(set(book_ids))  # fixed order, no lock cycles
        if not ids:
            return []
        return BookRepo.lock_query(ids).all()

    @staticmethod
    def available_item_count(book_id: int) -> int:
        return BookItem.query.filter(
            BookItem.book_id == book_id,
            BookItem.status == ItemStatus.AVAILABLE,
            BookItem.is_deleted.is_(False),
        ).count()

    @staticmethod
    def items_by_ids(item_ids):
        return (
            BookItem.query
            .filter(BookItem.id.in_(list(item_ids)), BookItem.is_deleted.is_(False))
            .order_by(BookItem.id)
            .all()
        )

    @staticmethod
    def set_item_status(items, status: str):
        for item in items:
            item.status = status
        db.session.flush()
