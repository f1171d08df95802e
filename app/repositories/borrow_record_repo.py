from datetime import date

from app.extensions import db
from app.models.borrow_record import BorrowBook, BorrowRecord, BorrowEbook, BorrowStatus
from app.repositories.book_repo import MSSQL_LOCK_HINT


class BorrowRecordRepo:
    @staticmethod
    def _locked(q):
        return q.with_hint(BorrowRecord, MSSQL_LOCK_HINT, "mssql").with_for_update()

    @staticmethod
    def get(record_id: int, for_update: bool = False):
        q = BorrowRecord.query.filter(
            BorrowRecord.id == record_id,
            BorrowRecord.is_deleted.is_(False),
        )
        if for_update:
            q = BorrowRecordRepo._locked(q)
        return q.first()

    @staticmethod
    def get_for_user(record_id: int, user_id: int, for_update: bool = False):
        q = BorrowRecord.query.filter(
            BorrowRecord.id == record_id,
            BorrowRecord.user_id == user_id,
            BorrowRecord.is_deleted.is_(False),
        )
        if for_update:
            q = BorrowRecordRepo._locked(q)
        return q.first()

    @staticmethod
    def add(record: BorrowRecord):
        db.session.add(record)
        db.session.flush()
        return record

    @staticmethod
    def has_active_ebook_loan(user_id: int, book_id: int) -> bool:
        # any loan not yet returned counts, whatever the sweep marked it
        return (
            db.session.query(BorrowRecord.id)
            .join(BorrowEbook, BorrowEbook.borrow_record_id == BorrowRecord.id)
            .filter(
                BorrowRecord.user_id == user_id,
                BorrowRecord.status != BorrowStatus.RETURNED,
                BorrowRecord.actual_return_date.is_(None),
                BorrowRecord.is_deleted.is_(False),
                BorrowEbook.book_id == book_id,
                BorrowEbook.is_deleted.is_(False),
            )
            .first()
        ) is not None

    @staticmethod
    def find_due_between(start: date, end: date):
        return (
            BorrowRecord.query
            .filter(
                BorrowRecord.status == BorrowStatus.BORROWED,
                BorrowRecord.actual_return_date.is_(None),
                BorrowRecord.is_deleted.is_(False),
                BorrowRecord.return_date >= start,
                BorrowRecord.return_date <= end,
                BorrowRecord.borrow_books.any(BorrowBook.is_deleted.is_(False)),
            )
            .order_by(BorrowRecord.id)
            .all()
        )

    @staticmethod
    def find_overdue(today: date):
        """Physical loans past their due date. Ebooks expire instead."""
        return (
            BorrowRecord.query
            .filter(
                BorrowRecord.status == BorrowStatus.BORROWED,
                BorrowRecord.actual_return_date.is_(None),
                BorrowRecord.is_deleted.is_(False),
                BorrowRecord.return_date < today,
                BorrowRecord.borrow_books.any(BorrowBook.is_deleted.is_(False)),
            )
            .order_by(BorrowRecord.id)
            .all()
        )

    @staticmethod
    def find_expired_ebook_loans(today: date):
        return (
            BorrowRecord.query
            .filter(
                BorrowRecord.status.in_((BorrowStatus.BORROWED, BorrowStatus.OVERDUE)),
                BorrowRecord.actual_return_date.is_(None),
                BorrowRecord.is_deleted.is_(False),
                BorrowRecord.return_date < today,
                BorrowRecord.borrow_ebooks.any(BorrowEbook.is_deleted.is_(False)),
            )
            .order_by(BorrowRecord.id)
            .all()
        )
