from datetime import date, datetime

from sqlalchemy import func

from app.extensions import db
from app.models.borrow_request import BorrowRequest, BorrowRequestItem, BorrowRequestStatus


class BorrowRequestRepo:
    @staticmethod
    def get(request_id: int):
        return BorrowRequest.query.filter(
            BorrowRequest.id == request_id,
            BorrowRequest.is_deleted.is_(False),
        ).first()

    @staticmethod
    def list_by_user(user_id: int):
        return (
            BorrowRequest.query
            .filter(BorrowRequest.user_id == user_id, BorrowRequest.is_deleted.is_(False))
            .order_by(BorrowRequest.id.desc())
            .all()
        )

    @staticmethod
    def add(borrow_request: BorrowRequest):
        db.session.add(borrow_request)
        db.session.flush()
        return borrow_request

    @staticmethod
    def active_request_count(user_id: int, book_id: int) -> int:
        return (
            db.session.query(func.count(BorrowRequest.id))
            .join(BorrowRequestItem, BorrowRequestItem.borrow_request_id == BorrowRequest.id)
            .filter(
                BorrowRequest.user_id == user_id,
                BorrowRequest.status.in_(BorrowRequestStatus.ACTIVE),
                BorrowRequest.is_deleted.is_(False),
                BorrowRequestItem.book_id == book_id,
                BorrowRequestItem.is_deleted.is_(False),
            )
            .scalar()
        ) or 0

    @staticmethod
    def has_active_request(user_id: int, book_id: int) -> bool:
        return BorrowRequestRepo.active_request_count(user_id, book_id) > 0

    @staticmethod
    def quantity_in_status(book_id: int, statuses) -> int:
        total = (
            db.session.query(func.coalesce(func.sum(BorrowRequestItem.quantity), 0))
            .join(BorrowRequest, BorrowRequestItem.borrow_request_id == BorrowRequest.id)
            .filter(
                BorrowRequestItem.book_id == book_id,
                BorrowRequestItem.is_deleted.is_(False),
                BorrowRequest.status.in_(tuple(statuses)),
                BorrowRequest.is_deleted.is_(False),
            )
            .scalar()
        )
        return int(total or 0)

    @staticmethod
    def reserved_quantity(book_id: int) -> int:
        # copies promised to approved-but-not-collected requests
        return BorrowRequestRepo.quantity_in_status(book_id, (BorrowRequestStatus.APPROVED,))

    @staticmethod
    def demand_quantity(book_id: int) -> int:
        return BorrowRequestRepo.quantity_in_status(book_id, BorrowRequestStatus.ACTIVE)

    @staticmethod
    def pending_queue(book_id: int):
        """PENDING request items for the book, FIFO by arrival, id as tiebreak."""
        return (
            BorrowRequestItem.query
            .join(BorrowRequest, BorrowRequestItem.borrow_request_id == BorrowRequest.id)
            .filter(
                BorrowRequestItem.book_id == book_id,
                BorrowRequestItem.is_deleted.is_(False),
                BorrowRequest.status == BorrowRequestStatus.PENDING,
                BorrowRequest.is_deleted.is_(False),
            )
            .order_by(BorrowRequest.created_at.asc(), BorrowRequest.id.asc())
            .all()
        )

    @staticmethod
    def transition(request_id: int, from_statuses, to_status: str, **values) -> bool:
        """
        Guarded single-row status update.
        Returns False when the row was not in one of ``from_statuses``.
        """
        values["status"] = to_status
        values["updated_at"] = datetime.utcnow()
        updated = (
            BorrowRequest.query
            .filter(
                BorrowRequest.id == request_id,
                BorrowRequest.is_deleted.is_(False),
                BorrowRequest.status.in_(tuple(from_statuses)),
            )
            .update(values, synchronize_session="fetch")
        )
        return updated == 1

    @staticmethod
    def find_stale_approvals(cutoff: datetime):
        return (
            BorrowRequest.query
            .filter(
                BorrowRequest.status == BorrowRequestStatus.APPROVED,
                BorrowRequest.is_deleted.is_(False),
                BorrowRequest.approved_at.isnot(None),
                BorrowRequest.approved_at < cutoff,
            )
            .order_by(BorrowRequest.id)
            .all()
        )

    @staticmethod
    def find_pending_ending_between(start: date, end: date):
        return (
            BorrowRequest.query
            .filter(
                BorrowRequest.status == BorrowRequestStatus.PENDING,
                BorrowRequest.is_deleted.is_(False),
                BorrowRequest.end_date >= start,
                BorrowRequest.end_date <= end,
            )
            .order_by(BorrowRequest.id)
            .all()
        )
