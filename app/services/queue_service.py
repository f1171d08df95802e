from datetime import datetime

from flask import current_app

from app.errors import NotFoundError
from app.models.borrow_request import BorrowRequestStatus
from app.repositories.borrow_request_repo import BorrowRequestRepo
from app.services import invariants
from app.services.admission_service import AdmissionService, Decision


class QueueService:
    """
    Hold queue per book. Positions are never stored: they are recomputed from
    the PENDING set (arrival order) every time someone asks.
    """

    @staticmethod
    def queue_position(book_id: int, request_id: int) -> int:
        queue = BorrowRequestRepo.pending_queue(book_id)
        for index, item in enumerate(queue, start=1):
            if item.borrow_request_id == request_id:
                return index
        return len(queue) + 1

    @staticmethod
    def positions(book_id: int) -> dict:
        """request_id -> 1-based position for the whole queue."""
        queue = BorrowRequestRepo.pending_queue(book_id)
        return {item.borrow_request_id: index for index, item in enumerate(queue, start=1)}

    @staticmethod
    def get_queue_position(request_id: int):
        borrow_request = BorrowRequestRepo.get(request_id)
        if not borrow_request or not borrow_request.item:
            raise NotFoundError("Borrow request not found")

        if borrow_request.status != BorrowRequestStatus.PENDING:
            return None
        return QueueService.queue_position(borrow_request.item.book_id, borrow_request.id)

    @staticmethod
    def promote_queue_head(book_id: int) -> list:
        """
        Approve waiting requests from the head of the queue while they fit.

        Must run inside the transaction that freed capacity, with the book row
        locked. Stops at the first head that does not fit, so a large request
        at the front is never overtaken by smaller ones behind it.
        Returns the promoted requests so the caller can notify after commit.
        """
        promoted = []
        for item in BorrowRequestRepo.pending_queue(book_id):
            if AdmissionService.decide(book_id, item.quantity) != Decision.APPROVE:
                break

            ok = BorrowRequestRepo.transition(
                item.borrow_request_id,
                (BorrowRequestStatus.PENDING,),
                BorrowRequestStatus.APPROVED,
                approved_at=datetime.utcnow(),
            )
            if not ok:
                # left the queue since we read it
                continue

            invariants.check_supply(book_id)
            promoted.append(item.borrow_request)

        if promoted:
            current_app.logger.info(
                f"[queue] book={book_id} promoted={[r.id for r in promoted]}"
            )
        return promoted
