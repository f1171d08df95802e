from flask import current_app

from app.repositories.book_repo import BookRepo
from app.repositories.borrow_request_repo import BorrowRequestRepo


class Decision:
    APPROVE = "APPROVE"
    QUEUE = "QUEUE"


class AdmissionService:
    @staticmethod
    def remaining(book_id: int) -> int:
        """
        Copies still free to promise: AVAILABLE items minus APPROVED quantity.
        Always read inside the caller's transaction, after the book lock.
        """
        available = BookRepo.available_item_count(book_id)
        reserved = BorrowRequestRepo.reserved_quantity(book_id)
        return available - reserved

    @staticmethod
    def decide(book_id: int, requested_quantity: int) -> str:
        remaining = AdmissionService.remaining(book_id)
        if remaining < 0:
            # already oversold upstream; keep queueing instead of failing
            current_app.logger.error(f"[admission] book={book_id} remaining={remaining} (negative)")

        if remaining >= requested_quantity:
            return Decision.APPROVE
        return Decision.QUEUE
