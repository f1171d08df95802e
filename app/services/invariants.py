"""
Post-write checks for the two circulation invariants.

- one PENDING/APPROVED request per (user, book)
- reserved (APPROVED) quantity never exceeds available copies

Both run inside the transaction that did the write. A failure means a race
escaped the book lock or the data is already corrupt, so it is logged at
CRITICAL and raised; the surrounding ``atomic()`` rolls the write back.
"""
from flask import current_app

from app.errors import InvariantViolation
from app.repositories.book_repo import BookRepo
from app.repositories.borrow_request_repo import BorrowRequestRepo


def check_supply(book_id: int) -> None:
    available = BookRepo.available_item_count(book_id)
    reserved = BorrowRequestRepo.reserved_quantity(book_id)
    if reserved > available:
        current_app.logger.critical(
            f"[invariant] book={book_id} reserved={reserved} available={available}: supply oversold"
        )
        raise InvariantViolation(
            "Not enough copies to honour this reservation. Please refresh and retry."
        )


def check_single_active_request(user_id: int, book_id: int) -> None:
    count = BorrowRequestRepo.active_request_count(user_id, book_id)
    if count > 1:
        current_app.logger.critical(
            f"[invariant] user={user_id} book={book_id} active_requests={count}"
        )
        raise InvariantViolation("Duplicate active borrow request detected. Please refresh and retry.")
