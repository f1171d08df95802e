from datetime import datetime, timedelta

import pytest

from app.errors import NotFoundError
from app.extensions import db
from app.models.book_item import BookItem
from app.models.borrow_request import BorrowRequestStatus
from app.repositories.book_repo import BookRepo
from app.repositories.borrow_request_repo import BorrowRequestRepo
from app.services.borrow_request_service import BorrowRequestService
from app.services.queue_service import QueueService


def _request(user, book, period, quantity=1):
    start, end = period
    return BorrowRequestService.create_borrow_request(user.id, book.id, quantity, start, end)["borrow_request"]


@pytest.fixture
def waiting(make_user, make_book, period):
    """Three readers queued for a book with no free copy."""
    book = make_book(copies=0)
    requests = [_request(make_user(), book, period) for _ in range(3)]
    return book, requests


def test_positions_follow_arrival_order(waiting):
    book, (a, b, c) = waiting

    assert [QueueService.queue_position(book.id, r.id) for r in (a, b, c)] == [1, 2, 3]
    assert QueueService.positions(book.id) == {a.id: 1, b.id: 2, c.id: 3}


def test_same_timestamp_falls_back_to_id_order(waiting):
    book, (a, b, c) = waiting
    stamp = datetime(2030, 1, 1, 9, 0, 0)
    for r in (a, b, c):
        r.created_at = stamp
    db.session.commit()

    assert [item.borrow_request_id for item in BorrowRequestRepo.pending_queue(book.id)] == [a.id, b.id, c.id]


def test_removing_the_head_moves_everyone_up(waiting):
    book, (a, b, c) = waiting

    BorrowRequestService.reject_request(a.id)

    assert QueueService.get_queue_position(b.id) == 1
    assert QueueService.get_queue_position(c.id) == 2
    assert QueueService.get_queue_position(a.id) is None


def test_cancelling_from_the_middle_keeps_positions_gapless(waiting):
    book, (a, b, c) = waiting

    BorrowRequestService.cancel_request(b.id, b.user_id)

    assert QueueService.positions(book.id) == {a.id: 1, c.id: 2}


def test_out_of_turn_approval_shifts_survivors(waiting):
    book, (a, b, c) = waiting
    db.session.add(BookItem(book_id=book.id, code="NEW-1"))
    db.session.commit()

    BorrowRequestService.approve_request(c.id)

    assert QueueService.positions(book.id) == {a.id: 1, b.id: 2}
    assert QueueService.get_queue_position(c.id) is None


def test_position_is_absent_for_non_pending(make_user, make_book, period):
    book = make_book(copies=1)
    approved = _request(make_user(), book, period)

    assert approved.status == BorrowRequestStatus.APPROVED
    assert QueueService.get_queue_position(approved.id) is None


def test_position_for_request_outside_queue_falls_back_to_tail(waiting):
    book, _requests = waiting

    assert QueueService.queue_position(book.id, 12345) == 4


def test_unknown_request(app):
    with pytest.raises(NotFoundError):
        QueueService.get_queue_position(404)


def test_release_promotes_queue_head(make_user, make_book, period):
    book = make_book(copies=1)
    holder = _request(make_user(), book, period)
    first = _request(make_user(), book, period)
    second = _request(make_user(), book, period)

    BorrowRequestService.cancel_request(holder.id, holder.user_id)

    db.session.refresh(first)
    db.session.refresh(second)
    assert first.status == BorrowRequestStatus.APPROVED
    assert first.approved_at is not None
    assert second.status == BorrowRequestStatus.PENDING
    assert QueueService.get_queue_position(second.id) == 1


def test_promotion_stops_at_head_that_does_not_fit(make_user, make_book, period):
    book = make_book(copies=2)
    holder = _request(make_user(), book, period, quantity=1)
    big = _request(make_user(), book, period, quantity=3)
    small = _request(make_user(), book, period, quantity=1)
    assert small.status == BorrowRequestStatus.APPROVED  # fits the last free copy
    assert big.status == BorrowRequestStatus.PENDING

    BorrowRequestService.cancel_request(holder.id, holder.user_id)

    db.session.refresh(big)
    assert big.status == BorrowRequestStatus.PENDING
    assert QueueService.promote_queue_head(book.id) == []


def test_promote_queue_head_fills_several_slots(make_user, make_book, period):
    book = make_book(copies=0)
    queued = [_request(make_user(), book, period) for _ in range(3)]
    for i in range(2):
        db.session.add(BookItem(book_id=book.id, code=f"R-{i}"))
    db.session.flush()

    promoted = QueueService.promote_queue_head(book.id)
    db.session.commit()

    assert [r.id for r in promoted] == [queued[0].id, queued[1].id]
    assert QueueService.positions(book.id) == {queued[2].id: 1}


def test_expired_approval_hands_copy_to_queue(make_user, make_book, period):
    book = make_book(copies=1)
    holder = _request(make_user(), book, period)
    waiting = _request(make_user(), book, period)
    holder.approved_at = datetime.utcnow() - timedelta(days=4)
    db.session.commit()

    result = BorrowRequestService.expire_stale_approvals()

    db.session.refresh(holder)
    db.session.refresh(waiting)
    assert result == {"expired": [holder.id], "promoted": [waiting.id]}
    assert holder.status == BorrowRequestStatus.EXPIRED
    assert waiting.status == BorrowRequestStatus.APPROVED


def test_recent_approval_does_not_expire(make_user, make_book, period):
    book = make_book(copies=1)
    holder = _request(make_user(), book, period)

    result = BorrowRequestService.expire_stale_approvals()

    assert result == {"expired": [], "promoted": []}
    db.session.refresh(holder)
    assert holder.status == BorrowRequestStatus.APPROVED


def test_expiry_sweep_locks_books_up_front_in_id_order(make_user, make_book, period, monkeypatch):
    first, second = make_book(title="First"), make_book(title="Second")
    on_second = _request(make_user(), second, period)
    on_first = _request(make_user(), first, period)
    for borrow_request in (on_second, on_first):
        borrow_request.approved_at = datetime.utcnow() - timedelta(days=4)
    db.session.commit()

    locked = []
    lock_many = BookRepo.lock_many

    def recording_lock_many(book_ids):
        locked.append(list(book_ids))
        return lock_many(book_ids)

    def no_single_lock(book_id):
        raise AssertionError(f"book {book_id} locked on its own")

    monkeypatch.setattr(BookRepo, "lock_many", staticmethod(recording_lock_many))
    monkeypatch.setattr(BookRepo, "lock", staticmethod(no_single_lock))

    result = BorrowRequestService.expire_stale_approvals()

    assert locked == [[first.id, second.id]]
    assert result == {"expired": [on_second.id, on_first.id], "promoted": []}
